"""
SELECT_LINES Node - Pick the JE credit and the invoice on the payment
"""
import logging
from typing import Dict, Any, Optional

from ..ledger.base import Document
from ..models.state import BillAndJEState

logger = logging.getLogger(__name__)


def _select(payment: Document, sublist_id: str, line: int, amount: float) -> float:
    payment.set_line(sublist_id, line, "apply", True)
    payment.set_line(sublist_id, line, "amount", amount)
    # Read back: the document may hold less than was asked for
    return float(payment.get_line(sublist_id, line, "amount") or 0.0)


def find_credit_line(payment: Document, je_id: int) -> Optional[int]:
    for line in range(payment.line_count("credit")):
        doc = payment.get_line("credit", line, "doc")
        refnum = payment.get_line("credit", line, "refnum")
        if str(doc) == str(je_id) or str(refnum) == str(je_id):
            return line
    return None


def find_apply_line(payment: Document, invoice_id: int) -> Optional[int]:
    for line in range(payment.line_count("apply")):
        if str(payment.get_line("apply", line, "doc")) == str(invoice_id):
            return line
    return None


async def select_lines_node(state: BillAndJEState) -> Dict[str, Any]:
    """
    SELECT_LINES Stage: mark the JE credit line, then the invoice apply line,
    each for the invoice total. A missing line is left for VALIDATE to report.
    """
    logger.info("=" * 50)
    logger.info("STAGE: SELECT_LINES - Selecting credit and apply lines")
    logger.info("=" * 50)

    payment = state["payment"]
    amount = state["invoice_total"]

    credit_amount = 0.0
    credit_line = find_credit_line(payment, state["je_id"])
    if credit_line is None:
        logger.warning(f"No credit line for JE {state['je_id']} among {payment.line_count('credit')} line(s)")
    else:
        credit_amount = _select(payment, "credit", credit_line, amount)
        logger.info(f"Credit line {credit_line} selected: ${credit_amount:.2f}")

    apply_amount = 0.0
    apply_line = find_apply_line(payment, state["invoice_id"])
    if apply_line is None:
        logger.warning(f"No apply line for invoice {state['invoice_id']} among {payment.line_count('apply')} line(s)")
    else:
        apply_amount = _select(payment, "apply", apply_line, amount)
        logger.info(f"Apply line {apply_line} selected: ${apply_amount:.2f}")

    return {
        "current_stage": "SELECT_LINES",
        "payment": payment,
        "credit_line_found": credit_line is not None,
        "apply_line_found": apply_line is not None,
        "credit_amount": credit_amount,
        "apply_amount": apply_amount,
    }
