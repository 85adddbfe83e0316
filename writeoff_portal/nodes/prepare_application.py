"""
PREPARE_APPLICATION Node - Open the transient payment that links JE to invoice
"""
import logging
from datetime import date
from typing import Dict, Any

from ..ledger.base import RecordType
from ..models.state import BillAndJEState
from .context import get_ledger, get_run_settings

logger = logging.getLogger(__name__)


async def prepare_application_node(state: BillAndJEState, config) -> Dict[str, Any]:
    """
    PREPARE_APPLICATION Stage: transform the invoice into a payment, fill in
    the header, then clear every apply line the transform pre-selected.
    """
    logger.info("=" * 50)
    logger.info("STAGE: PREPARE_APPLICATION - Building payment application")
    logger.info("=" * 50)

    ledger = get_ledger(config)
    settings = get_run_settings(config)

    payment = ledger.transform(RecordType.INVOICE, state["invoice_id"], RecordType.CUSTOMER_PAYMENT)
    payment.set("trandate", date.today())
    payment.set("payment_method_id", settings.cbsi_payment_method_id)
    payment.set("memo", f"CBSI JE Application: {state['je_tranid']}")
    payment.set("payment", state["invoice_total"])

    cleared = 0
    for line in range(payment.line_count("apply")):
        if payment.get_line("apply", line, "apply"):
            payment.set_line("apply", line, "apply", False)
            payment.set_line("apply", line, "amount", 0.0)
            cleared += 1
    logger.info(f"Cleared {cleared} pre-selected apply line(s) of {payment.line_count('apply')}")

    return {
        "current_stage": "PREPARE_APPLICATION",
        "payment": payment,
    }
