"""
VALIDATE Node - Gate the payment save on a zero net effect
"""
import logging
from typing import Dict, Any, List

from ..models.state import BillAndJEState
from .context import get_run_settings

logger = logging.getLogger(__name__)

CENT = 0.005


def _money(value: float) -> str:
    return f"{value:.2f}"


def check_application(
    invoice_total: float,
    apply_amount: float,
    credit_amount: float,
    apply_line_found: bool,
    credit_line_found: bool,
    tolerance: float = 0.01
) -> List[str]:
    """Return the reasons the application must not be saved (empty when it may)"""
    if not apply_line_found:
        return ["VALIDATION FAILED: Could not select target invoice"]
    if not credit_line_found:
        return ["VALIDATION FAILED: Could not select credit transaction (JE)"]

    errors = []
    amounts_match = abs(apply_amount - credit_amount) < CENT and abs(apply_amount - invoice_total) < CENT
    if not amounts_match:
        errors.append(
            f"VALIDATION FAILED: Amounts do not match. Expected: {_money(invoice_total)}, "
            f"Apply: {_money(apply_amount)}, Credit: {_money(credit_amount)}"
        )
    net_effect = apply_amount - credit_amount
    if abs(net_effect) > tolerance:
        errors.append(f"VALIDATION FAILED: Net effect is not zero: {_money(net_effect)}")
    return errors


async def validate_node(state: BillAndJEState, config) -> Dict[str, Any]:
    """
    VALIDATE Stage: both lines selected, apply == credit == invoice total,
    |apply - credit| within tolerance.
    """
    logger.info("=" * 50)
    logger.info("STAGE: VALIDATE - Checking application balances")
    logger.info("=" * 50)

    settings = get_run_settings(config)
    errors = check_application(
        invoice_total=state.get("invoice_total", 0.0),
        apply_amount=state.get("apply_amount", 0.0),
        credit_amount=state.get("credit_amount", 0.0),
        apply_line_found=state.get("apply_line_found", False),
        credit_line_found=state.get("credit_line_found", False),
        tolerance=settings.amount_tolerance,
    )

    if errors:
        for error in errors:
            logger.error(error)
    else:
        logger.info(
            f"Validation passed: apply ${state['apply_amount']:.2f} == credit ${state['credit_amount']:.2f}"
        )

    return {
        "current_stage": "VALIDATE",
        "validated": not errors,
        "validation_errors": errors,
    }
