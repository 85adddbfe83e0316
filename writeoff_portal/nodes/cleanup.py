"""
CLEANUP Node - Delete the transient payment document
"""
import logging
from typing import Dict, Any

from ..ledger.base import RecordType
from ..models.state import BillAndJEState
from .context import get_ledger

logger = logging.getLogger(__name__)


async def cleanup_node(state: BillAndJEState, config) -> Dict[str, Any]:
    """
    CLEANUP Stage: the credit was applied when the payment was saved, so a
    failed delete is logged and the run still succeeds.
    """
    logger.info("=" * 50)
    logger.info("STAGE: CLEANUP - Removing temporary payment record")
    logger.info("=" * 50)

    ledger = get_ledger(config)
    payment_id = state["payment_id"]

    try:
        ledger.delete(RecordType.CUSTOMER_PAYMENT, payment_id)
    except Exception as e:
        logger.error(
            f"Error deleting temporary payment record {payment_id} "
            f"(invoice {state['invoice_id']}, JE {state['je_id']}): {e}. "
            "Credit was applied, the payment record remains"
        )
        return {
            "current_stage": "CLEANUP",
            "payment_deleted": False,
            "cleanup_error": str(e),
        }

    logger.info(f"Deleted temporary payment {payment_id}")
    return {
        "current_stage": "CLEANUP",
        "payment_deleted": True,
        "cleanup_error": None,
    }
