"""
SAVE_APPLICATION Node - Persist the payment, applying the JE credit to the invoice
"""
import logging
from typing import Dict, Any

from ..models.state import BillAndJEState
from .context import get_ledger

logger = logging.getLogger(__name__)


async def save_application_node(state: BillAndJEState, config) -> Dict[str, Any]:
    logger.info("=" * 50)
    logger.info("STAGE: SAVE_APPLICATION - Applying JE credit to invoice")
    logger.info("=" * 50)

    ledger = get_ledger(config)
    payment_id = ledger.save(state["payment"])
    logger.info(
        f"Payment {payment_id} saved: invoice {state['invoice_id']} settled by JE {state['je_id']} "
        f"for ${state['apply_amount']:.2f}"
    )

    return {
        "current_stage": "SAVE_APPLICATION",
        "payment_id": payment_id,
    }
