"""
Single-item portal actions

Each handler performs one unit of work against the ledger and returns an
ActionResponse; ledger rejections never escape as exceptions.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ..config import Settings
from ..graph.bill_and_je import get_bill_and_je_graph
from ..ledger.base import Ledger, LedgerError, RecordType
from ..models.schemas import ActionResponse
from ..reports.formatting import picker_to_display_date
from .errors import clean_error_message

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Units of work, shared with the bulk loops (they raise on failure)
# ----------------------------------------------------------------------

def queue_order(ledger: Ledger, so_id: Any) -> None:
    ledger.submit_fields(RecordType.SALES_ORDER, so_id, {"queued_for_write_off": datetime.now()})


def unqueue_order(ledger: Ledger, so_id: Any) -> None:
    ledger.submit_fields(RecordType.SALES_ORDER, so_id, {"queued_for_write_off": None})


def close_order(ledger: Ledger, so_id: Any) -> int:
    """Close every open line and save; returns the number of lines closed"""
    order = ledger.load(RecordType.SALES_ORDER, so_id)
    closed = 0
    for line in range(order.line_count("item")):
        if not order.get_line("item", line, "is_closed"):
            order.set_line("item", line, "is_closed", True)
            closed += 1
    ledger.save(order)
    return closed


def bill_order(ledger: Ledger, so_id: Any) -> Dict[str, Any]:
    invoice = ledger.transform(RecordType.SALES_ORDER, so_id, RecordType.INVOICE)
    invoice_id = ledger.save(invoice)
    return {
        "invoice_id": invoice_id,
        "invoice_tranid": invoice.get("tranid"),
        "total": invoice.get("total"),
    }


async def cbsi_bill_and_je(ledger: Ledger, so_id: Any, settings: Optional[Settings] = None) -> Dict[str, Any]:
    return await get_bill_and_je_graph().run(so_id, ledger, settings)


# ----------------------------------------------------------------------
# Handlers
# ----------------------------------------------------------------------

async def handle_queue(ledger: Ledger, so_id: str) -> ActionResponse:
    try:
        queue_order(ledger, so_id)
    except LedgerError as e:
        logger.error(f"Queue error for SO {so_id}: {e}")
        return ActionResponse(success=False, message=f"Error queueing Sales Order: {clean_error_message(e)}")
    logger.info(f"Sales Order {so_id} queued for write-off")
    return ActionResponse(success=True, message="Sales Order queued for Bill & Write-Off processing.")


async def handle_unqueue(ledger: Ledger, so_id: str) -> ActionResponse:
    try:
        unqueue_order(ledger, so_id)
    except LedgerError as e:
        logger.error(f"Unqueue error for SO {so_id}: {e}")
        return ActionResponse(success=False, message=f"Error unqueueing Sales Order: {clean_error_message(e)}")
    logger.info(f"Sales Order {so_id} removed from queue")
    return ActionResponse(success=True, message="Sales Order removed from queue.")


async def handle_close(ledger: Ledger, so_id: str) -> ActionResponse:
    try:
        closed = close_order(ledger, so_id)
    except LedgerError as e:
        logger.error(f"Failed to close SO {so_id}: {e}")
        return ActionResponse(success=False, message=f"Error closing Sales Order: {clean_error_message(e)}")
    logger.info(f"Sales Order {so_id} closed ({closed} line(s))")
    return ActionResponse(success=True, message="Sales Order closed successfully.")


async def handle_auto_bill(ledger: Ledger, so_id: str) -> ActionResponse:
    try:
        invoice = bill_order(ledger, so_id)
    except LedgerError as e:
        logger.error(f"Auto-bill error for SO {so_id}: {e}")
        return ActionResponse(success=False, message=f"Error creating invoice: {clean_error_message(e)}")
    logger.info(f"Sales Order {so_id} transformed to Invoice {invoice['invoice_tranid']} (ID: {invoice['invoice_id']})")
    return ActionResponse(
        success=True,
        message="Invoice created successfully.",
        invoice_tranid=invoice["invoice_tranid"],
        invoice_id=invoice["invoice_id"],
    )


async def handle_cbsi_bill_je(ledger: Ledger, so_id: str, settings: Optional[Settings] = None) -> ActionResponse:
    try:
        result = await cbsi_bill_and_je(ledger, so_id, settings)
    except LedgerError as e:
        logger.error(f"CBSI Bill and JE error for SO {so_id}: {e}")
        return ActionResponse(success=False, message=f"Error in CBSI Bill and JE: {clean_error_message(e)}")
    return ActionResponse(
        success=True,
        message="CBSI Bill and JE completed successfully.",
        invoice_tranid=result["invoice_tranid"],
        invoice_id=result["invoice_id"],
        je_tranid=result["je_tranid"],
        amount=result["amount"],
    )


async def handle_add_note(
    ledger: Ledger,
    so_id: str,
    note: Optional[str],
    follow_up_date: Optional[str]
) -> ActionResponse:
    """An empty note is saved as empty: that is how a note is cleared"""
    note = note or ""
    values = {
        "research_notes": note,
        "research_follow_up": picker_to_display_date(follow_up_date or ""),
    }
    try:
        ledger.submit_fields(RecordType.SALES_ORDER, so_id, values)
    except LedgerError as e:
        logger.error(f"Add research note error for SO {so_id}: {e}")
        return ActionResponse(success=False, message=f"Error saving research note: {clean_error_message(e)}")
    logger.info(f"Research note {'saved' if note else 'cleared'} on SO {so_id}")
    return ActionResponse(success=True, message="Research note saved." if note else "Research note cleared.")
