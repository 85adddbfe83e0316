"""
Routes a portal POST to exactly one handler
"""
import logging
from typing import Any, Dict, Optional, Tuple

from ..config import Settings, get_settings
from ..database import Database
from ..ledger.base import Ledger
from ..ledger.governance import GovernanceMeter
from ..ledger.sql import SqlLedger
from ..models.schemas import Action, ActionResponse, BULK_ACTIONS, PortalActionRequest
from . import bulk, handlers
from .errors import clean_error_message

logger = logging.getLogger(__name__)

NO_SELECTION_MESSAGE = "No Sales Orders selected. Please select at least one SO."


def create_request_ledger(
    settings: Optional[Settings] = None,
    db: Optional[Database] = None
) -> Tuple[SqlLedger, GovernanceMeter]:
    """Every request gets its own execution budget"""
    settings = settings or get_settings()
    meter = GovernanceMeter(limit=settings.governance_limit)
    return SqlLedger(db=db, meter=meter), meter


async def dispatch(
    request: PortalActionRequest,
    ledger: Ledger,
    meter: GovernanceMeter,
    settings: Optional[Settings] = None
) -> Dict[str, Any]:
    """Return the JSON body for the response; failures come back as success=false"""
    settings = settings or get_settings()
    logger.debug(f"Portal POST: action={request.action} soId={request.so_id} bulk={request.is_bulk}")

    try:
        if request.action and not request.is_bulk:
            return (await _dispatch_single(request, ledger, settings)).to_response()
        return (await _dispatch_bulk(request, ledger, meter, settings)).to_response()
    except Exception as e:
        logger.exception(f"Unhandled error processing portal action: {e}")
        return ActionResponse(success=False, message=f"Error: {clean_error_message(e)}").to_response()


async def _dispatch_single(request: PortalActionRequest, ledger: Ledger, settings: Settings):
    try:
        action = Action(request.action)
    except ValueError:
        return ActionResponse(success=False, message=f"Unknown action: {request.action}")
    if not request.so_id:
        return ActionResponse(success=False, message="Missing required parameter: soId")

    logger.info(f"Routing '{action.value}' for SO {request.so_id}")
    so_id = request.so_id
    if action == Action.QUEUE:
        return await handlers.handle_queue(ledger, so_id)
    if action == Action.UNQUEUE:
        return await handlers.handle_unqueue(ledger, so_id)
    if action == Action.CLOSE:
        return await handlers.handle_close(ledger, so_id)
    if action == Action.AUTO_BILL:
        return await handlers.handle_auto_bill(ledger, so_id)
    if action == Action.CBSI_BILL_JE:
        return await handlers.handle_cbsi_bill_je(ledger, so_id, settings)
    return await handlers.handle_add_note(ledger, so_id, request.note, request.follow_up_date)


async def _dispatch_bulk(request: PortalActionRequest, ledger: Ledger, meter: GovernanceMeter, settings: Settings):
    so_ids = request.selected_so_ids or []
    if not so_ids:
        return ActionResponse(success=False, message=NO_SELECTION_MESSAGE)

    bulk_action = request.bulk_action or Action.QUEUE.value
    try:
        action = Action(bulk_action)
    except ValueError:
        action = None
    if action not in BULK_ACTIONS:
        return ActionResponse(success=False, message=f"Unknown bulk action: {bulk_action}")

    logger.info(f"Bulk Action: processing {action.value} for {len(so_ids)} Sales Orders: {', '.join(so_ids)}")
    runners = {
        Action.QUEUE: bulk.bulk_queue,
        Action.CLOSE: bulk.bulk_close,
        Action.AUTO_BILL: bulk.bulk_auto_bill,
        Action.CBSI_BILL_JE: bulk.bulk_cbsi_bill_je,
    }
    return await runners[action](ledger, meter, so_ids, settings)
