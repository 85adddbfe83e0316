"""
Bulk portal actions

Items are processed one at a time in submission order. Before each item the
governance meter is checked against the action's threshold; when it runs
low the loop stops and the untouched ids are handed back for resubmission.
A failing item is recorded and the loop moves on.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import Settings, get_settings
from ..ledger.base import Ledger, LedgerError
from ..ledger.governance import GovernanceMeter
from ..models.schemas import BulkActionResponse
from .errors import clean_error_message
from .handlers import bill_order, cbsi_bill_and_je, close_order, queue_order

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    total: int
    processed_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    details: List[Dict[str, Any]] = field(default_factory=list)
    governance_stopped: bool = False
    remaining_ids: List[str] = field(default_factory=list)

    def governance_note(self) -> str:
        return (
            f"GOVERNANCE LIMIT: Processed {len(self.processed_ids)} of {self.total}. "
            "Remaining items still selected - click again to continue."
        )

    def to_response(self, message: str, **extra: Any) -> BulkActionResponse:
        return BulkActionResponse(
            success=True,
            message=message,
            processed_ids=self.processed_ids,
            failed_ids=self.failed_ids,
            governance_stopped=self.governance_stopped,
            count=len(self.processed_ids),
            remaining_ids=self.remaining_ids,
            failure_details=self.failures or None,
            **extra
        )


async def process_batch(
    so_ids: List[str],
    meter: GovernanceMeter,
    threshold: int,
    work: Callable[[str], Awaitable[Optional[Dict[str, Any]]]],
    label: str
) -> BatchOutcome:
    outcome = BatchOutcome(total=len(so_ids))

    for index, so_id in enumerate(so_ids):
        if not meter.has_budget(threshold):
            outcome.governance_stopped = True
            outcome.remaining_ids = list(so_ids[index:])
            logger.warning(
                f"Governance limit approaching during bulk {label}: processed {index} of {len(so_ids)}, "
                f"{meter.remaining()} units left (threshold {threshold})"
            )
            break

        try:
            detail = await work(so_id)
        except LedgerError as e:
            outcome.failed_ids.append(so_id)
            outcome.failures[so_id] = clean_error_message(e)
            logger.error(f"Bulk {label} failed for SO {so_id}: {e}")
            continue
        except Exception as e:
            # Earlier items are committed; the rest of the batch still runs
            outcome.failed_ids.append(so_id)
            outcome.failures[so_id] = clean_error_message(e)
            logger.exception(f"Unexpected error in bulk {label} for SO {so_id}: {e}")
            continue

        outcome.processed_ids.append(so_id)
        if detail is not None:
            outcome.details.append({"soId": so_id, **detail})

    logger.info(
        f"Bulk {label}: {len(outcome.processed_ids)} processed, {len(outcome.failed_ids)} failed, "
        f"{len(outcome.remaining_ids)} remaining"
    )
    return outcome


async def bulk_queue(ledger: Ledger, meter: GovernanceMeter, so_ids: List[str],
                     settings: Optional[Settings] = None) -> BulkActionResponse:
    settings = settings or get_settings()

    async def work(so_id: str) -> None:
        queue_order(ledger, so_id)

    outcome = await process_batch(so_ids, meter, settings.governance_threshold, work, "queue")
    message = f"{len(outcome.processed_ids)} Sales Order(s) queued for write-off processing."
    if outcome.failed_ids:
        message += f" Failed to queue: {', '.join(outcome.failed_ids)}"
    if outcome.governance_stopped:
        message += f" {outcome.governance_note()}"
    return outcome.to_response(message)


async def bulk_close(ledger: Ledger, meter: GovernanceMeter, so_ids: List[str],
                     settings: Optional[Settings] = None) -> BulkActionResponse:
    settings = settings or get_settings()

    async def work(so_id: str) -> None:
        close_order(ledger, so_id)

    outcome = await process_batch(so_ids, meter, settings.governance_threshold, work, "close")
    message = f"{len(outcome.processed_ids)} Sales Order(s) closed."
    if outcome.failed_ids:
        message += f" Failed: {len(outcome.failed_ids)}"
        summary = [f"SO #{fid}: {outcome.failures.get(fid, 'Unknown error')}" for fid in outcome.failed_ids]
        message += "\n\nFailure details:\n" + "\n".join(summary)
    if outcome.governance_stopped:
        message += f"\n\n{outcome.governance_note()}"
    return outcome.to_response(message)


async def bulk_auto_bill(ledger: Ledger, meter: GovernanceMeter, so_ids: List[str],
                         settings: Optional[Settings] = None) -> BulkActionResponse:
    settings = settings or get_settings()

    async def work(so_id: str) -> Dict[str, Any]:
        invoice = bill_order(ledger, so_id)
        return {
            "invoiceTranid": invoice["invoice_tranid"],
            "invoiceId": invoice["invoice_id"],
            "total": invoice["total"],
        }

    outcome = await process_batch(so_ids, meter, settings.governance_threshold, work, "auto-bill")
    message = f"{len(outcome.processed_ids)} Invoice(s) created."
    if outcome.failed_ids:
        message += f" Failed: {len(outcome.failed_ids)}"
    if outcome.governance_stopped:
        message += f" {outcome.governance_note()}"
    return outcome.to_response(message, invoice_details=outcome.details)


async def bulk_cbsi_bill_je(ledger: Ledger, meter: GovernanceMeter, so_ids: List[str],
                            settings: Optional[Settings] = None) -> BulkActionResponse:
    settings = settings or get_settings()

    async def work(so_id: str) -> Dict[str, Any]:
        result = await cbsi_bill_and_je(ledger, so_id, settings)
        return {
            "invoiceTranid": result["invoice_tranid"],
            "jeTranid": result["je_tranid"],
            "amount": result["amount"],
        }

    outcome = await process_batch(so_ids, meter, settings.cbsi_governance_threshold, work, "cbsi-bill-je")
    message = f"{len(outcome.processed_ids)} CBSI transactions completed."
    if outcome.failed_ids:
        message += f" Failed: {len(outcome.failed_ids)}"
    if outcome.governance_stopped:
        message += f" {outcome.governance_note()}"
    return outcome.to_response(message, cbsi_details=outcome.details)
