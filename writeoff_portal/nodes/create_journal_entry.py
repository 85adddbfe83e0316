"""
CREATE_JOURNAL_ENTRY Node - Post the balancing write-off entry
"""
import logging
from typing import Dict, Any

from ..ledger.base import RecordType
from ..models.state import BillAndJEState
from .context import get_ledger, get_run_settings

logger = logging.getLogger(__name__)


async def create_journal_entry_node(state: BillAndJEState, config) -> Dict[str, Any]:
    """
    CREATE_JOURNAL_ENTRY Stage: debit the write-off account under the service
    department, credit the clearing account against CBSI, both for the
    invoice total.
    """
    logger.info("=" * 50)
    logger.info("STAGE: CREATE_JOURNAL_ENTRY - Posting write-off entry")
    logger.info("=" * 50)

    ledger = get_ledger(config)
    settings = get_run_settings(config)
    amount = state["invoice_total"]
    memo = f"Automated CBSI Adjustment {state['invoice_tranid']}"

    journal = ledger.create(RecordType.JOURNAL_ENTRY)
    journal.set("memo", memo)
    journal.add_line(
        "line",
        account=settings.cbsi_write_off_account_id,
        debit=amount,
        department=settings.service_department_id,
        memo=memo,
    )
    journal.add_line(
        "line",
        account=settings.cbsi_clearing_account_id,
        credit=amount,
        entity=settings.cbsi_entity_id,
        memo=memo,
    )
    je_id = ledger.save(journal)

    # Document number is only known once saved
    je_tranid = ledger.load(RecordType.JOURNAL_ENTRY, je_id).get("tranid")
    logger.info(f"JE {je_tranid} (ID: {je_id}) created with amount: ${amount:.2f}")

    return {
        "current_stage": "CREATE_JOURNAL_ENTRY",
        "je_id": je_id,
        "je_tranid": je_tranid,
    }
