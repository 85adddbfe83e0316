"""
Row sets -> summary figures and renderable rows

Pure functions: nothing here touches the ledger or the database.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..models.schemas import (
    CustomerSummary, LoadDataResponse, MasterListReport, MasterListTotals, PortalSummary
)
from .formatting import (
    escape, format_amount, format_date, strip_status_prefix, to_input_date
)

logger = logging.getLogger(__name__)

ROW_ACTIONS = (
    ("queue", "Queue for Bill & Write-Off"),
    ("close", "Close (Cancel)"),
    ("auto-bill", "Auto-Bill (Invoice)"),
    ("cbsi-bill-je", "CBSI (Bill and JE)"),
    ("add-note", "Add Research Note"),
)


# ----------------------------------------------------------------------
# Master list
# ----------------------------------------------------------------------

def dedupe_rows(rows: List[Dict[str, Any]], key: str = "id") -> Tuple[List[Dict[str, Any]], int]:
    """Keep the first row per id, preserving order"""
    seen = set()
    deduped = []
    duplicate_count = 0
    for row in rows:
        row_id = row.get(key)
        if row_id in seen:
            duplicate_count += 1
            logger.debug(f"Duplicate found: transaction {row_id} ({row.get('tranid')}) - skipping")
            continue
        seen.add(row_id)
        deduped.append(row)

    if duplicate_count:
        logger.info(f"Found and removed {duplicate_count} duplicate transaction(s)")
    return deduped, duplicate_count


def summarize_transactions(rows: List[Dict[str, Any]]) -> MasterListTotals:
    """Totals by summation; credits are the rows with a negative amount"""
    totals = MasterListTotals(total_count=len(rows))
    for row in rows:
        amount = float(row.get("amount_remaining") or 0.0)
        if amount < 0:
            totals.credit_count += 1
            totals.credit_total += abs(amount)
        else:
            totals.invoice_count += 1
            totals.invoice_total += amount
        totals.net_total += amount

    totals.invoice_total = round(totals.invoice_total, 2)
    totals.credit_total = round(totals.credit_total, 2)
    totals.net_total = round(totals.net_total, 2)
    return totals


def build_master_list(
    balance_as_of: str,
    rows: List[Dict[str, Any]],
    aggregate: Optional[MasterListTotals] = None,
    customers: Optional[List[Dict[str, Any]]] = None
) -> MasterListReport:
    """
    When fewer distinct documents were loaded than the aggregate counted,
    the report is truncated and its totals come from the aggregate;
    otherwise they are summed from the rows.
    """
    deduped, duplicate_count = dedupe_rows(rows)
    aggregate = aggregate or MasterListTotals()
    truncated = aggregate.total_count > len(deduped)
    totals = aggregate if truncated else summarize_transactions(deduped)

    if truncated:
        logger.warning(f"Master list truncated: displaying {len(deduped)} of {aggregate.total_count} records")

    return MasterListReport(
        balance_as_of=balance_as_of,
        rows=deduped,
        totals=totals,
        customers=[
            CustomerSummary(
                customer_id=c.get("customer_id"),
                customer_name=c.get("customer_name") or "",
                invoice_count=int(c.get("invoice_count") or 0),
                credit_count=int(c.get("credit_count") or 0),
                net_amount=round(float(c.get("net_amount") or 0.0), 2),
            )
            for c in (customers or [])
        ],
        truncated=truncated,
        duplicate_count=duplicate_count,
    )


# ----------------------------------------------------------------------
# Portal
# ----------------------------------------------------------------------

def summarize_portal(orders: List[Dict[str, Any]]) -> PortalSummary:
    summary = PortalSummary(summary_total=len(orders))
    for order in orders:
        lines = int(order.get("unbilled_line_count") or 0)
        amount = float(order.get("total_unbilled_amount") or 0.0)
        summary.summary_total_lines += lines
        summary.summary_total_amount += amount
        if order.get("queued_date"):
            summary.queued_total += 1
            summary.queued_total_lines += lines
            summary.queued_total_amount += amount

    summary.summary_total_amount = round(summary.summary_total_amount, 2)
    summary.queued_total_amount = round(summary.queued_total_amount, 2)
    return summary


def build_line_items_tooltip(items: List[Dict[str, Any]]) -> str:
    if not items:
        return ""
    rows = "".join(
        "<tr>"
        f'<td class="tooltip-item">{escape(item.get("item_name"))}</td>'
        f'<td class="tooltip-qty">{float(item.get("quantity") or 0):g}</td>'
        f'<td class="tooltip-amount">${format_amount(item.get("net_amount"))}</td>'
        "</tr>"
        for item in items
    )
    return (
        '<table class="tooltip-table">'
        "<tr><th>Item</th><th>Qty</th><th>Amount</th></tr>"
        f"{rows}"
        "</table>"
    )


def build_order_link(so_id: Any, so_number: Optional[str]) -> str:
    if not so_id or not so_number:
        return '<span class="no-data"></span>'
    return (
        f'<a href="/records/salesorder/{escape(so_id)}" target="_blank" class="transaction-link">'
        f"{escape(so_number)}</a>"
    )


def build_portal_row(record: Dict[str, Any]) -> str:
    so_id = escape(record.get("so_id"))
    unbilled_lines = int(record.get("unbilled_line_count") or 0)
    unbilled_amount = float(record.get("total_unbilled_amount") or 0.0)
    research_notes = record.get("research_notes") or ""
    follow_up_input = to_input_date(record.get("follow_up_date"))

    data_attributes = {
        "so-id": so_id,
        "unbilled-lines": unbilled_lines,
        "unbilled-amount": f"{unbilled_amount:.2f}",
        "job-details": record.get("job_details"),
        "billing-completed-by": record.get("billing_completed_by"),
        "job-state": record.get("job_state"),
        "parts-status": record.get("parts_status"),
        "scheduled-date": to_input_date(record.get("scheduled_date")),
        "job-started": to_input_date(record.get("job_started")),
        "job-completed": to_input_date(record.get("job_completed")),
        "ship-date": to_input_date(record.get("ship_date")),
        "warranty-type": record.get("warranty_type"),
        "research-notes": research_notes,
        "follow-up-date": follow_up_input,
        "line-items": build_line_items_tooltip(record.get("unbilled_items") or []),
    }
    attributes = " ".join(f'data-{name}="{escape(value)}"' for name, value in data_attributes.items())

    options = '<option value=""></option>' + "".join(
        f'<option value="{value}">{escape(label)}</option>' for value, label in ROW_ACTIONS
    )
    note_style = "" if research_notes else ' style="display:none;"'
    note_icon = (
        f'<span class="research-note-icon" id="note-icon-{so_id}"{note_style}'
        ' title="Has research notes">&#128221;</span>'
    )
    queued_marker = ""
    if record.get("queued_date"):
        queued_marker = (
            '<span class="queued-checkmark">&#10003;</span>'
            f'<span class="unqueue-x" data-so-id="{so_id}" title="Remove from queue">&#10005;</span>'
        )

    cells = [
        f'<td class="col-checkbox"><input type="checkbox" class="so-checkbox" value="{so_id}"></td>',
        f'<td class="col-actions"><select class="actions-dropdown" data-so-id="{so_id}">{options}</select></td>',
        f'<td class="col-slate">{build_order_link(record.get("so_id"), record.get("so_number"))}{note_icon}</td>',
        f'<td class="col-slate follow-up-cell" id="follow-up-cell-{so_id}">{format_date(follow_up_input, "")}</td>',
        f'<td class="col-slate queued-cell" id="queued-cell-{so_id}">{queued_marker}</td>',
        f'<td class="col-slate">{escape(record.get("job_id"))}</td>',
        f'<td class="col-slate">{escape(record.get("warranty_type"))}</td>',
        f'<td class="col-slate">{escape(record.get("epic_auth"))}</td>',
        f'<td class="col-slate">{escape(record.get("customer_name"))}</td>',
        f'<td class="col-slate">{format_date(record.get("so_date"), "")}</td>',
        f'<td class="col-slate">{format_date(record.get("ship_date"), "")}</td>',
        f'<td class="col-slate">{format_date(record.get("est_ship_date"), "")}</td>',
        f'<td class="col-slate">{escape(strip_status_prefix(record.get("so_status_text")))}</td>',
        f'<td class="col-teal amount">{unbilled_lines}</td>',
        f'<td class="col-teal amount">${format_amount(unbilled_amount)}</td>',
    ]
    return f'<tr class="line-items-row" {attributes}>' + "".join(cells) + "</tr>"


def build_table_body(orders: List[Dict[str, Any]]) -> str:
    return "".join(build_portal_row(order) for order in orders)


def build_load_data(orders: List[Dict[str, Any]]) -> LoadDataResponse:
    summary = summarize_portal(orders)
    return LoadDataResponse(
        success=True,
        table_body_html=build_table_body(orders),
        **summary.model_dump()
    )
