"""
Page rendering: report data in, HTML out

Pages are plain string.Template files under templates/; every value placed
into markup goes through escape().
"""
import logging
from pathlib import Path
from string import Template
from typing import Any, Dict, List

from ..models.schemas import CustomerSummary, MasterListReport
from .formatting import escape, format_currency, format_date

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent.parent / "templates"


def render_template(name: str, **values: Any) -> str:
    with open(TEMPLATE_DIR / name, "r", encoding="utf-8") as f:
        return Template(f.read()).safe_substitute(**values)


def build_summary_card(title: str, count: int, amount: float) -> str:
    return (
        '<div class="summary-card">'
        f'<div class="summary-card-title">{escape(title)}</div>'
        f'<div class="summary-card-count">{count} record{"" if count == 1 else "s"}</div>'
        f'<div class="summary-card-amount">{format_currency(amount)}</div>'
        "</div>"
    )


def build_transaction_table(rows: List[Dict[str, Any]]) -> str:
    body = []
    for index, txn in enumerate(rows):
        amount = float(txn.get("amount_remaining") or 0.0)
        is_credit = amount < 0
        record_type = "creditmemo" if is_credit else "invoice"
        row_class = "even-row" if index % 2 == 0 else "odd-row"
        body.append(
            f'<tr class="{row_class}">'
            f'<td><a href="/records/{record_type}/{escape(txn.get("id"))}" target="_blank">{escape(txn.get("tranid"))}</a></td>'
            f'<td>{escape(txn.get("externalid") or "-")}</td>'
            f'<td>{escape(txn.get("id"))}</td>'
            f'<td>{format_date(txn.get("trandate"))}</td>'
            f'<td>{escape(txn.get("customer_name") or "-")}</td>'
            f'<td class="amount{" credit-amount" if is_credit else ""}">{format_currency(amount)}</td>'
            f'<td>{escape(txn.get("status_name") or "-")}</td>'
            f'<td>{escape(txn.get("customer_category") or "-")}</td>'
            f'<td>{escape(txn.get("department_name") or "-")}</td>'
            f'<td class="center">{"&#10003;" if txn.get("has_service_line") == "Y" else ""}</td>'
            f'<td class="center">{"&#10003;" if txn.get("has_service_category") == "Y" else ""}</td>'
            "</tr>"
        )

    displayed_total = sum(float(txn.get("amount_remaining") or 0.0) for txn in rows)
    count = len(rows)
    return (
        '<table class="data-table" id="table-transactions">'
        "<thead><tr>"
        "<th>Transaction #</th><th>External ID</th><th>Internal ID</th><th>Date</th><th>Customer</th>"
        "<th>Amount Remaining</th><th>Status</th><th>Customer Category</th><th>Selling Location</th>"
        "<th>Service Selling Location</th><th>Qualified Category</th>"
        "</tr></thead>"
        f"<tbody>{''.join(body)}</tbody>"
        "<tfoot><tr>"
        f'<td colspan="5" class="summary-label">Total ({count} record{"" if count == 1 else "s"}):</td>'
        f'<td class="amount">{format_currency(displayed_total)}</td>'
        '<td colspan="5"></td>'
        "</tr></tfoot>"
        "</table>"
    )


def build_customer_table(customers: List[CustomerSummary]) -> str:
    if not customers:
        return '<p class="no-results">No customers found.</p>'
    body = "".join(
        "<tr>"
        f"<td>{escape(c.customer_name or '-')}</td>"
        f'<td class="center">{c.invoice_count}</td>'
        f'<td class="center">{c.credit_count}</td>'
        f'<td class="amount{" credit-amount" if c.net_amount < 0 else ""}">{format_currency(c.net_amount)}</td>'
        "</tr>"
        for c in customers
    )
    return (
        '<table class="data-table" id="table-customers">'
        "<thead><tr><th>Customer</th><th>Invoices</th><th>Credit Memos</th><th>Net Amount</th></tr></thead>"
        f"<tbody>{body}</tbody>"
        "</table>"
    )


def render_master_list_page(report: MasterListReport) -> str:
    totals = report.totals
    displayed = len(report.rows)
    if report.truncated:
        count_display = (
            f"Displaying {displayed:,} of {totals.total_count:,} records "
            '<span class="truncated-note">Totals calculated from all records</span>'
        )
    else:
        count_display = f"{displayed:,}"

    if displayed:
        detail = build_transaction_table(report.rows)
    else:
        detail = '<p class="no-results">No open service transactions found.</p>'

    cards = (
        build_summary_card("Open Invoices", totals.invoice_count, totals.invoice_total)
        + build_summary_card("Open Credit Memos", totals.credit_count, -totals.credit_total)
        + build_summary_card("Net Amount", totals.total_count, totals.net_total)
    )
    return render_template(
        "master_list.html",
        balance_as_of=escape(report.balance_as_of),
        summary_cards=cards,
        count_display=count_display,
        transaction_table=detail,
        customer_count=len(report.customers),
        customer_table=build_customer_table(report.customers),
    )


def render_portal_page() -> str:
    return render_template("portal.html")


def render_index() -> str:
    return render_template("index.html")
