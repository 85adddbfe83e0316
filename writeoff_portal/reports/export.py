"""
Excel export of the master list
"""
import logging
from io import BytesIO

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from ..models.schemas import MasterListReport
from .formatting import format_date

logger = logging.getLogger(__name__)

HEADERS = [
    "Transaction #", "External ID", "Internal ID", "Date", "Customer", "Amount Remaining",
    "Status", "Customer Category", "Selling Location", "Service Selling Location", "Qualified Category",
]
COLUMN_WIDTHS = [16, 16, 12, 12, 32, 18, 22, 20, 20, 12, 12]
AMOUNT_FORMAT = '"$"#,##0.00;-"$"#,##0.00'
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

header_fill = PatternFill(start_color="1E3A5F", end_color="1E3A5F", fill_type="solid")
header_font = Font(bold=True, color="FFFFFF", size=11)


def export_filename(report: MasterListReport) -> str:
    return f"service_writeoff_master_list_{report.balance_as_of}.xlsx"


def build_workbook(report: MasterListReport) -> bytes:
    """One sheet: header row, one row per transaction, totals row"""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Service Transactions"

    for col, header in enumerate(HEADERS, start=1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)

    row = 2
    for txn in report.rows:
        amount = float(txn.get("amount_remaining") or 0.0)
        values = [
            txn.get("tranid"),
            txn.get("externalid") or "-",
            txn.get("id"),
            format_date(txn.get("trandate")),
            txn.get("customer_name") or "-",
            amount,
            txn.get("status_name") or "-",
            txn.get("customer_category") or "-",
            txn.get("department_name") or "-",
            "Y" if txn.get("has_service_line") == "Y" else "",
            "Y" if txn.get("has_service_category") == "Y" else "",
        ]
        for col, value in enumerate(values, start=1):
            ws.cell(row=row, column=col, value=value)
        ws.cell(row=row, column=6).number_format = AMOUNT_FORMAT
        row += 1

    count = report.totals.total_count
    ws.cell(row=row, column=1, value=f"Total ({count} record{'' if count == 1 else 's'})").font = Font(bold=True)
    total_cell = ws.cell(row=row, column=6, value=report.totals.net_total)
    total_cell.font = Font(bold=True)
    total_cell.number_format = AMOUNT_FORMAT

    for col, width in enumerate(COLUMN_WIDTHS, start=1):
        ws.column_dimensions[get_column_letter(col)].width = width
    ws.freeze_panes = "A2"

    buffer = BytesIO()
    wb.save(buffer)
    logger.info(f"Exported {len(report.rows)} master list row(s) as of {report.balance_as_of}")
    return buffer.getvalue()
