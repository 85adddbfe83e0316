"""
Display formatting shared by both reports
"""
import html
import re
from datetime import date, datetime
from typing import Any, Optional

STATUS_PREFIX = re.compile(r"^Sales Order\s*:\s*", re.IGNORECASE)
ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def escape(text: Any) -> str:
    if text is None or text == "":
        return ""
    return html.escape(str(text), quote=True)


def format_currency(value: Any) -> str:
    """Signed dollars: -1234.5 -> '-$1,234.50', None -> '-'"""
    if value is None or value == "":
        return "-"
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return "-"
    prefix = "-$" if amount < 0 else "$"
    return f"{prefix}{abs(amount):,.2f}"


def format_amount(value: Any) -> str:
    """Bare amount with grouping, used inside the portal where the $ is in the markup"""
    if value is None or value == "":
        return "0.00"
    try:
        return f"{float(value):,.2f}"
    except (TypeError, ValueError):
        return "0.00"


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for parser in (
        lambda s: date.fromisoformat(s[:10]),
        lambda s: datetime.strptime(s, "%m/%d/%Y").date(),
    ):
        try:
            return parser(text)
        except ValueError:
            continue
    return None


def format_date(value: Any, placeholder: str = "-") -> str:
    """Month/day/year without zero padding; placeholder when empty"""
    if value is None or value == "":
        return placeholder
    parsed = _parse_date(value)
    if parsed is None:
        return str(value)
    return f"{parsed.month}/{parsed.day}/{parsed.year}"


def to_input_date(value: Any) -> str:
    """Anything date-like -> YYYY-MM-DD for <input type="date">, '' if unparseable"""
    if value is None or value == "":
        return ""
    if isinstance(value, str) and ISO_DATE.match(value):
        return value
    parsed = _parse_date(value)
    return parsed.isoformat() if parsed else ""


def picker_to_display_date(value: Optional[str]) -> str:
    """Calendar picker YYYY-MM-DD -> M/D/YYYY; anything else is passed through"""
    if not value:
        return ""
    if not ISO_DATE.match(value):
        return value
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        return value
    return f"{parsed.month}/{parsed.day}/{parsed.year}"


def strip_status_prefix(status_text: Optional[str]) -> str:
    return STATUS_PREFIX.sub("", status_text or "")
