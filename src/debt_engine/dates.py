"""Date parsing for ledger documents and imported spreadsheets."""

from datetime import date, datetime, timedelta
from typing import Any, Optional

# Spreadsheet serial day 0 (accounts for the 1900 leap-year bug)
EXCEL_EPOCH = date(1899, 12, 30)

DATE_FORMATS = [
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d.%m.%Y",
]


def from_excel_serial(serial: float) -> date:
    """Convert a spreadsheet serial day number to a date."""
    return EXCEL_EPOCH + timedelta(days=int(serial))


def parse_date(value: Any) -> Optional[date]:
    """Parse a date from the formats seen in ledger payloads and uploads.

    Args:
        value: A date, datetime, spreadsheet serial number or string.

    Returns:
        The calendar date, or None if the value cannot be parsed.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return from_excel_serial(value) if value > 0 else None

    text = str(value).strip()
    if not text:
        return None

    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass

    # Drop timezone suffixes and fractional noise the ISO parser rejects
    if len(text) > 19 and text[10] == "T":
        try:
            return datetime.strptime(text[:19], "%Y-%m-%dT%H:%M:%S").date()
        except ValueError:
            pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    try:
        serial = float(text)
        return from_excel_serial(serial) if serial > 0 else None
    except (ValueError, OverflowError):
        return None
