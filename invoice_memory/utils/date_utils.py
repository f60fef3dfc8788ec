"""
Date utility functions for invoice processing.

Provides parsing of the literal date formats found on European invoices,
ISO conversion and timestamp helpers.
"""

import re
from datetime import UTC, date, datetime


# Supported invoice date formats with their strptime formats
DATE_FORMATS: list[tuple[str, str]] = [
    (r"^\d{1,2}\.\d{1,2}\.\d{4}$", "%d.%m.%Y"),  # DD.MM.YYYY
    (r"^\d{1,2}-\d{1,2}-\d{4}$", "%d-%m-%Y"),  # DD-MM-YYYY
    (r"^\d{4}-\d{1,2}-\d{1,2}$", "%Y-%m-%d"),  # YYYY-MM-DD
    (r"^\d{1,2}/\d{1,2}/\d{4}$", "%d/%m/%Y"),  # DD/MM/YYYY
]

_SHORT_DATE = re.compile(r"^(\d{1,2})[./](\d{1,2})[./](\d{2,4})$")


def parse_date(
    date_string: str | None,
    default: date | None = None,
) -> date | None:
    """
    Parse an invoice date string into a date object.

    Args:
        date_string: String representation of date.
        default: Value returned when parsing fails.

    Returns:
        Parsed date object or default value.

    Example:
        parse_date("15.01.2024") -> date(2024, 1, 15)
        parse_date("15-01-2024") -> date(2024, 1, 15)
        parse_date("2024-01-15") -> date(2024, 1, 15)
    """
    if not date_string:
        return default

    date_string = date_string.strip()

    for pattern, date_format in DATE_FORMATS:
        if re.match(pattern, date_string):
            try:
                return datetime.strptime(date_string, date_format).date()
            except ValueError:
                continue

    return default


def to_iso_date(date_string: str) -> str:
    """
    Convert a day-first date (DD.MM.YYYY, DD/MM/YY, ...) to YYYY-MM-DD.

    Two-digit years are read as 20YY. Strings that are not day-first dates
    are returned unchanged.
    """
    match = _SHORT_DATE.match(date_string.strip())
    if not match:
        return date_string

    day, month, year = match.groups()
    if len(year) == 2:
        year = "20" + year
    return f"{year}-{month.zfill(2)}-{day.zfill(2)}"


def days_between(first: date, second: date) -> int:
    """Absolute number of calendar days between two dates."""
    return abs((second - first).days)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def get_current_timestamp() -> str:
    """Current UTC time as an ISO-8601 string."""
    return utc_now().isoformat()


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp, treating naive values as UTC.

    Raises:
        ValueError: If the value is not an ISO-8601 timestamp.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
