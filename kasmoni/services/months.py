"""Calendar month utilities for YYYY-MM payout keys.

Groups, slots, payments and payouts all key their month as a 7-character
``YYYY-MM`` string. These helpers parse, shift and format those keys without
going through ``datetime`` so no timezone can shift a month.

Example:
    >>> month_span("2025-01", "2025-10")
    10

    >>> add_months("2025-11", 3)
    '2026-02'

    >>> format_month("2025-08")
    'August 2025'
"""

import re
from datetime import date
from typing import Optional

from kasmoni.services.errors import ValidationError

MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")

MONTH_NAMES = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]


def parse_month(value: Optional[str]) -> tuple[int, int]:
    """
    Parse a ``YYYY-MM`` month key into a (year, month) tuple.

    Args:
        value: Month key such as "2025-08"

    Returns:
        Tuple of (year, month)

    Raises:
        ValidationError: If value is empty, malformed, or month is not 1-12
    """
    if not value or not isinstance(value, str):
        raise ValidationError(f"Month is required in YYYY-MM format, got {value!r}")

    match = MONTH_PATTERN.match(value.strip())
    if not match:
        raise ValidationError(f"Invalid month {value!r}, expected YYYY-MM")

    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month {value!r}, month must be 01-12")
    return year, month


def normalize_month(value: str) -> str:
    """Return the canonical ``YYYY-MM`` form of a month key."""
    year, month = parse_month(value)
    return f"{year:04d}-{month:02d}"


def current_month(today: Optional[date] = None) -> str:
    """Month key for today (or the given date)."""
    today = today or date.today()
    return f"{today.year:04d}-{today.month:02d}"


def month_span(start: str, end: str) -> int:
    """
    Number of months from start to end, both inclusive.

    Args:
        start: First month key
        end: Last month key

    Returns:
        (end_year - start_year) * 12 + (end_month - start_month) + 1.
        Zero or negative when end precedes start.
    """
    start_year, start_month = parse_month(start)
    end_year, end_month = parse_month(end)
    return (end_year - start_year) * 12 + (end_month - start_month) + 1


def add_months(value: str, count: int) -> str:
    """Shift a month key by ``count`` months (negative goes back)."""
    year, month = parse_month(value)
    index = year * 12 + (month - 1) + count
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def format_month(value: str) -> str:
    """Format a month key for display, e.g. "2025-08" -> "August 2025"."""
    year, month = parse_month(value)
    return f"{MONTH_NAMES[month - 1]} {year}"


__all__ = [
    "parse_month",
    "normalize_month",
    "current_month",
    "month_span",
    "add_months",
    "format_month",
]
