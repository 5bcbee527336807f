"""Calendar helpers for monthly billing periods.

All billing dates are UTC. A monthly invoice is stamped with the last day
of its month so the invoice date always falls inside the billing period.
"""

import calendar
from datetime import UTC, date, datetime, time

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

MONTH_NAMES_ARABIC = [
    "يناير",
    "فبراير",
    "مارس",
    "أبريل",
    "مايو",
    "يونيو",
    "يوليو",
    "أغسطس",
    "سبتمبر",
    "أكتوبر",
    "نوفمبر",
    "ديسمبر",
]


def month_name(month: date) -> str:
    """Format ``"November 2025"``."""
    return f"{MONTH_NAMES[month.month - 1]} {month.year}"


def month_name_arabic(month: date) -> str:
    """Format ``"نوفمبر - 2025"``."""
    return f"{MONTH_NAMES_ARABIC[month.month - 1]} - {month.year}"


def convert_month_name_to_arabic(english_month_name: str) -> str:
    """Convert a ``"January 2025"`` label to ``"يناير - 2025"``.

    Labels in any other shape get the first English month name they contain
    replaced; unknown labels are returned unchanged.
    """
    translations = dict(zip(MONTH_NAMES, MONTH_NAMES_ARABIC, strict=True))
    parts = english_month_name.strip().split(" ")
    if len(parts) >= 2:
        return f"{translations.get(parts[0], parts[0])} - {parts[-1]}"

    for english, arabic in translations.items():
        if english in english_month_name:
            return english_month_name.replace(english, arabic, 1)
    return english_month_name


def first_day_of_month(month: date) -> datetime:
    return datetime(month.year, month.month, 1, tzinfo=UTC)


def last_day_of_month(month: date) -> datetime:
    """Midnight UTC on the last calendar day of ``month``."""
    last = calendar.monthrange(month.year, month.month)[1]
    return datetime(month.year, month.month, last, tzinfo=UTC)


def end_of_month(month: date) -> datetime:
    """Last representable instant of ``month`` (inclusive window bound)."""
    return datetime.combine(last_day_of_month(month).date(), time.max, tzinfo=UTC)


def month_key(month: date) -> str:
    """Format ``"2025-11"``."""
    return f"{month.year}-{month.month:02d}"


def parse_month_key(key: str) -> date:
    """Parse ``"2025-11"`` into the first day of that month.

    Raises:
        ValueError: If the key is not ``YYYY-MM``
    """
    try:
        year_text, month_text = key.strip().split("-")
        return date(int(year_text), int(month_text), 1)
    except ValueError:
        raise ValueError(f"Invalid month key: '{key}'. Expected YYYY-MM") from None


def previous_month(today: date) -> date:
    """First day of the month before ``today``."""
    if today.month == 1:
        return date(today.year - 1, 12, 1)
    return date(today.year, today.month - 1, 1)
