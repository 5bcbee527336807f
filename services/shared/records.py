"""Helpers for the loosely-typed documents kept in the record store.

Orders, clients, and companies were written by several generations of the
mobile apps, so the same value can arrive as a string, a number, a Firestore
timestamp payload, or not at all. Everything here is total: bad input yields
``None`` instead of raising.
"""

from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

TWO_PLACES = Decimal("0.01")


def compact(value: Any) -> Any:
    """Recursively drop ``None`` values from mappings and sequences.

    Applied to every document before it is written; the store rejects
    undefined values.
    """
    if isinstance(value, dict):
        return {str(k): compact(v) for k, v in value.items() if v is not None}
    if isinstance(value, list | tuple):
        return [compact(v) for v in value if v is not None]
    return value


def get_path(record: Any, path: str) -> Any:
    """Read a dotted path (``"client.email"``) from nested mappings."""
    current = record
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


def to_decimal(value: Any) -> Decimal | None:
    """Convert numbers and numeric strings to Decimal."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int | float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return None
        try:
            result = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None
    return result if result.is_finite() else None


def round_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half away from zero."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_datetime(value: Any) -> datetime | None:
    """Convert stored timestamps to timezone-aware UTC datetimes.

    Accepts datetimes, dates, ISO strings, epoch milliseconds, and the
    ``{"seconds": ..., "nanoseconds": ...}`` shape exported from Firestore.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_datetime(datetime.fromisoformat(text))
        except ValueError:
            return None
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if isinstance(seconds, int | float) and not isinstance(seconds, bool):
            nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
            try:
                return datetime.fromtimestamp(seconds + nanos / 1e9, tz=UTC)
            except (OverflowError, OSError, ValueError, TypeError):
                return None
    return None
