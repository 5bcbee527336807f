"""Unit tests for billing period helpers."""

from datetime import UTC, date, datetime

import pytest

from services.invoicing.periods import (
    convert_month_name_to_arabic,
    end_of_month,
    first_day_of_month,
    last_day_of_month,
    month_key,
    month_name,
    month_name_arabic,
    parse_month_key,
    previous_month,
)


def test_month_labels() -> None:
    assert month_name(date(2025, 11, 14)) == "November 2025"
    assert month_name_arabic(date(2025, 11, 14)) == "نوفمبر - 2025"
    assert month_key(date(2025, 3, 1)) == "2025-03"


def test_convert_month_name_to_arabic() -> None:
    assert convert_month_name_to_arabic("January 2025") == "يناير - 2025"
    assert convert_month_name_to_arabic("March") == "مارس"
    assert convert_month_name_to_arabic("unknown") == "unknown"


def test_month_bounds() -> None:
    """Monthly invoices are stamped on the last day; the window includes it fully."""
    assert first_day_of_month(date(2024, 2, 10)) == datetime(2024, 2, 1, tzinfo=UTC)
    assert last_day_of_month(date(2024, 2, 10)) == datetime(2024, 2, 29, tzinfo=UTC)
    end = end_of_month(date(2025, 11, 1))
    assert (end.day, end.hour, end.minute, end.second) == (30, 23, 59, 59)


def test_parse_month_key() -> None:
    assert parse_month_key("2025-11") == date(2025, 11, 1)


@pytest.mark.parametrize("key", ["2025", "2025-13", "Nov-2025", ""])
def test_parse_month_key_rejects_malformed(key: str) -> None:
    with pytest.raises(ValueError):
        parse_month_key(key)


def test_previous_month_wraps_year() -> None:
    assert previous_month(date(2026, 1, 15)) == date(2025, 12, 1)
    assert previous_month(date(2025, 11, 1)) == date(2025, 10, 1)
