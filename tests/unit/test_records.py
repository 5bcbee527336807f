"""Unit tests for record helpers (compaction, money, timestamps)."""

from datetime import UTC, date, datetime
from decimal import Decimal

from services.shared.records import compact, get_path, round_money, to_datetime, to_decimal


class TestCompact:
    """Test recursive None stripping."""

    def test_strips_nested_none_values(self) -> None:
        """None disappears at every depth, falsy values stay."""
        record = {
            "email": "a@x.com",
            "phone": None,
            "address": {"city": "Riyadh", "street": None},
            "tags": ["fleet", None],
            "balance": 0,
            "notes": "",
        }

        assert compact(record) == {
            "email": "a@x.com",
            "address": {"city": "Riyadh"},
            "tags": ["fleet"],
            "balance": 0,
            "notes": "",
        }

    def test_scalars_pass_through(self) -> None:
        assert compact("x") == "x"
        assert compact(5) == 5


def test_get_path_reads_dotted_keys() -> None:
    """Dotted paths walk nested mappings and stop at missing keys."""
    record = {"client": {"email": "a@x.com"}, "flat": "v"}

    assert get_path(record, "client.email") == "a@x.com"
    assert get_path(record, "flat") == "v"
    assert get_path(record, "client.uid") is None
    assert get_path(record, "flat.nested") is None


def test_to_decimal_accepts_numbers_and_strings() -> None:
    assert to_decimal(115) == Decimal("115")
    assert to_decimal(57.5) == Decimal("57.5")
    assert to_decimal("1,234.50") == Decimal("1234.50")
    assert to_decimal("abc") is None
    assert to_decimal(True) is None
    assert to_decimal(float("nan")) is None


def test_round_money_rounds_half_up() -> None:
    assert round_money(Decimal("0.125")) == Decimal("0.13")
    assert round_money(Decimal("52.5")) == Decimal("52.50")


class TestToDatetime:
    """Test timestamp coercion to aware UTC datetimes."""

    def test_naive_datetime_is_utc(self) -> None:
        assert to_datetime(datetime(2025, 11, 3, 10)) == datetime(2025, 11, 3, 10, tzinfo=UTC)

    def test_date(self) -> None:
        assert to_datetime(date(2025, 11, 3)) == datetime(2025, 11, 3, tzinfo=UTC)

    def test_iso_string_with_z(self) -> None:
        assert to_datetime("2025-11-03T10:00:00Z") == datetime(2025, 11, 3, 10, tzinfo=UTC)

    def test_epoch_milliseconds(self) -> None:
        assert to_datetime(0) == datetime(1970, 1, 1, tzinfo=UTC)

    def test_firestore_timestamp(self) -> None:
        value = {"seconds": 86400, "nanoseconds": 0}
        assert to_datetime(value) == datetime(1970, 1, 2, tzinfo=UTC)

    def test_garbage_is_none(self) -> None:
        assert to_datetime("not a date") is None
        assert to_datetime({"foo": 1}) is None
        assert to_datetime(None) is None
