"""Unit tests for order normalization.

Field precedence encodes real data-quality fallbacks, so each chain is
tested in order: the first non-empty source wins.
"""

from datetime import UTC, datetime
from decimal import Decimal

from services.invoicing.normalizer import (
    UNSPECIFIED_PRODUCT,
    calculate_vat,
    normalize,
    order_client_identity,
    order_company_identity,
    order_date,
    order_id,
    resolve_ref_id,
)


class TestProductName:
    """Test product name resolution."""

    def test_selected_option_title_wins(self) -> None:
        order = {
            "selectedOption": {"title": {"ar": "ديزل", "en": "Diesel"}},
            "product": {"title": "Fuel"},
            "productName": "Gasoline 91",
        }
        assert normalize(order).product == "ديزل"

    def test_localized_title_falls_back_to_english(self) -> None:
        order = {"product": {"title": {"en": "Diesel"}}}
        assert normalize(order).product == "Diesel"

    def test_product_name_then_service_then_category(self) -> None:
        assert normalize({"productName": "Gasoline 95", "category": "fuel"}).product == "Gasoline 95"
        assert normalize({"service": {"title": "Car wash"}, "category": "x"}).product == "Car wash"
        assert normalize({"category": "fuel"}).product == "fuel"

    def test_placeholder_when_nothing_set(self) -> None:
        assert normalize({}).product == UNSPECIFIED_PRODUCT


class TestQuantityAndPrice:
    """Test quantity and money derivation."""

    def test_quantity_chain(self) -> None:
        assert normalize({"totalLitre": 40, "liters": 10}).quantity == Decimal("40")
        assert normalize({"quantity": 0, "liters": "12.5"}).quantity == Decimal("12.5")
        assert normalize({}).quantity == Decimal("0")

    def test_vat_is_taken_out_of_the_total(self) -> None:
        line = normalize({"quantity": 10, "totalPrice": 115})

        assert line.amount_before_tax == Decimal("100.00")
        assert line.price_per_unit == Decimal("11.50")

    def test_total_cost_fallback(self) -> None:
        line = normalize({"quantity": 5, "totalCost": "57.5"})
        assert line.amount_before_tax == Decimal("50.00")

    def test_zero_quantity_gives_zero_unit_price(self) -> None:
        line = normalize({"totalPrice": 115})
        assert line.price_per_unit == Decimal("0")
        assert line.amount_before_tax == Decimal("100.00")

    def test_custom_vat_rate(self) -> None:
        line = normalize({"quantity": 1, "totalPrice": 105}, vat_rate=Decimal("5"))
        assert line.amount_before_tax == Decimal("100.00")


def test_calculate_vat() -> None:
    assert calculate_vat(Decimal("300")) == Decimal("45")
    assert calculate_vat(Decimal("100"), Decimal("5")) == Decimal("5")


def test_order_id_falls_back_to_doc_id() -> None:
    assert order_id({"id": "o1", "docId": "d1"}) == "o1"
    assert order_id({"docId": "d1"}) == "d1"
    assert order_id({}) is None


def test_order_date_parses_or_defaults() -> None:
    default = datetime(2025, 1, 1, tzinfo=UTC)
    assert order_date({"orderDate": "2025-11-03T08:00:00Z"}, default) == datetime(
        2025, 11, 3, 8, tzinfo=UTC
    )
    assert order_date({"orderDate": "garbage"}, default) == default


def test_ref_id_prefers_client_spellings() -> None:
    order = {"refId": "ORDER-REF"}

    assert resolve_ref_id(order, {"refId": "C-1"}) == "C-1"
    assert resolve_ref_id(order, {"refid": "C-2"}) == "C-2"
    assert resolve_ref_id(order, {"clientRefId": "C-3"}) == "C-3"
    assert resolve_ref_id(order, {}) == "ORDER-REF"
    assert resolve_ref_id({}, None) is None


def test_owner_identities() -> None:
    assert order_client_identity({"clientId": "u1", "client": {"email": "a@x.com"}}) == "u1"
    assert order_client_identity({"client": {"email": "a@x.com"}}) == "a@x.com"
    assert order_client_identity({"clientEmail": "b@x.com"}) == "b@x.com"
    assert order_client_identity({"client": {"uid": "u9"}}) == "u9"
    assert order_client_identity({}) is None
    assert order_company_identity({"companyUid": "C1"}) == "C1"
    assert order_company_identity({"companyUid": ""}) is None
