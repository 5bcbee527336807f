"""Order normalization.

Orders were recorded by several app generations, so the same fact lives
under different field names. Each fact is resolved by trying an ordered
list of named sources and taking the first non-empty value; the lists
below are the precedence, first entry wins.

Everything in this module is pure and total: missing or malformed fields
fall through to the next source and finally to a default.
"""

from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from services.invoicing.schema import OrderLine
from services.shared.records import get_path, round_money, to_datetime, to_decimal

UNSPECIFIED_PRODUCT = "منتج غير محدد"
DEFAULT_VAT_RATE = Decimal("15")

Accessor = Callable[[dict[str, Any]], Any]
Source = tuple[str, Accessor]


def field(path: str) -> Source:
    """Plain (possibly dotted) field."""
    return path, lambda record: get_path(record, path)


def localized(path: str) -> Source:
    """Field holding either a string or an ``{"ar": ..., "en": ...}`` mapping."""

    def read(record: dict[str, Any]) -> Any:
        value = get_path(record, path)
        if isinstance(value, dict):
            return value.get("ar") or value.get("en")
        return value

    return path, read


PRODUCT_NAME_SOURCES: tuple[Source, ...] = (
    localized("selectedOption.title"),
    localized("product.title"),
    field("productName"),
    localized("service.title"),
    field("category"),
)

QUANTITY_SOURCES: tuple[Source, ...] = (
    field("quantity"),
    field("totalLitre"),
    field("liters"),
    field("amount"),
)

TOTAL_PRICE_SOURCES: tuple[Source, ...] = (
    field("totalPrice"),
    field("totalCost"),
    field("amount"),
)

ORDER_ID_SOURCES: tuple[Source, ...] = (
    field("id"),
    field("docId"),
)

# Client reference codes: the client's own spellings first, then the order's.
CLIENT_REF_ID_SOURCES: tuple[Source, ...] = (
    field("refId"),
    field("refid"),
    field("clientRefId"),
)
ORDER_REF_ID_SOURCES: tuple[Source, ...] = (
    field("refId"),
    field("refid"),
)

ORDER_CLIENT_IDENTITY_SOURCES: tuple[Source, ...] = (
    field("clientId"),
    field("client.email"),
    field("clientEmail"),
    field("client.uid"),
)


def _as_text(value: Any) -> str | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, int | float | Decimal):
        return str(value)
    return None


def _as_number(value: Any) -> Decimal | None:
    number = to_decimal(value)
    if number is None or number == 0:
        return None
    return number


def resolve_text(record: dict[str, Any] | None, sources: Sequence[Source]) -> str | None:
    """First non-empty text value among ``sources``."""
    if not isinstance(record, dict):
        return None
    for _name, accessor in sources:
        text = _as_text(accessor(record))
        if text is not None:
            return text
    return None


def resolve_number(record: dict[str, Any] | None, sources: Sequence[Source]) -> Decimal | None:
    """First non-zero numeric value among ``sources``."""
    if not isinstance(record, dict):
        return None
    for _name, accessor in sources:
        number = _as_number(accessor(record))
        if number is not None:
            return number
    return None


def calculate_vat(amount: Decimal, vat_rate: Decimal = DEFAULT_VAT_RATE) -> Decimal:
    """VAT on an amount before tax (unrounded)."""
    return amount * vat_rate / Decimal("100")


def normalize(order: dict[str, Any], vat_rate: Decimal = DEFAULT_VAT_RATE) -> OrderLine:
    """Extract product, quantity, unit price, and before-tax amount from an order.

    The stored order total is assumed to include VAT.

    Args:
        order: Raw order document
        vat_rate: VAT rate in percent embedded in the order total

    Returns:
        OrderLine with every field populated
    """
    product = resolve_text(order, PRODUCT_NAME_SOURCES) or UNSPECIFIED_PRODUCT
    quantity = resolve_number(order, QUANTITY_SOURCES) or Decimal("0")
    total_price = resolve_number(order, TOTAL_PRICE_SOURCES) or Decimal("0")

    price_per_unit = total_price / quantity if quantity > 0 else Decimal("0")
    amount_before_tax = total_price / (Decimal("1") + vat_rate / Decimal("100"))

    return OrderLine(
        product=product,
        quantity=quantity,
        price_per_unit=round_money(price_per_unit),
        amount_before_tax=round_money(amount_before_tax),
    )


def order_id(order: dict[str, Any]) -> str | None:
    return resolve_text(order, ORDER_ID_SOURCES)


def order_date(order: dict[str, Any], default: datetime | None = None) -> datetime:
    """Order date, or ``default`` (now) when absent or unparseable."""
    return to_datetime(order.get("orderDate")) or default or datetime.now(UTC)


def resolve_ref_id(order: dict[str, Any], client: dict[str, Any] | None) -> str | None:
    """External reference code: client spellings, then order spellings, else None."""
    return resolve_text(client, CLIENT_REF_ID_SOURCES) or resolve_text(order, ORDER_REF_ID_SOURCES)


def order_client_identity(order: dict[str, Any]) -> str | None:
    return resolve_text(order, ORDER_CLIENT_IDENTITY_SOURCES)


def order_company_identity(order: dict[str, Any]) -> str | None:
    """Owning company of a company order; None for client orders."""
    return _as_text(order.get("companyUid"))
