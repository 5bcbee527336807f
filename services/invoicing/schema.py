"""Invoice data models.

Documents are persisted with camelCase keys (``invoiceNumber``,
``createdAt``, ``companyData``...) because the back-office renderers and
the mobile apps read the same collection. Python code uses snake_case
attributes; the alias generator maps between the two.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

from services.shared.records import compact, to_datetime

# Decimal in memory, JSON number in the store.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class InvoiceType(StrEnum):
    """Invoice kinds stored in the ``invoices`` collection."""

    CLIENT = "Client"
    COMPANY_MONTHLY = "Company Monthly Invoice"
    SUBSCRIPTION = "Subscription"


class Document(BaseModel):
    """Base model for camelCase store documents."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderLine(Document):
    """Uniform view of one order, whatever fields it was recorded with."""

    product: str
    quantity: Money
    price_per_unit: Money
    amount_before_tax: Money


class InvoiceItem(Document):
    """One billed product line."""

    product: str
    quantity: Money = Decimal("0")
    price_per_unit: Money = Decimal("0")
    amount_before_tax: Money = Decimal("0")
    vat: Money = Decimal("0")
    total: Money = Decimal("0")


class Invoice(Document):
    """Persisted billing document.

    ``created_at`` is the billing date (order date, or last day of the
    month for monthly invoices). ``generated_at`` is when the document was
    written and only orders invoices sharing a billing date.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str | None = Field(None, description="Store-assigned identity")
    invoice_number: str = Field("", description="8-digit human-facing number")
    type: InvoiceType | str = Field(InvoiceType.CLIENT, description="Invoice kind")
    created_at: datetime = Field(EPOCH, description="Billing date")
    generated_at: datetime | None = Field(None, description="Write time")

    # Client invoices
    client_data: dict[str, Any] | None = None
    order_id: str | None = None
    ref_id: str | None = None

    # Company monthly invoices
    company_data: dict[str, Any] | None = None
    month_name: str | None = None
    orders: list[dict[str, Any]] | None = None

    items: list[InvoiceItem] = Field(default_factory=list)
    subtotal: Money = Decimal("0")
    vat_amount: Money = Decimal("0")
    total: Money = Decimal("0")

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, value: Any) -> datetime:
        return to_datetime(value) or EPOCH

    @field_validator("generated_at", mode="before")
    @classmethod
    def _coerce_generated_at(cls, value: Any) -> datetime | None:
        return to_datetime(value)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Invoice":
        """Build an Invoice from a raw store record."""
        return cls.model_validate(record)

    def to_document(self) -> dict[str, Any]:
        """Serialize for persistence: camelCase keys, no id, no null values."""
        return compact(self.model_dump(mode="json", by_alias=True, exclude={"id"}))


class BackfillResult(Document):
    """Outcome of a backfill run."""

    client_invoices_created: int = 0
    company_invoices_created: int = 0
    errors: list[str] = Field(default_factory=list)


class ReconciliationDetail(Document):
    """Audit entry for one company/month that had duplicates."""

    company_id: str
    month_name: str
    kept_invoice_id: str
    deleted_invoice_ids: list[str] = Field(default_factory=list)


class ReconciliationResult(Document):
    """Outcome of a duplicate monthly invoice cleanup."""

    total_duplicates: int = 0
    deleted_count: int = 0
    errors: list[str] = Field(default_factory=list)
    details: list[ReconciliationDetail] = Field(default_factory=list)


class MonthlyRunResult(Document):
    """Outcome of invoicing every company for one month."""

    month_name: str
    invoices_created: int = 0
    errors: list[str] = Field(default_factory=list)
