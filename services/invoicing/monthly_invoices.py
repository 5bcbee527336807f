"""Monthly aggregated invoices for corporate accounts.

One ``Company Monthly Invoice`` covers all of a company's orders in a
calendar month: order lines are merged by product, and the invoice is
stamped with the last day of the month.

Company identity is recorded inconsistently upstream (uid on some
records, email or document id on others), so the existing-invoice check
matches on any shared identifier rather than one exact key. The check and
the write run under a per (company, month) lock so two concurrent runs
cannot both conclude that no invoice exists.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from services.invoicing.directory import OrderDirectory
from services.invoicing.identity import identity_keys, preferred_identifier
from services.invoicing.normalizer import calculate_vat, normalize, order_id
from services.invoicing.numbering import InvoiceNumberAllocator
from services.invoicing.periods import (
    end_of_month,
    first_day_of_month,
    last_day_of_month,
    month_key,
    month_name,
)
from services.invoicing.repository import InvoiceRepository
from services.invoicing.schema import Invoice, InvoiceItem, InvoiceType
from services.shared.records import compact, round_money, to_datetime
from services.store.gateway import StoreGateway

logger = logging.getLogger(__name__)


@dataclass
class _RunningItem:
    product: str
    quantity: Decimal
    price_per_unit: Decimal
    amount_before_tax: Decimal
    vat: Decimal
    total: Decimal


def aggregate_items(orders: Iterable[dict[str, Any]], vat_rate: Decimal) -> list[InvoiceItem]:
    """Merge order lines by product name, in first-seen order.

    Quantities, before-tax amounts, VAT, and totals accumulate; the unit
    price keeps the first order's value.
    """
    running: dict[str, _RunningItem] = {}
    for order in orders:
        line = normalize(order, vat_rate)
        vat = calculate_vat(line.amount_before_tax, vat_rate)
        item = running.get(line.product)
        if item is None:
            running[line.product] = _RunningItem(
                product=line.product,
                quantity=line.quantity,
                price_per_unit=line.price_per_unit,
                amount_before_tax=line.amount_before_tax,
                vat=vat,
                total=line.amount_before_tax + vat,
            )
        else:
            item.quantity += line.quantity
            item.amount_before_tax += line.amount_before_tax
            item.vat += vat
            item.total += line.amount_before_tax + vat

    return [
        InvoiceItem(
            product=item.product,
            quantity=item.quantity,
            price_per_unit=item.price_per_unit,
            amount_before_tax=round_money(item.amount_before_tax),
            vat=round_money(item.vat),
            total=round_money(item.total),
        )
        for item in running.values()
    ]


def snapshot_orders(orders: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Copy orders for embedding, stamping each with its resolved id."""
    return [compact({**order, "id": order_id(order)}) for order in orders]


def orders_in_month(orders: Iterable[dict[str, Any]], month: date) -> list[dict[str, Any]]:
    """Orders dated inside ``month`` (undated orders are excluded)."""
    start, end = first_day_of_month(month), end_of_month(month)
    return [
        order
        for order in orders
        if (dated := to_datetime(order.get("orderDate"))) is not None and start <= dated <= end
    ]


class CompanyMonthlyAggregator:
    """Builds one invoice per company per calendar month."""

    def __init__(
        self,
        repository: InvoiceRepository,
        directory: OrderDirectory,
        allocator: InvoiceNumberAllocator,
        gateway: StoreGateway,
        vat_rate: Decimal = Decimal("15"),
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.directory = directory
        self.allocator = allocator
        self.gateway = gateway
        self.vat_rate = vat_rate
        self._now = now or (lambda: datetime.now(UTC))

    async def find_existing(self, company_keys: set[str], month: date) -> Invoice | None:
        """Existing monthly invoice for any of the company's identifiers and this month."""
        label = month_name(month)
        candidates = await self.repository.fetch_invoices(
            InvoiceType.COMPANY_MONTHLY, company_identity=company_keys
        )
        for invoice in candidates:
            if invoice.month_name != label:
                continue
            if (invoice.created_at.year, invoice.created_at.month) != (month.year, month.month):
                continue
            if identity_keys(invoice.company_data) & company_keys:
                return invoice
        return None

    async def generate_or_existing(
        self,
        company_identity: str,
        month: date,
        orders: list[dict[str, Any]],
        company: dict[str, Any] | None,
    ) -> tuple[Invoice, bool]:
        """Create the month's invoice unless one already exists.

        Returns:
            Tuple of (invoice, created) where created is False when an
            existing invoice was returned unchanged
        """
        label = month_name(month)
        company_identifier = preferred_identifier(company) or company_identity
        # Lock on the stored record's identifier so uid and email callers share one lock
        record = await self.directory.find_company(company_identifier)
        if record is None and company_identifier != company_identity:
            record = await self.directory.find_company(company_identity)
        if company is None:
            company = record
        if record is not None:
            company_identifier = preferred_identifier(record) or company_identifier
        company_keys = (
            identity_keys(company) | identity_keys(record) | {company_identity, company_identifier}
        )

        async with self.gateway.lock(f"company-monthly:{company_identifier}:{month_key(month)}"):
            existing = await self.find_existing(company_keys, month)
            if existing is not None:
                logger.info(
                    f"Invoice already exists for company {company_identifier} for {label}, "
                    f"returning existing invoice {existing.id}"
                )
                return existing, False

            invoice_number = await self.allocator.allocate()
            items = aggregate_items(orders, self.vat_rate)

            invoice = Invoice(
                invoice_number=invoice_number,
                type=InvoiceType.COMPANY_MONTHLY,
                created_at=last_day_of_month(month),
                generated_at=self._now(),
                company_data=compact(dict(company or {})),
                month_name=label,
                orders=snapshot_orders(orders),
                items=items,
                subtotal=round_money(sum((i.amount_before_tax for i in items), Decimal("0"))),
                vat_amount=round_money(sum((i.vat for i in items), Decimal("0"))),
                total=round_money(sum((i.total for i in items), Decimal("0"))),
            )
            return await self.repository.create(invoice), True

    async def generate(
        self,
        company_identity: str,
        month: date,
        orders: list[dict[str, Any]],
        company: dict[str, Any] | None,
    ) -> Invoice:
        """Create (or return the existing) monthly invoice for a company.

        Args:
            company_identity: Identifier the caller knows the company by
            month: Any date inside the billed month
            orders: The company's orders for that month
            company: Company record (snapshotted onto the invoice)

        Returns:
            The new invoice, or the existing one for this company and month

        Raises:
            StoreError: If the store cannot be read or written
        """
        invoice, _created = await self.generate_or_existing(company_identity, month, orders, company)
        return invoice

    async def process_company_monthly_invoices(self, company_identity: str, month: date) -> str | None:
        """Invoice one company for one month from its stored orders.

        Returns:
            The new invoice id, or None when an invoice already exists, the
            company is unknown, or it has no orders in the month
        """
        label = month_name(month)
        existing = await self.repository.fetch_invoices(
            InvoiceType.COMPANY_MONTHLY, company_identity=company_identity
        )
        if any(inv.month_name == label for inv in existing):
            logger.info(f"Invoice already exists for company {company_identity} for {label}")
            return None

        company = await self.directory.find_company(company_identity)
        if company is None:
            logger.warning(f"Company not found: {company_identity}")
            return None

        orders = await self.directory.orders_for_company(identity_keys(company) | {company_identity})
        month_orders = orders_in_month(orders, month)
        if not month_orders:
            logger.info(f"No orders found for company {company_identity} in {label}")
            return None

        invoice, created = await self.generate_or_existing(
            company_identity, month, month_orders, company
        )
        return invoice.id if created else None
