"""Per-order invoices for individual clients.

Every qualifying order gets exactly one ``Client`` invoice. Re-running a
client's batch is safe: orders whose id already appears on an existing
client invoice are skipped, so only missing invoices are ever added.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from services.invoicing.directory import OrderDirectory
from services.invoicing.identity import identity_keys, preferred_identifier
from services.invoicing.metrics import invoicing_batch_errors_total
from services.invoicing.normalizer import (
    calculate_vat,
    normalize,
    order_date,
    order_id,
    resolve_ref_id,
)
from services.invoicing.numbering import InvoiceNumberAllocator
from services.invoicing.repository import InvoiceRepository
from services.invoicing.schema import Invoice, InvoiceItem, InvoiceType
from services.shared.records import compact, round_money

logger = logging.getLogger(__name__)


class ClientInvoiceGenerator:
    """Builds and persists one invoice per client order."""

    def __init__(
        self,
        repository: InvoiceRepository,
        directory: OrderDirectory,
        allocator: InvoiceNumberAllocator,
        vat_rate: Decimal = Decimal("15"),
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.directory = directory
        self.allocator = allocator
        self.vat_rate = vat_rate
        self._now = now or (lambda: datetime.now(UTC))

    async def generate(self, order: dict[str, Any], client: dict[str, Any]) -> Invoice:
        """Create the invoice for a single client order.

        Args:
            order: Raw order document
            client: Client record (snapshotted onto the invoice)

        Returns:
            The persisted invoice including its store id

        Raises:
            StoreError: If the invoice cannot be written
        """
        billed_at = order_date(order, default=self._now())
        invoice_number = await self.allocator.allocate()

        line = normalize(order, self.vat_rate)
        vat = calculate_vat(line.amount_before_tax, self.vat_rate)
        total = line.amount_before_tax + vat

        item = InvoiceItem(
            product=line.product,
            quantity=line.quantity,
            price_per_unit=line.price_per_unit,
            amount_before_tax=line.amount_before_tax,
            vat=round_money(vat),
            total=round_money(total),
        )

        invoice = Invoice(
            invoice_number=invoice_number,
            type=InvoiceType.CLIENT,
            created_at=billed_at,
            generated_at=self._now(),
            client_data=compact(dict(client or {})),
            order_id=order_id(order),
            ref_id=resolve_ref_id(order, client),
            items=[item],
            subtotal=line.amount_before_tax,
            vat_amount=round_money(vat),
            total=round_money(total),
        )
        return await self.repository.create(invoice)

    async def invoiced_order_ids(self, client_keys: Iterable[str]) -> set[str]:
        """Order ids that already have a client invoice for this client."""
        existing = await self.repository.fetch_invoices(
            InvoiceType.CLIENT, client_identity=set(client_keys)
        )
        return {inv.order_id for inv in existing if inv.order_id}

    async def invoice_orders(
        self, client: dict[str, Any], orders: Iterable[dict[str, Any]]
    ) -> tuple[list[Invoice], list[str]]:
        """Invoice every order of one client that has no invoice yet.

        A failure on one order is logged and recorded; the remaining orders
        are still processed.

        Returns:
            Tuple of (created invoices, error messages)
        """
        label = preferred_identifier(client) or "unknown"
        invoiced = await self.invoiced_order_ids(identity_keys(client))

        created: list[Invoice] = []
        errors: list[str] = []
        for order in orders:
            oid = order_id(order)
            if oid and oid in invoiced:
                logger.debug(f"Order {oid} of client {label} already invoiced, skipping")
                continue
            try:
                invoice = await self.generate(order, client)
            except Exception as e:
                message = f"Error creating invoice for client {label}, order {oid}: {e}"
                logger.exception(message)
                invoicing_batch_errors_total.labels(job="client_orders").inc()
                errors.append(message)
                continue
            created.append(invoice)
            if oid:
                invoiced.add(oid)
        return created, errors

    async def process_client_orders(self, client_identity: str) -> list[str]:
        """Invoice all not-yet-invoiced orders of a client.

        Args:
            client_identity: Client email, uid, or id

        Returns:
            Ids of the invoices created by this call (empty if the client is unknown)
        """
        client = await self.directory.find_client(client_identity)
        if client is None:
            logger.warning(f"Client not found: {client_identity}")
            return []

        orders = await self.directory.orders_for_client(identity_keys(client) | {client_identity})
        created, _errors = await self.invoice_orders(client, orders)
        return [inv.id for inv in created if inv.id]
