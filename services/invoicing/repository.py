"""Invoice persistence.

Queries load the candidate invoices and filter owner identity in memory:
the owner snapshot may carry the identity under uid, email, or id, and a
store-side equality filter can only test one of them.
"""

import logging
from collections.abc import Iterable

from services.invoicing.identity import identity_keys
from services.invoicing.metrics import invoices_created_total
from services.invoicing.schema import EPOCH, Invoice, InvoiceType
from services.store.gateway import StoreGateway

logger = logging.getLogger(__name__)

INVOICES = "invoices"


def _as_keys(identity: str | Iterable[str] | None) -> set[str]:
    if identity is None:
        return set()
    if isinstance(identity, str):
        return {identity}
    return {key for key in identity if key}


def invoice_sort_key(invoice: Invoice) -> tuple:
    """Billing date, then write time; use with ``reverse=True`` for newest first."""
    return (invoice.created_at, invoice.generated_at or EPOCH)


class InvoiceRepository:
    """Reads and writes the ``invoices`` collection."""

    def __init__(self, gateway: StoreGateway) -> None:
        self.gateway = gateway

    async def fetch_invoices(
        self,
        invoice_type: InvoiceType | None = None,
        company_identity: str | Iterable[str] | None = None,
        client_identity: str | Iterable[str] | None = None,
    ) -> list[Invoice]:
        """Fetch invoices, newest first.

        Args:
            invoice_type: Only invoices of this type
            company_identity: Identifier(s) matched against companyData uid/email/id
            client_identity: Identifier(s) matched against clientData email/uid/id

        Returns:
            Matching invoices sorted by createdAt descending
        """
        record_filter = {"type": str(invoice_type)} if invoice_type else None
        records = await self.gateway.find(INVOICES, record_filter)
        invoices = [Invoice.from_record(record) for record in records]

        company_keys = _as_keys(company_identity)
        if company_keys:
            invoices = [inv for inv in invoices if identity_keys(inv.company_data) & company_keys]

        client_keys = _as_keys(client_identity)
        if client_keys:
            invoices = [inv for inv in invoices if identity_keys(inv.client_data) & client_keys]

        invoices.sort(key=invoice_sort_key, reverse=True)
        return invoices

    async def fetch_invoice_by_id(self, invoice_id: str) -> Invoice | None:
        records = await self.gateway.find(INVOICES, {"id": invoice_id})
        return Invoice.from_record(records[0]) if records else None

    async def create(self, invoice: Invoice) -> Invoice:
        """Persist a new invoice and return it with its store id."""
        invoice_id = await self.gateway.insert(INVOICES, invoice.to_document())
        invoices_created_total.labels(type=str(invoice.type)).inc()
        logger.info(f"Created {invoice.type} invoice {invoice.invoice_number} ({invoice_id})")
        return invoice.model_copy(update={"id": invoice_id})

    async def delete(self, invoice_id: str) -> None:
        await self.gateway.delete(INVOICES, invoice_id)
