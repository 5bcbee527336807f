"""Invoicing service facade.

Wires the allocator, generators, batch runner, and reconciler over one
store gateway and exposes the operations used by the API, the arq worker,
and the command line jobs.
"""

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any, Literal

from services.invoicing.backfill import BatchRunner
from services.invoicing.client_invoices import ClientInvoiceGenerator
from services.invoicing.directory import OrderDirectory
from services.invoicing.errors import ClientNotFoundError, CompanyNotFoundError
from services.invoicing.monthly_invoices import CompanyMonthlyAggregator
from services.invoicing.numbering import InvoiceNumberAllocator
from services.invoicing.reconciler import DuplicateReconciler
from services.invoicing.repository import InvoiceRepository
from services.invoicing.schema import (
    BackfillResult,
    Invoice,
    InvoiceType,
    MonthlyRunResult,
    ReconciliationResult,
)
from services.shared.config import Settings, get_settings
from services.store.factory import create_store_gateway
from services.store.gateway import StoreGateway

logger = logging.getLogger(__name__)


class InvoicingService:
    """Entry point for invoice generation and reconciliation."""

    def __init__(
        self,
        gateway: StoreGateway,
        settings: Settings,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize service.

        Args:
            gateway: Record store gateway shared by every component
            settings: Application settings (VAT rate, allocation, concurrency)
            now: Clock for generatedAt stamps and undated orders
        """
        self.gateway = gateway
        self.settings = settings
        now = now or (lambda: datetime.now(UTC))

        self.repository = InvoiceRepository(gateway)
        self.directory = OrderDirectory(gateway)
        self.allocator = InvoiceNumberAllocator(
            gateway, max_attempts=settings.invoice_number_max_attempts
        )
        self.client_invoices = ClientInvoiceGenerator(
            self.repository, self.directory, self.allocator, settings.vat_rate, now
        )
        self.monthly_invoices = CompanyMonthlyAggregator(
            self.repository, self.directory, self.allocator, gateway, settings.vat_rate, now
        )
        self.batch = BatchRunner(
            self.directory,
            self.client_invoices,
            self.monthly_invoices,
            concurrency=settings.backfill_concurrency,
        )
        self.reconciler = DuplicateReconciler(self.repository, self.directory)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "InvoicingService":
        """Build the service over the configured store backend."""
        settings = settings or get_settings()
        logger.info(f"Initializing invoicing service with store backend: {settings.store_backend}")
        return cls(create_store_gateway(settings), settings)

    async def generate_client_invoice(self, order: dict[str, Any], client: dict[str, Any]) -> Invoice:
        return await self.client_invoices.generate(order, client)

    async def generate_company_monthly_invoice(
        self,
        company_identity: str,
        month: date,
        orders: list[dict[str, Any]],
        company: dict[str, Any] | None,
    ) -> Invoice:
        return await self.monthly_invoices.generate(company_identity, month, orders, company)

    async def process_client_orders(self, client_identity: str) -> list[str]:
        return await self.client_invoices.process_client_orders(client_identity)

    async def process_company_monthly_invoices(self, company_identity: str, month: date) -> str | None:
        return await self.monthly_invoices.process_company_monthly_invoices(company_identity, month)

    async def run_backfill(self) -> BackfillResult:
        return await self.batch.run_backfill()

    async def reconcile_monthly_invoices(self, dry_run: bool = False) -> ReconciliationResult:
        return await self.reconciler.reconcile_monthly_invoices(dry_run=dry_run)

    async def process_all_client_invoices(self) -> int:
        return await self.batch.process_all_client_invoices()

    async def process_all_company_monthly_invoices(self, month: date) -> MonthlyRunResult:
        return await self.batch.process_all_company_monthly_invoices(month)

    async def fetch_invoices(
        self,
        invoice_type: InvoiceType | None = None,
        company_identity: str | None = None,
        client_identity: str | None = None,
    ) -> list[Invoice]:
        return await self.repository.fetch_invoices(invoice_type, company_identity, client_identity)

    async def fetch_invoice_by_id(self, invoice_id: str) -> Invoice | None:
        return await self.repository.fetch_invoice_by_id(invoice_id)

    async def identify_user_type(self, identifier: str) -> Literal["company", "client"] | None:
        return await self.directory.identify_user_type(identifier)

    async def require_client(self, client_identity: str) -> dict[str, Any]:
        """Client record for an identity.

        Raises:
            ClientNotFoundError: If no client carries the identifier
        """
        client = await self.directory.find_client(client_identity)
        if client is None:
            raise ClientNotFoundError(f"Client not found: {client_identity}")
        return client

    async def require_company(self, company_identity: str) -> dict[str, Any]:
        """Company record for an identity.

        Raises:
            CompanyNotFoundError: If no company carries the identifier
        """
        company = await self.directory.find_company(company_identity)
        if company is None:
            raise CompanyNotFoundError(f"Company not found: {company_identity}")
        return company

    async def health_check(self) -> bool:
        return await self.gateway.health_check()

    async def close(self) -> None:
        await self.gateway.close()
