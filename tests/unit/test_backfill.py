"""Unit tests for the backfill batch runner."""

from datetime import UTC, date, datetime
from typing import Any
from unittest.mock import patch

import pytest

from services.invoicing.schema import InvoiceType
from services.invoicing.service import InvoicingService
from services.shared.config import Settings
from services.store.base import StoreUnavailableError
from services.store.gateway import StoreGateway
from services.store.memory import InMemoryRecordStore


@pytest.fixture
def store() -> InMemoryRecordStore:
    """Create in-memory store with mixed client/company history."""
    store = InMemoryRecordStore()
    store.seed("clients", [{"id": "c1", "uid": "U1", "email": "a@x.com"}])
    store.seed("companies", [{"id": "C9", "uid": "UC", "email": "fleet@acme.com"}])
    store.seed(
        "orders",
        [
            # Client orders, keyed two different ways
            {"id": "o1", "clientId": "a@x.com", "orderDate": "2025-11-03T08:00:00Z", "totalPrice": 115},
            {"id": "o2", "client": {"uid": "U1"}, "orderDate": "2025-11-04T08:00:00Z", "totalPrice": 230},
            # Company orders over two months
            {"id": "o3", "companyUid": "UC", "orderDate": "2025-11-05T08:00:00Z", "totalPrice": 115},
            {"id": "o4", "companyUid": "UC", "orderDate": "2025-11-20T08:00:00Z", "totalPrice": 115},
            {"id": "o5", "companyUid": "UC", "orderDate": "2025-10-20T08:00:00Z", "totalPrice": 115},
            # Company missing from the directory, but snapshotted on the order
            {
                "id": "o6",
                "companyUid": "SNAP",
                "company": {"uid": "SNAP", "name": "Snapshot Co"},
                "orderDate": "2025-11-07T08:00:00Z",
                "totalPrice": 57.5,
            },
            # Data-quality problems
            {"id": "o7", "totalPrice": 10},
            {"id": "o8", "clientId": "ghost@x.com", "totalPrice": 10},
            {"id": "o9", "companyUid": "GONE", "orderDate": "2025-11-01T08:00:00Z", "totalPrice": 10},
        ],
    )
    return store


@pytest.fixture
def service(store: InMemoryRecordStore) -> InvoicingService:
    """Create invoicing service over the seeded store."""
    settings = Settings(backfill_concurrency=2)
    return InvoicingService(
        StoreGateway(store, settings), settings, now=lambda: datetime(2025, 12, 1, tzinfo=UTC)
    )


DATA_ERRORS = [
    "Order o7 has no client identifier and no companyUid",
    "Client ghost@x.com not found in client map",
    "Company GONE not found in company map or order data",
]


class TestRunBackfill:
    """Test the full backfill."""

    @pytest.mark.asyncio
    async def test_creates_client_and_monthly_invoices(self, service: InvoicingService) -> None:
        result = await service.run_backfill()

        assert result.client_invoices_created == 2
        assert result.company_invoices_created == 3
        assert result.errors == DATA_ERRORS

        monthly = await service.fetch_invoices(InvoiceType.COMPANY_MONTHLY)
        assert sorted((inv.company_data["uid"], inv.month_name) for inv in monthly) == [
            ("SNAP", "November 2025"),
            ("UC", "November 2025"),
            ("UC", "October 2025"),
        ]

    @pytest.mark.asyncio
    async def test_rerun_creates_nothing(self, service: InvoicingService) -> None:
        await service.run_backfill()
        result = await service.run_backfill()

        assert result.client_invoices_created == 0
        assert result.company_invoices_created == 0
        assert result.errors == DATA_ERRORS
        assert len(await service.fetch_invoices()) == 5

    @pytest.mark.asyncio
    async def test_company_referenced_by_uid_and_email_bills_every_order(
        self, service: InvoicingService, store: InMemoryRecordStore
    ) -> None:
        """Orders naming the company by email fold into its uid-keyed month."""
        store.seed(
            "orders",
            [{"id": "o10", "companyUid": "fleet@acme.com", "orderDate": "2025-11-25T08:00:00Z", "totalPrice": 230}],
        )

        result = await service.run_backfill()

        assert result.company_invoices_created == 3
        [november] = [
            inv
            for inv in await service.fetch_invoices(InvoiceType.COMPANY_MONTHLY)
            if inv.company_data["uid"] == "UC" and inv.month_name == "November 2025"
        ]
        assert sorted(o["id"] for o in november.orders) == ["o10", "o3", "o4"]
        assert november.total == 460

    @pytest.mark.asyncio
    async def test_missing_client_is_reported_once(
        self, service: InvoicingService, store: InMemoryRecordStore
    ) -> None:
        store.seed("orders", [{"id": "o11", "clientId": "ghost@x.com", "totalPrice": 20}])

        result = await service.run_backfill()

        assert result.errors == DATA_ERRORS

    @pytest.mark.asyncio
    async def test_company_failure_is_isolated(self, service: InvoicingService) -> None:
        aggregator = service.monthly_invoices
        real = aggregator.generate_or_existing

        async def flaky(identity: str, month: date, orders: list, company: Any) -> Any:
            if month.month == 10:
                raise StoreUnavailableError("down")
            return await real(identity, month, orders, company)

        with patch.object(aggregator, "generate_or_existing", side_effect=flaky):
            result = await service.run_backfill()

        assert result.company_invoices_created == 2
        assert "Error processing company UC for 2025-10: down" in result.errors
        assert result.client_invoices_created == 2

    @pytest.mark.asyncio
    async def test_load_failure_returns_summary(self, service: InvoicingService) -> None:
        with patch.object(
            service.directory, "all_orders", side_effect=StoreUnavailableError("down")
        ):
            result = await service.run_backfill()

        assert result.client_invoices_created == 0
        assert result.company_invoices_created == 0
        assert result.errors == ["Error loading orders, clients, or companies: down"]


class TestProcessAll:
    """Test the per-owner batch entry points."""

    @pytest.mark.asyncio
    async def test_process_all_client_invoices(self, service: InvoicingService) -> None:
        assert await service.process_all_client_invoices() == 2
        assert await service.process_all_client_invoices() == 0

    @pytest.mark.asyncio
    async def test_process_all_company_monthly_invoices(self, service: InvoicingService) -> None:
        result = await service.process_all_company_monthly_invoices(date(2025, 11, 1))

        assert result.month_name == "November 2025"
        assert result.invoices_created == 1
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_company_errors_are_collected(self, service: InvoicingService) -> None:
        with patch.object(
            service.monthly_invoices,
            "process_company_monthly_invoices",
            side_effect=StoreUnavailableError("down"),
        ):
            result = await service.process_all_company_monthly_invoices(date(2025, 11, 1))

        assert result.invoices_created == 0
        assert result.errors == ["Error processing company UC: down"]

