"""Unit tests for async queue functionality.

Tests task definitions and queue configuration.
"""

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from services.invoicing.periods import previous_month
from services.invoicing.schema import MonthlyRunResult
from services.invoicing.service import InvoicingService
from services.queue.tasks import (
    JobResult,
    WorkerSettings,
    monthly_close,
    reconcile_job,
    run_backfill_job,
    shutdown,
)
from services.queue.worker import configure_worker
from services.shared.config import Settings
from services.store.gateway import StoreGateway
from services.store.memory import InMemoryRecordStore


@pytest.fixture
def settings() -> Settings:
    """Create test settings with queue enabled."""
    return Settings(
        queue_enabled=True,
        redis_url="redis://localhost:6379/0",
        queue_max_jobs=5,
        queue_job_timeout=60,
    )


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Create mock Redis connection."""
    mock = AsyncMock()
    mock.set = AsyncMock()
    mock.get = AsyncMock()
    return mock


@pytest.fixture
def service(settings: Settings) -> InvoicingService:
    """Create invoicing service over a small in-memory history."""
    store = InMemoryRecordStore()
    store.seed("clients", [{"id": "c1", "email": "a@x.com"}])
    store.seed(
        "orders",
        [{"id": "o1", "clientId": "a@x.com", "orderDate": "2025-11-03T08:00:00Z", "totalPrice": 115}],
    )
    return InvoicingService(StoreGateway(store, settings), settings)


class TestJobResult:
    """Test JobResult model."""

    def test_job_result_processing(self) -> None:
        """Should create processing job result."""
        result = JobResult(
            job_id="job-123",
            job="backfill",
            status="processing",
            created_at=datetime.now(UTC).isoformat(),
        )
        assert result.status == "processing"
        assert result.result is None

    def test_job_result_failed(self) -> None:
        """Should create failed job result."""
        result = JobResult(
            job_id="job-123",
            job="reconcile",
            status="failed",
            error="Redis unavailable",
            created_at=datetime.now(UTC).isoformat(),
            completed_at=datetime.now(UTC).isoformat(),
        )
        assert result.status == "failed"
        assert "Redis" in str(result.error)


class TestBatchTasks:
    """Test the batch job tasks."""

    @pytest.mark.asyncio
    async def test_backfill_job_success(
        self, settings: Settings, mock_redis: AsyncMock, service: InvoicingService
    ) -> None:
        """Should run the backfill and store its summary."""
        ctx = {"redis": mock_redis, "settings": settings, "invoicing_service": service, "job_id": "job-1"}

        result = await run_backfill_job(ctx)

        assert result["status"] == "completed"
        assert result["job"] == "backfill"
        assert result["result"]["clientInvoicesCreated"] == 1
        assert mock_redis.set.await_count == 2

        key, payload = mock_redis.set.await_args.args
        assert key == "job:job-1"
        assert json.loads(payload)["status"] == "completed"

    @pytest.mark.asyncio
    async def test_reconcile_job_passes_dry_run(
        self, settings: Settings, mock_redis: AsyncMock
    ) -> None:
        mock_service = MagicMock()
        mock_service.reconcile_monthly_invoices = AsyncMock(
            return_value=MagicMock(model_dump=MagicMock(return_value={"totalDuplicates": 0}))
        )
        ctx = {"redis": mock_redis, "invoicing_service": mock_service, "job_id": "job-2"}

        result = await reconcile_job(ctx, dry_run=True)

        assert result["status"] == "completed"
        assert result["result"] == {"totalDuplicates": 0}
        mock_service.reconcile_monthly_invoices.assert_awaited_once_with(dry_run=True)

    @pytest.mark.asyncio
    async def test_job_failure_is_recorded(self, settings: Settings, mock_redis: AsyncMock) -> None:
        """Should report a failed job instead of raising."""
        mock_service = MagicMock()
        mock_service.run_backfill = AsyncMock(side_effect=RuntimeError("store exploded"))
        ctx = {"redis": mock_redis, "invoicing_service": mock_service, "job_id": "job-3"}

        result = await run_backfill_job(ctx)

        assert result["status"] == "failed"
        assert result["error"] == "store exploded"
        assert result["completed_at"] is not None

    @pytest.mark.asyncio
    async def test_monthly_close_invoices_previous_month(self, mock_redis: AsyncMock) -> None:
        mock_service = MagicMock()
        mock_service.process_all_company_monthly_invoices = AsyncMock(
            return_value=MonthlyRunResult(month_name="October 2025", invoices_created=3)
        )
        ctx = {"redis": mock_redis, "invoicing_service": mock_service, "job_id": "job-4"}

        result = await monthly_close(ctx)

        expected_month = previous_month(datetime.now(UTC).date())
        mock_service.process_all_company_monthly_invoices.assert_awaited_once_with(expected_month)
        assert result["result"]["invoicesCreated"] == 3

    @pytest.mark.asyncio
    async def test_shutdown_closes_service(self) -> None:
        mock_service = MagicMock()
        mock_service.close = AsyncMock()

        await shutdown({"invoicing_service": mock_service})

        mock_service.close.assert_awaited_once()


class TestWorkerSettings:
    """Test worker configuration."""

    def test_registered_functions(self) -> None:
        names = {f.__name__ for f in WorkerSettings.functions}
        assert names == {"run_backfill_job", "reconcile_job"}

    def test_monthly_close_is_scheduled(self) -> None:
        [job] = WorkerSettings.cron_jobs
        assert job.coroutine is monthly_close

    def test_redis_settings_from_url(self, settings: Settings) -> None:
        with patch("services.queue.tasks.get_settings", return_value=settings):
            redis_settings = WorkerSettings.get_redis_settings()

        assert redis_settings.host == "localhost"
        assert redis_settings.port == 6379
        assert redis_settings.database == 0

    def test_configure_worker_applies_queue_limits(self, settings: Settings) -> None:
        with patch("services.queue.tasks.get_settings", return_value=settings):
            worker_settings = configure_worker(settings)

        assert worker_settings.max_jobs == 5
        assert worker_settings.job_timeout == 60
        assert worker_settings.redis_settings.host == "localhost"
