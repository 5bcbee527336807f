"""Async task definitions for invoicing batch jobs.

Uses arq (async Redis queue) for background task processing.
Runs the backfill, the duplicate reconciliation, and the monthly close
as background jobs.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import logging
from datetime import UTC, datetime
from typing import Any

from arq import cron
from pydantic import BaseModel

from services.invoicing.periods import previous_month
from services.invoicing.service import InvoicingService
from services.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

JOB_RESULT_TTL = 86400  # 24h


class JobResult(BaseModel):
    """Result of a background job.

    Attributes:
        job_id: Unique job identifier
        job: Job name (backfill, reconcile, monthly_close)
        status: Job status (processing, completed, failed)
        result: Run summary (if completed)
        error: Error message (if failed)
        created_at: Job start timestamp
        completed_at: Job completion timestamp
    """

    job_id: str
    job: str
    status: str
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: str
    completed_at: str | None = None


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _service(ctx: dict[str, Any]) -> InvoicingService:
    service: InvoicingService | None = ctx.get("invoicing_service")
    if service is None:
        settings: Settings = ctx.get("settings") or get_settings()
        service = InvoicingService.from_settings(settings)
        ctx["invoicing_service"] = service
    return service


async def _run(ctx: dict[str, Any], job: str, runner: Any) -> dict[str, Any]:
    """Run one batch job, recording its status in Redis."""
    job_id = ctx.get("job_id") or f"{job}-{_now()}"
    redis = ctx["redis"]

    result = JobResult(job_id=job_id, job=job, status="processing", created_at=_now())
    await redis.set(f"job:{job_id}", result.model_dump_json(), ex=JOB_RESULT_TTL)

    try:
        summary = await runner()
        result.result = summary.model_dump(mode="json", by_alias=True)
        result.status = "completed"
    except Exception as e:
        logger.exception(f"Job {job_id} ({job}) failed with error: {e}")
        result.status = "failed"
        result.error = str(e)
    result.completed_at = _now()

    await redis.set(f"job:{job_id}", result.model_dump_json(), ex=JOB_RESULT_TTL)
    logger.info(f"Job {job_id} ({job}) completed with status: {result.status}")
    return result.model_dump()


async def run_backfill_job(ctx: dict[str, Any]) -> dict[str, Any]:
    """Generate invoices for every order that has none.

    Args:
        ctx: arq context (contains redis connection)

    Returns:
        JobResult as dict, with the BackfillResult under ``result``
    """
    logger.info("Starting backfill job")
    return await _run(ctx, "backfill", _service(ctx).run_backfill)


async def reconcile_job(ctx: dict[str, Any], dry_run: bool = False) -> dict[str, Any]:
    """Delete duplicate monthly invoices.

    Args:
        ctx: arq context (contains redis connection)
        dry_run: Only report what would be deleted

    Returns:
        JobResult as dict, with the ReconciliationResult under ``result``
    """
    logger.info(f"Starting reconcile job (dry_run={dry_run})")
    service = _service(ctx)
    return await _run(ctx, "reconcile", lambda: service.reconcile_monthly_invoices(dry_run=dry_run))


async def monthly_close(ctx: dict[str, Any]) -> dict[str, Any]:
    """Invoice every company for the previous calendar month.

    Scheduled as an arq cron job; see ``WorkerSettings.cron_jobs``.
    """
    month = previous_month(datetime.now(UTC).date())
    logger.info(f"Starting monthly close for {month:%Y-%m}")
    service = _service(ctx)
    return await _run(
        ctx, "monthly_close", lambda: service.process_all_company_monthly_invoices(month)
    )


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - initialize services.

    Called once when worker starts. Initializes shared services
    to avoid re-creating them for each job.
    """
    logger.info("Initializing worker services...")
    settings = get_settings()
    ctx["settings"] = settings
    ctx["invoicing_service"] = InvoicingService.from_settings(settings)
    logger.info("Worker services initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cleanup resources."""
    logger.info("Worker shutting down...")
    service: InvoicingService | None = ctx.get("invoicing_service")
    if service is not None:
        await service.close()


def _monthly_close_schedule() -> Any:
    settings = get_settings()
    return cron(
        monthly_close,
        day=settings.monthly_close_day,
        hour=settings.monthly_close_hour,
        minute=0,
        run_at_startup=False,
    )


class WorkerSettings:
    """arq worker settings.

    Defines the worker configuration including:
    - Task functions to register
    - The monthly close cron job
    - Redis connection settings
    - Job timeout settings
    """

    functions = [run_backfill_job, reconcile_job]
    cron_jobs = [_monthly_close_schedule()]
    on_startup = startup
    on_shutdown = shutdown

    # These will be set from environment
    redis_settings = None
    max_jobs = 10
    job_timeout = 3600

    @classmethod
    def get_redis_settings(cls) -> Any:
        """Get Redis settings from configuration."""
        from arq.connections import RedisSettings as ArqRedisSettings

        settings = get_settings()
        return ArqRedisSettings.from_dsn(settings.redis_url)
