"""arq worker runner.

Run with: python -m services.queue.worker
Or: arq services.queue.tasks.WorkerSettings

Runs queued backfill and reconcile jobs and the scheduled monthly close.
"""

import logging

from arq import run_worker

from services.queue.tasks import WorkerSettings
from services.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


def configure_worker(settings: Settings) -> type[WorkerSettings]:
    """Apply queue limits and the Redis connection to the worker settings."""
    WorkerSettings.redis_settings = WorkerSettings.get_redis_settings()
    WorkerSettings.max_jobs = settings.queue_max_jobs
    WorkerSettings.job_timeout = settings.queue_job_timeout
    return WorkerSettings


def main() -> None:
    """Run the arq worker."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info(
        f"Starting invoicing worker (redis={settings.redis_url}, "
        f"store={settings.store_backend}, max_jobs={settings.queue_max_jobs}, "
        f"job_timeout={settings.queue_job_timeout}s)"
    )
    logger.info(
        f"Monthly close scheduled on day {settings.monthly_close_day} "
        f"at {settings.monthly_close_hour:02d}:00 UTC"
    )

    run_worker(configure_worker(settings))  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
