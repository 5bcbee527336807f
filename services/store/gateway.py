"""Resilient gateway in front of a record store.

Adds to every store call:
- A timeout (a timed-out call is a transient StoreUnavailableError)
- Retry with exponential backoff for idempotent reads
- Prometheus timing per operation

Writes (insert, delete, transaction) are never retried here: replaying an
insert could create a second document.

Based on tenacity documentation:
https://tenacity.readthedocs.io/en/latest/
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import TypeVar

from prometheus_client import Histogram
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.shared.config import Settings
from services.store.base import (
    Record,
    RecordFilter,
    RecordStore,
    StoreUnavailableError,
    Transaction,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

store_operation_duration_seconds = Histogram(
    "store_operation_duration_seconds",
    "Record store call duration in seconds",
    ["operation"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)


class StoreGateway:
    """Timeouts, retries, and metrics around a RecordStore."""

    def __init__(self, store: RecordStore, settings: Settings) -> None:
        """Initialize gateway.

        Args:
            store: Backend record store
            settings: Application settings with store timeout/retry policy
        """
        self.store = store
        self.settings = settings

    async def _timed(self, operation: str, call: Awaitable[T]) -> T:
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(call, timeout=self.settings.store_timeout_seconds)
        except TimeoutError:
            raise StoreUnavailableError(
                f"Store {operation} timed out after {self.settings.store_timeout_seconds}s"
            ) from None
        finally:
            store_operation_duration_seconds.labels(operation=operation).observe(
                time.perf_counter() - start
            )

    async def find(self, collection: str, record_filter: RecordFilter | None = None) -> list[Record]:
        """Query a collection, retrying transient failures."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StoreUnavailableError),
            stop=stop_after_attempt(self.settings.store_retry_attempts),
            wait=wait_exponential_jitter(
                initial=self.settings.store_retry_initial_wait,
                max=self.settings.store_retry_max_wait,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return await self._timed("find", self.store.find(collection, record_filter))
        raise AssertionError("unreachable")  # pragma: no cover

    async def insert(self, collection: str, record: Record) -> str:
        return await self._timed("insert", self.store.insert(collection, record))

    async def delete(self, collection: str, record_id: str) -> None:
        await self._timed("delete", self.store.delete(collection, record_id))

    async def transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        return await self._timed("transaction", self.store.transaction(fn))

    def lock(self, key: str) -> AbstractAsyncContextManager[None]:
        return self.store.lock(key, self.settings.lock_timeout_seconds)

    async def health_check(self) -> bool:
        try:
            return await self._timed("ping", self.store.ping())
        except StoreUnavailableError as e:
            logger.warning(f"Store health check failed: {e}")
            return False

    async def close(self) -> None:
        await self.store.close()
