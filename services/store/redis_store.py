"""Redis-backed record store.

Each collection is a Redis hash mapping record id to a JSON document.
Queries load the hash and filter in memory; the collections this service
touches are small enough for that, and it avoids maintaining secondary
indexes for every loosely-keyed identity field.

Transactions take a lease lock, stage writes, and commit them in a single
MULTI/EXEC pipeline.

Based on redis-py asyncio documentation:
https://redis.readthedocs.io/en/stable/examples/asyncio_examples.html
"""

import json
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from redis import asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError, RedisError, WatchError
from redis.exceptions import TimeoutError as RedisTimeoutError

from services.shared.config import Settings
from services.store.base import (
    Record,
    RecordFilter,
    RecordNotFoundError,
    RecordStore,
    StoreConflictError,
    StoreError,
    StoreUnavailableError,
    Transaction,
    matches,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _translate(exc: RedisError) -> StoreError:
    if isinstance(exc, RedisConnectionError | RedisTimeoutError):
        return StoreUnavailableError(f"Redis unavailable: {exc}")
    if isinstance(exc, WatchError):
        return StoreConflictError(f"Redis transaction conflict: {exc}")
    return StoreError(f"Redis error: {exc}")


class RedisRecordStore(RecordStore):
    """Record store keeping one Redis hash per collection."""

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        """Initialize Redis store.

        Args:
            settings: Application settings with redis_url and store_namespace
            client: Optional pre-built redis.asyncio client (tests)
        """
        self.settings = settings
        self._client = client

    @property
    def backend_name(self) -> str:
        return "redis"

    def _get_client(self) -> Any:
        """Get or create the Redis client (lazy initialization)."""
        if self._client is None:
            self._client = aioredis.from_url(self.settings.redis_url, decode_responses=True)
            logger.info(f"Redis record store connected to {self.settings.redis_url}")
        return self._client

    def _key(self, collection: str) -> str:
        return f"{self.settings.store_namespace}:{collection}"

    async def _load(self, collection: str) -> dict[str, Record]:
        try:
            raw = await self._get_client().hgetall(self._key(collection))
        except RedisError as e:
            raise _translate(e) from e
        return {record_id: json.loads(payload) for record_id, payload in raw.items()}

    async def find(self, collection: str, record_filter: RecordFilter | None = None) -> list[Record]:
        records = await self._load(collection)
        return [
            {**data, "id": record_id}
            for record_id, data in records.items()
            if matches({**data, "id": record_id}, record_filter)
        ]

    @staticmethod
    def _encode(record: Record) -> str:
        data = dict(record)
        data.pop("id", None)
        return json.dumps(data, default=str, ensure_ascii=False)

    async def insert(self, collection: str, record: Record) -> str:
        record_id = uuid.uuid4().hex
        try:
            await self._get_client().hset(self._key(collection), record_id, self._encode(record))
        except RedisError as e:
            raise _translate(e) from e
        return record_id

    async def delete(self, collection: str, record_id: str) -> None:
        try:
            removed = await self._get_client().hdel(self._key(collection), record_id)
        except RedisError as e:
            raise _translate(e) from e
        if not removed:
            raise RecordNotFoundError(f"{collection}/{record_id} does not exist")

    async def transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        async with self.lock("transaction", self.settings.lock_timeout_seconds):
            tx = _RedisTransaction(self)
            result = await fn(tx)
            await tx.commit()
            return result

    @asynccontextmanager
    async def lock(self, key: str, timeout: float) -> AsyncIterator[None]:  # type: ignore[override]
        redis_lock = self._get_client().lock(
            f"{self.settings.store_namespace}:lock:{key}",
            timeout=timeout,
            blocking_timeout=timeout,
        )
        try:
            acquired = await redis_lock.acquire()
        except RedisError as e:
            raise _translate(e) from e
        if not acquired:
            raise StoreUnavailableError(f"Timed out waiting for lock {key}")
        try:
            yield
        finally:
            try:
                await redis_lock.release()
            except LockError as e:
                # Lease expired while held; nothing left to release.
                logger.warning(f"Lock {key} was no longer held on release: {e}")

    async def ping(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class _RedisTransaction(Transaction):
    """Staged writes committed in one MULTI/EXEC pipeline."""

    def __init__(self, store: RedisRecordStore) -> None:
        self._store = store
        self._inserted: dict[str, dict[str, Record]] = {}
        self._deleted: dict[str, set[str]] = {}

    async def find(self, collection: str, record_filter: RecordFilter | None = None) -> list[Record]:
        deleted = self._deleted.get(collection, set())
        visible = {
            record_id: data
            for record_id, data in (await self._store._load(collection)).items()
            if record_id not in deleted
        }
        visible.update(self._inserted.get(collection, {}))
        return [
            {**data, "id": record_id}
            for record_id, data in visible.items()
            if matches({**data, "id": record_id}, record_filter)
        ]

    async def insert(self, collection: str, record: Record) -> str:
        record_id = uuid.uuid4().hex
        data = dict(record)
        data.pop("id", None)
        self._inserted.setdefault(collection, {})[record_id] = data
        return record_id

    async def delete(self, collection: str, record_id: str) -> None:
        staged = self._inserted.get(collection, {})
        if record_id in staged:
            del staged[record_id]
            return
        self._deleted.setdefault(collection, set()).add(record_id)

    async def commit(self) -> None:
        if not self._inserted and not self._deleted:
            return
        pipeline = self._store._get_client().pipeline(transaction=True)
        for collection, records in self._inserted.items():
            for record_id, data in records.items():
                pipeline.hset(self._store._key(collection), record_id, self._store._encode(data))
        for collection, record_ids in self._deleted.items():
            for record_id in record_ids:
                pipeline.hdel(self._store._key(collection), record_id)
        try:
            await pipeline.execute()
        except RedisError as e:
            raise _translate(e) from e
