"""In-process record store.

Keeps collections in dictionaries. Used for tests, local runs, and
single-process dry runs of the backfill. Transactions are serialized and
stage their writes until ``fn`` returns.
"""

import asyncio
import copy
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from typing import TypeVar

from services.store.base import (
    Record,
    RecordFilter,
    RecordNotFoundError,
    RecordStore,
    StoreUnavailableError,
    Transaction,
    matches,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed record store."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Record]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._transaction_lock = asyncio.Lock()

    @property
    def backend_name(self) -> str:
        return "memory"

    def seed(self, collection: str, records: Iterable[Record]) -> list[str]:
        """Load records synchronously, keeping any ``id`` they already carry."""
        ids: list[str] = []
        bucket = self._collections.setdefault(collection, {})
        for record in records:
            data = copy.deepcopy(dict(record))
            record_id = str(data.pop("id", None) or uuid.uuid4().hex)
            bucket[record_id] = data
            ids.append(record_id)
        return ids

    def _committed(self, collection: str) -> dict[str, Record]:
        return self._collections.setdefault(collection, {})

    async def find(self, collection: str, record_filter: RecordFilter | None = None) -> list[Record]:
        return [
            {**copy.deepcopy(data), "id": record_id}
            for record_id, data in self._committed(collection).items()
            if matches({**data, "id": record_id}, record_filter)
        ]

    async def insert(self, collection: str, record: Record) -> str:
        record_id = uuid.uuid4().hex
        data = copy.deepcopy(dict(record))
        data.pop("id", None)
        self._committed(collection)[record_id] = data
        return record_id

    async def delete(self, collection: str, record_id: str) -> None:
        try:
            del self._committed(collection)[record_id]
        except KeyError:
            raise RecordNotFoundError(f"{collection}/{record_id} does not exist") from None

    async def transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        async with self._transaction_lock:
            tx = _MemoryTransaction(self)
            result = await fn(tx)
            tx.commit()
            return result

    @asynccontextmanager
    async def lock(self, key: str, timeout: float) -> AsyncIterator[None]:  # type: ignore[override]
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout)
            except TimeoutError:
                raise StoreUnavailableError(f"Timed out waiting for lock {key}") from None
            try:
                yield
            finally:
                lock.release()
        finally:
            # Holders and waiters share the entry; the last one out drops it
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]


class _MemoryTransaction(Transaction):
    """Staged writes over an InMemoryRecordStore."""

    def __init__(self, store: InMemoryRecordStore) -> None:
        self._store = store
        self._inserted: dict[str, dict[str, Record]] = {}
        self._deleted: dict[str, set[str]] = {}

    def _visible(self, collection: str) -> dict[str, Record]:
        deleted = self._deleted.get(collection, set())
        visible = {
            record_id: data
            for record_id, data in self._store._committed(collection).items()
            if record_id not in deleted
        }
        visible.update(self._inserted.get(collection, {}))
        return visible

    async def find(self, collection: str, record_filter: RecordFilter | None = None) -> list[Record]:
        return [
            {**copy.deepcopy(data), "id": record_id}
            for record_id, data in self._visible(collection).items()
            if matches({**data, "id": record_id}, record_filter)
        ]

    async def insert(self, collection: str, record: Record) -> str:
        record_id = uuid.uuid4().hex
        data = copy.deepcopy(dict(record))
        data.pop("id", None)
        self._inserted.setdefault(collection, {})[record_id] = data
        return record_id

    async def delete(self, collection: str, record_id: str) -> None:
        if record_id not in self._visible(collection):
            raise RecordNotFoundError(f"{collection}/{record_id} does not exist")
        staged = self._inserted.get(collection, {})
        if record_id in staged:
            del staged[record_id]
        else:
            self._deleted.setdefault(collection, set()).add(record_id)

    def commit(self) -> None:
        for collection, record_ids in self._deleted.items():
            committed = self._store._committed(collection)
            for record_id in record_ids:
                committed.pop(record_id, None)
        for collection, records in self._inserted.items():
            self._store._committed(collection).update(records)
        logger.debug("Committed in-memory transaction")
