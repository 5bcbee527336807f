"""Abstract record store used by the invoicing core.

The store is a document collection keyed by generated ids. The core only
needs four capabilities (find, insert, delete, transaction) plus a named
lock, so any backend that offers them can be plugged in.

Design:
- ABC for interface enforcement
- Settings injection through the factory (see services.store.factory)
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any, TypeVar

from services.shared.records import get_path

T = TypeVar("T")

Record = dict[str, Any]
RecordFilter = dict[str, Any]


class StoreError(Exception):
    """Base class for record store failures."""


class StoreUnavailableError(StoreError):
    """Transient failure: backend unreachable or the call timed out."""


class StoreConflictError(StoreError):
    """A transaction could not be committed atomically."""


class RecordNotFoundError(StoreError):
    """The record addressed by id does not exist."""


def matches(record: Record, record_filter: RecordFilter | None) -> bool:
    """Check a record against an equality filter.

    Filter keys may be dotted paths into nested documents
    (e.g. ``{"companyData.uid": "U1"}``). An empty filter matches everything.
    """
    if not record_filter:
        return True
    return all(get_path(record, key) == value for key, value in record_filter.items())


class RecordReader(ABC):
    """Read/write surface shared by stores and open transactions."""

    @abstractmethod
    async def find(self, collection: str, record_filter: RecordFilter | None = None) -> list[Record]:
        """Return all records of a collection matching the filter.

        Every returned record carries its store id under ``"id"``.
        """

    @abstractmethod
    async def insert(self, collection: str, record: Record) -> str:
        """Persist a new record and return its generated id."""

    @abstractmethod
    async def delete(self, collection: str, record_id: str) -> None:
        """Delete a record by id.

        Raises:
            RecordNotFoundError: If no record has this id
        """


class Transaction(RecordReader):
    """Read/write view whose writes commit together."""


class RecordStore(RecordReader):
    """Document store with transactions and named locks."""

    @abstractmethod
    async def transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run ``fn`` with transactional access and commit its writes atomically.

        Raises:
            StoreConflictError: If the writes cannot be committed
        """

    @abstractmethod
    def lock(self, key: str, timeout: float) -> AbstractAsyncContextManager[None]:
        """Mutual exclusion on ``key`` for at most ``timeout`` seconds."""

    async def close(self) -> None:
        """Release backend resources."""

    async def ping(self) -> bool:
        """Check that the backend is reachable."""
        return True

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Backend identifier for logging/metrics."""
