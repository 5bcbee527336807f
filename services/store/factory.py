"""Factory for creating the record store based on configuration.

Implements Factory Pattern for backend selection.
Allows switching between the in-memory and Redis stores at runtime.
"""

import logging

from services.shared.config import Settings
from services.store.base import RecordStore
from services.store.gateway import StoreGateway

logger = logging.getLogger(__name__)


def create_record_store(settings: Settings) -> RecordStore:
    """Factory function to create the record store backend.

    Args:
        settings: Application settings with store_backend field

    Returns:
        Configured record store instance

    Raises:
        ValueError: If configured backend is unknown
    """
    backend = settings.store_backend

    if backend == "memory":
        from services.store.memory import InMemoryRecordStore

        logger.info("Created record store: memory")
        return InMemoryRecordStore()

    elif backend == "redis":
        from services.store.redis_store import RedisRecordStore

        logger.info("Created record store: redis")
        return RedisRecordStore(settings)

    else:
        available = ["memory", "redis"]
        raise ValueError(f"Unknown store backend: '{backend}'. Available: {', '.join(available)}")


def create_store_gateway(settings: Settings) -> StoreGateway:
    """Create the configured backend wrapped in a StoreGateway."""
    return StoreGateway(create_record_store(settings), settings)
