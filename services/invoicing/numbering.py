"""Invoice number allocation.

Invoice numbers are 8-digit strings drawn at random from
[10,000,000, 99,999,999] and checked against the store inside a
transaction. With 90 million values and low write volume a collision is
rare; after ``max_attempts`` collisions, or if the store cannot be
reached, the number falls back to the last 8 digits of the clock so
allocation never blocks invoice creation.
"""

import logging
import random
import time
from collections.abc import Callable

from services.invoicing.metrics import invoice_number_fallbacks_total
from services.store.base import StoreError, Transaction
from services.store.gateway import StoreGateway

logger = logging.getLogger(__name__)

INVOICES = "invoices"
MIN_INVOICE_NUMBER = 10_000_000
MAX_INVOICE_NUMBER = 99_999_999


def timestamp_invoice_number(now_ms: int) -> str:
    """Last 8 digits of a millisecond timestamp, zero padded."""
    return str(now_ms)[-8:].zfill(8)


class InvoiceNumberAllocator:
    """Allocates unique 8-digit invoice numbers."""

    def __init__(
        self,
        gateway: StoreGateway,
        max_attempts: int = 10,
        rng: random.Random | None = None,
        clock_ms: Callable[[], int] | None = None,
    ) -> None:
        """Initialize allocator.

        Args:
            gateway: Record store gateway
            max_attempts: Random draws before the timestamp fallback
            rng: Random source (seedable in tests)
            clock_ms: Millisecond clock for the fallback number
        """
        self.gateway = gateway
        self.max_attempts = max_attempts
        self._rng = rng or random.SystemRandom()
        self._clock_ms = clock_ms or (lambda: time.time_ns() // 1_000_000)

    def _draw(self) -> str:
        return f"{self._rng.randint(MIN_INVOICE_NUMBER, MAX_INVOICE_NUMBER):08d}"

    async def _allocate_in(self, tx: Transaction) -> str:
        for _ in range(self.max_attempts):
            candidate = self._draw()
            if not await tx.find(INVOICES, {"invoiceNumber": candidate}):
                return candidate

        fallback = timestamp_invoice_number(self._clock_ms())
        invoice_number_fallbacks_total.labels(reason="exhausted").inc()
        logger.warning(
            f"Failed to allocate a unique invoice number after {self.max_attempts} "
            f"attempts, using fallback: {fallback}"
        )
        return fallback

    async def allocate(self) -> str:
        """Return an 8-digit invoice number not used by any stored invoice.

        Never raises on store failures; returns the timestamp fallback instead.
        """
        try:
            return await self.gateway.transaction(self._allocate_in)
        except StoreError as e:
            fallback = timestamp_invoice_number(self._clock_ms())
            invoice_number_fallbacks_total.labels(reason="store_error").inc()
            logger.error(f"Error allocating invoice number ({e}), using fallback: {fallback}")
            return fallback
