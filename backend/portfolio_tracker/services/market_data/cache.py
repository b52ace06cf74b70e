# backend/portfolio_tracker/services/market_data/cache.py
"""
In-process TTL cache for provider quotes.

Quotes are cheap to reuse for a few minutes and expensive to refetch under
an 8-calls-per-minute budget. The cache is passed explicitly to the
provider (no module-level singleton), and takes a clock callable so tests
can advance time deterministically.

Usage:
    cache = QuoteCache(ttl_seconds=300)
    provider = TwelveDataProvider(api_key="...", cache=cache)
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from portfolio_tracker.services.constants import QUOTE_CACHE_MAX_SIZE, QUOTE_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


class QuoteCache:
    """
    Thread-safe bounded cache with per-entry expiration.

    Evicts the least-recently-used entry when capacity is reached; expired
    entries are dropped on access.
    """

    def __init__(
            self,
            ttl_seconds: float = QUOTE_CACHE_TTL_SECONDS,
            maxsize: int = QUOTE_CACHE_MAX_SIZE,
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the cache.

        Args:
            ttl_seconds: Lifetime of an entry. 0 disables caching.
            maxsize: Maximum number of entries to store
            clock: Monotonic time source in seconds
        """
        self._ttl = ttl_seconds
        self._maxsize = maxsize
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()  # key -> (expires_at, value)
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                logger.debug(f"Quote cache expired: {key}")
                return None

            self._entries.move_to_end(key)
            logger.debug(f"Quote cache hit: {key}")
            return value

    def set(self, key: str, value: Any) -> None:
        """Store a value, evicting the oldest entry if at capacity."""
        if self._ttl <= 0:
            return

        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            elif len(self._entries) >= self._maxsize:
                self._entries.popitem(last=False)
            self._entries[key] = (self._clock() + self._ttl, value)

    def clear(self) -> None:
        """Clear all entries from the cache."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
