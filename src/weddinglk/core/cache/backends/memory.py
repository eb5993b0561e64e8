"""
In-process memory tier.

Bounded key → CacheEntry map. Reads lazily evict expired entries; inserting a
new key at capacity first evicts the single oldest-inserted entry. Access does
not refresh recency (this is not an LRU). The tier performs no I/O, never
fails and is always healthy.
"""

from __future__ import annotations

import sys
import time
from typing import Any, Callable, Dict, Iterable, Optional

from weddinglk.core.cache.backends.base import CacheBackend
from weddinglk.core.cache.models import CacheEntry, CacheOptions
from weddinglk.core.cache.tiers import TierConfig
from weddinglk.core.logging.logger import get_logger

logger = get_logger(__name__)


class MemoryBackend(CacheBackend):
    """
    Example
    -------
    >>> backend = MemoryBackend(TierConfig("memory", 1, 300, max_entries=2))
    >>> await backend.set("a", 1, 300, CacheOptions())
    >>> await backend.set("b", 2, 300, CacheOptions())
    >>> await backend.set("c", 3, 300, CacheOptions())  # evicts "a"
    >>> await backend.get("a") is None
    True
    """

    def __init__(
        self,
        tier: TierConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(tier)
        self._entries: Dict[str, CacheEntry] = {}
        self._clock = clock
        self.evictions: int = 0
        self.expirations: int = 0

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self.expirations += 1
            logger.debug("Memory cache entry expired", extra={"key": key})
            return None

        return entry.value

    async def remaining_ttl(self, key: str) -> Optional[float]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if entry.is_expired(now):
            return None
        return entry.remaining_seconds(now)

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: int,
        options: CacheOptions,
    ) -> bool:
        if key in self._entries:
            # Re-insert so dict order keeps tracking insertion time
            del self._entries[key]
        elif self.tier.max_entries and len(self._entries) >= self.tier.max_entries:
            self._evict_oldest()

        self._entries[key] = CacheEntry(
            value=value,
            inserted_at=self._clock(),
            ttl_seconds=ttl_seconds,
        )
        return True

    def _evict_oldest(self) -> None:
        if not self._entries:
            return
        # min() keeps the first of equal timestamps, i.e. the earliest inserted
        oldest_key = min(self._entries, key=lambda k: self._entries[k].inserted_at)
        del self._entries[oldest_key]
        self.evictions += 1
        logger.debug(
            "Memory cache at capacity; evicted oldest entry",
            extra={"evicted_key": oldest_key, "max_entries": self.tier.max_entries},
        )

    async def delete(self, keys: Iterable[str]) -> int:
        removed = 0
        for key in keys:
            if self._entries.pop(key, None) is not None:
                removed += 1
        return removed

    async def clear(self) -> None:
        self._entries.clear()

    async def health_check(self) -> bool:
        return True

    def size(self) -> int:
        return len(self._entries)

    def estimated_bytes(self) -> int:
        """Shallow size estimate of keys and values currently held."""
        return sum(
            sys.getsizeof(key) + sys.getsizeof(entry.value)
            for key, entry in self._entries.items()
        )

    def __contains__(self, key: object) -> bool:
        return key in self._entries
