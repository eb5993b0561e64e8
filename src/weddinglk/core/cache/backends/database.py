"""
Durable cache tier placeholder.

Holds the slot for a future database-backed tier. Every read is a miss and
every write, delete and clear trivially succeeds; the tier is always healthy.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from weddinglk.core.cache.backends.base import CacheBackend
from weddinglk.core.cache.models import CacheOptions


class DatabaseBackend(CacheBackend):
    """No-op durable tier."""

    async def get(self, key: str) -> Optional[Any]:
        return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: int,
        options: CacheOptions,
    ) -> bool:
        return True

    async def delete(self, keys: Iterable[str]) -> int:
        return 0

    async def clear(self) -> None:
        return None

    async def health_check(self) -> bool:
        return True
