"""
Common interface for cache tier storage.

Every tier (memory, redis, database) implements the same capability set so
the façade can treat them uniformly: a tier that has nothing to contribute is
a trivial implementation, not a special case.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

from weddinglk.core.cache.models import CacheOptions
from weddinglk.core.cache.tiers import TierConfig


class CacheBackend(ABC):
    """Storage for one cache tier."""

    def __init__(self, tier: TierConfig) -> None:
        self.tier = tier

    @property
    def name(self) -> str:
        return self.tier.name

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None when absent or expired."""

    @abstractmethod
    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: int,
        options: CacheOptions,
    ) -> bool:
        """Store a value; True when the write landed."""

    @abstractmethod
    async def delete(self, keys: Iterable[str]) -> int:
        """Remove keys; absent keys are ignored. Returns how many were removed."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry held by this tier."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Whether the tier can currently serve requests."""

    async def remaining_ttl(self, key: str) -> Optional[float]:
        """Seconds until `key` expires in this tier; None when absent or unknown."""
        return None

    def size(self) -> int:
        """Number of entries held locally; 0 where the tier cannot tell."""
        return 0

    def __repr__(self) -> str:
        return f"{type(self).__name__}(tier={self.tier.name!r}, priority={self.tier.priority})"
