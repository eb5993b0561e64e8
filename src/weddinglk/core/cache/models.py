"""
Value objects shared across the cache subsystem.

- CacheEntry: one tier-local stored value with its insertion time and TTL
- CacheOptions: per-call options for set/get/get_with_fallback/warm_cache
- TierWriteResult: outcome of writing one value into one tier
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Tuple


@dataclass(slots=True)
class CacheEntry:
    """
    A value held by a tier-local store.

    An entry is expired, and must be treated as absent, once
    ``now - inserted_at > ttl_seconds``. Entries are replaced wholesale on
    re-set and never mutated.
    """

    value: Any
    inserted_at: float
    ttl_seconds: int

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl_seconds

    def remaining_seconds(self, now: float) -> float:
        return max(0.0, self.ttl_seconds - (now - self.inserted_at))


@dataclass(frozen=True, slots=True)
class CacheOptions:
    """
    Options accepted by the cache façade.

    Attributes
    ----------
    ttl:
        Explicit TTL in seconds. A falsy value means "not given".
    layer:
        Name of a tier whose default TTL applies when `ttl` is not given.
    tags:
        Labels to register the key under for bulk invalidation.
    compress:
        Route the remote payload through the remote tier's compressor.
    """

    ttl: Optional[int] = None
    layer: Optional[str] = None
    tags: Tuple[str, ...] = field(default_factory=tuple)
    compress: bool = False

    def __post_init__(self) -> None:
        # Accept any iterable of tags (lists are the common call style)
        object.__setattr__(self, "tags", tuple(dict.fromkeys(self.tags or ())))


@dataclass(frozen=True, slots=True)
class TierWriteResult:
    """Outcome of writing one key into one tier; collected, never raised."""

    tier: str
    success: bool
    error: Optional[str] = None
