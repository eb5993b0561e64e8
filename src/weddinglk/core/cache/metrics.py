"""
Cache statistics for the tiered cache façade.

Purpose
-------
Running counters describing cache effectiveness: global hits and misses,
total lookups, hit rate, and a per-tier breakdown of hits, misses and size.

Responsibilities
----------------
- Count global and per-tier hits/misses for every `get`
- Derive `hit_rate = hits / total_requests` (0.0 before the first lookup)
- Track auxiliary counters: sets, invalidations, tier errors, warm-ups
- Produce detached snapshots for callers

Non-Responsibilities
--------------------
- Redis command latency (handled by RedisMetrics)
- Health assessment (handled by TieredCacheManager.health_check)

Architecture Notes
------------------
- One instance per cache façade; counters live for the life of the process
  and are only cleared explicitly via `reset()`
- Updates are plain attribute increments with no await in between, so they
  are atomic with respect to the event loop and need no lock
- `hit_rate` is a fraction in [0, 1], not a percentage
"""

from __future__ import annotations

import copy
from typing import Any, Dict


def format_bytes(size: int) -> str:
    """Render a byte count the way the stats endpoint reports it (`0B`, `1.5KB`)."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            if unit == "B":
                return f"{int(value)}B"
            return f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}GB"


class CacheStats:
    """
    Hit/miss accounting for one TieredCacheManager.

    Example
    -------
    >>> stats = CacheStats()
    >>> stats.record_hit("memory")
    >>> stats.record_miss()
    >>> stats.hit_rate
    0.5
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.hits: int = 0
        self.misses: int = 0
        self.total_requests: int = 0
        self.sets: int = 0
        self.invalidations: int = 0
        self.errors: int = 0
        self.warmups: int = 0
        self.memory_usage: str = "0B"
        self.tier_stats: Dict[str, Dict[str, int]] = {}

    # ═══════════════════════════════════════════════════════════════════════
    # RECORDING
    # ═══════════════════════════════════════════════════════════════════════

    def _tier(self, tier: str) -> Dict[str, int]:
        return self.tier_stats.setdefault(tier, {"hits": 0, "misses": 0, "size": 0})

    def record_hit(self, tier: str) -> None:
        """Global hit served by `tier`."""
        self.hits += 1
        self.total_requests += 1
        self._tier(tier)["hits"] += 1

    def record_miss(self) -> None:
        """Global miss: no tier held the key."""
        self.misses += 1
        self.total_requests += 1

    def record_tier_miss(self, tier: str) -> None:
        self._tier(tier)["misses"] += 1

    def record_tier_size(self, tier: str, size: int) -> None:
        self._tier(tier)["size"] = size

    def record_set(self) -> None:
        self.sets += 1

    def record_invalidation(self, count: int = 1) -> None:
        self.invalidations += count

    def record_error(self) -> None:
        self.errors += 1

    def record_warmup(self) -> None:
        self.warmups += 1

    def record_memory_usage(self, size_bytes: int) -> None:
        self.memory_usage = format_bytes(size_bytes)

    # ═══════════════════════════════════════════════════════════════════════
    # DERIVED / SNAPSHOT
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def hit_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.hits / self.total_requests

    def snapshot(self) -> Dict[str, Any]:
        """
        Detached copy of every counter.

        Returns
        -------
        Dict[str, Any]
            hits, misses, total_requests, hit_rate, sets, invalidations,
            errors, warmups, memory_usage and tier_stats
            (``{tier: {"hits", "misses", "size"}}``). Mutating the result
            never affects the live counters.
        """
        return {
            "hits": self.hits,
            "misses": self.misses,
            "total_requests": self.total_requests,
            "hit_rate": self.hit_rate,
            "sets": self.sets,
            "invalidations": self.invalidations,
            "errors": self.errors,
            "warmups": self.warmups,
            "memory_usage": self.memory_usage,
            "tier_stats": copy.deepcopy(self.tier_stats),
        }
