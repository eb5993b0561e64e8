"""
Tiered cache subsystem for WeddingLK (2025).

Purpose
-------
Multi-layer cache (in-process memory, Redis, durable placeholder) behind a
single façade, with tag-based bulk invalidation and hit/miss accounting.
Cache problems degrade service, they never break it.

Architecture
------------
- **manager.py**: TieredCacheManager façade and public API
- **tiers.py**: Tier registry (priority, default TTL, capacity)
- **backends/**: Per-tier storage (memory, redis, database)
- **tags.py**: Tag index for bulk invalidation
- **metrics.py**: Hit/miss statistics
- **models.py**: CacheEntry, CacheOptions, TierWriteResult
- **keys.py**: Key and tag naming conventions
- **invalidation.py**: Entity change events mapped onto tag invalidation

Usage Example
-------------
>>> from weddinglk.core.cache import CacheOptions, TieredCacheManager
>>>
>>> cache = TieredCacheManager.create(redis_service)
>>> venue = await cache.get_with_fallback(
...     "weddinglk:venue:42",
...     lambda: load_venue(42),
...     CacheOptions(layer="memory", tags=["venues", "venues:42"]),
... )
>>> await cache.invalidate_by_tags(["venues:42"])
"""

from weddinglk.core.cache.invalidation import (
    CacheInvalidationService,
    ChangeType,
    InvalidationEvent,
    InvalidationPriority,
    InvalidationRule,
)
from weddinglk.core.cache.keys import build_key, entity_tags
from weddinglk.core.cache.manager import TieredCacheManager
from weddinglk.core.cache.metrics import CacheStats
from weddinglk.core.cache.models import CacheEntry, CacheOptions, TierWriteResult
from weddinglk.core.cache.tags import TagIndex
from weddinglk.core.cache.tiers import TierConfig, TierRegistry

__all__ = [
    # Main public API
    "TieredCacheManager",
    "CacheOptions",
    "TierWriteResult",
    # Building blocks
    "CacheEntry",
    "CacheStats",
    "TagIndex",
    "TierConfig",
    "TierRegistry",
    # Helpers
    "build_key",
    "entity_tags",
    # Invalidation
    "CacheInvalidationService",
    "ChangeType",
    "InvalidationEvent",
    "InvalidationPriority",
    "InvalidationRule",
]
