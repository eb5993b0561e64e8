"""
Redis infrastructure for the WeddingLK cache.

Exports
-------
RedisService - Instrumented async Redis client wrapper
RedisMetrics - Per-command counters and latency distributions

Example Usage
-------------
>>> redis_service = RedisService()
>>> await redis_service.initialize()
>>> await redis_service.health_check()
True
>>> redis_service.metrics.get_summary()
>>> await redis_service.shutdown()
"""

from __future__ import annotations

from weddinglk.core.redis.metrics import CommandStats, RedisMetrics
from weddinglk.core.redis.service import RedisService

__all__ = [
    "RedisService",
    "RedisMetrics",
    "CommandStats",
]
