"""
Core infrastructure for the WeddingLK cache (2025).

Purpose
-------
Single import surface for the infrastructure subsystems:

- Configuration (Config, ConfigManager)
- Logging (structured logging, logger factory)
- Redis (RedisService)
- Tiered cache (TieredCacheManager)

Non-Responsibilities
--------------------
- Implement infra logic (delegated to submodules)
- Any side effects beyond simple re-exports
"""

from weddinglk.core.cache import CacheOptions, TieredCacheManager
from weddinglk.core.config import Config, ConfigManager
from weddinglk.core.logging import get_logger
from weddinglk.core.redis import RedisService

__all__ = [
    "Config",
    "ConfigManager",
    "get_logger",
    "RedisService",
    "TieredCacheManager",
    "CacheOptions",
]
