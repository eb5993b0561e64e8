"""Per-tier storage implementations for the multi-layer cache."""

from weddinglk.core.cache.backends.base import CacheBackend
from weddinglk.core.cache.backends.database import DatabaseBackend
from weddinglk.core.cache.backends.memory import MemoryBackend
from weddinglk.core.cache.backends.remote import COMPRESSED_PREFIX, RedisBackend

__all__ = [
    "CacheBackend",
    "MemoryBackend",
    "RedisBackend",
    "DatabaseBackend",
    "COMPRESSED_PREFIX",
]
