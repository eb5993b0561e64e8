"""
Redis-backed cache tier.

Values are JSON-serialised and written with SETEX, so expiry is native to
Redis. Every failure (network, serialisation, an uninitialised client) is
logged at WARNING and absorbed: reads report absent so the lookup falls
through to the next tier, writes report False.

Compression
-----------
With ``CacheOptions(compress=True)`` the JSON payload is passed through the
configured compressor and stored behind ``COMPRESSED_PREFIX``. The default
compressor is the identity; pass a compressor/decompressor pair to enable a
real codec. Plain JSON never starts with the prefix, so both forms can be
read back regardless of how they were written.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Iterable, Optional

from weddinglk.core.cache.backends.base import CacheBackend
from weddinglk.core.cache.models import CacheOptions
from weddinglk.core.cache.tiers import TierConfig
from weddinglk.core.logging.logger import get_logger
from weddinglk.core.redis.service import RedisService

logger = get_logger(__name__)

COMPRESSED_PREFIX = "zc1:"


def _identity(payload: str) -> str:
    return payload


class RedisBackend(CacheBackend):
    """Fail-open cache tier over a RedisService."""

    def __init__(
        self,
        tier: TierConfig,
        redis_service: RedisService,
        compressor: Callable[[str], str] = _identity,
        decompressor: Callable[[str], str] = _identity,
    ) -> None:
        super().__init__(tier)
        self._redis = redis_service
        self._compressor = compressor
        self._decompressor = decompressor

    # ═══════════════════════════════════════════════════════════════════════
    # SERIALIZATION
    # ═══════════════════════════════════════════════════════════════════════

    def _serialize(self, value: Any, compress: bool) -> str:
        payload = json.dumps(value, ensure_ascii=False)
        if compress:
            return COMPRESSED_PREFIX + self._compressor(payload)
        return payload

    def _deserialize(self, raw: Any) -> Any:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        if raw.startswith(COMPRESSED_PREFIX):
            raw = self._decompressor(raw[len(COMPRESSED_PREFIX):])
        return json.loads(raw)

    # ═══════════════════════════════════════════════════════════════════════
    # TIER OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._redis.get(key)
            if raw is None:
                return None
            return self._deserialize(raw)
        except Exception as exc:
            logger.warning(
                "Redis cache read failed; treating as miss",
                extra={
                    "tier": self.name,
                    "key": key,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return None

    async def remaining_ttl(self, key: str) -> Optional[float]:
        try:
            seconds = await self._redis.ttl(key)
        except Exception as exc:
            logger.warning(
                "Redis TTL lookup failed",
                extra={
                    "tier": self.name,
                    "key": key,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return None
        # -2: no such key, -1: no expiry
        return float(seconds) if seconds >= 0 else None

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: int,
        options: CacheOptions,
    ) -> bool:
        try:
            payload = self._serialize(value, options.compress)
            return await self._redis.setex(key, ttl_seconds, payload)
        except Exception as exc:
            logger.warning(
                "Redis cache write failed; continuing without remote copy",
                extra={
                    "tier": self.name,
                    "key": key,
                    "ttl_seconds": ttl_seconds,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return False

    async def delete(self, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        try:
            return await self._redis.delete(*keys)
        except Exception as exc:
            logger.warning(
                "Redis cache delete failed",
                extra={
                    "tier": self.name,
                    "key_count": len(keys),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return 0

    async def clear(self) -> None:
        try:
            await self._redis.flushdb()
        except Exception as exc:
            logger.warning(
                "Redis cache flush failed",
                extra={
                    "tier": self.name,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )

    async def health_check(self) -> bool:
        return await self._redis.health_check()
