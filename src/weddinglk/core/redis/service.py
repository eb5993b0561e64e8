"""
RedisService: async Redis access for the WeddingLK cache (2025)

Purpose
-------
Own one `redis.asyncio` client and expose the handful of commands the cache
subsystem needs (GET, SETEX, DEL, SADD, SMEMBERS, EXPIRE, TTL, FLUSHDB, PING),
each wrapped with latency metrics and structured logging.

Responsibilities
----------------
- Build the client from Config (or accept an injected one) and verify it
- Route every command through a single instrumented execution path
- Record per-command metrics in RedisMetrics
- Track last-known health from PING checks
- Close the client on shutdown

Non-Responsibilities
--------------------
- Swallowing errors: every command re-raises after logging; the cache
  backends decide whether a failure is absorbed
- Serialization of cached values (handled by RedisBackend)
- Retry or timeout policy beyond the client's own socket timeout

Configuration Keys
------------------
- REDIS_URL              (Config, default "redis://localhost:6379/0")
- REDIS_SOCKET_TIMEOUT   (Config, default 5)
- REDIS_MAX_CONNECTIONS  (Config, default 50)
- redis.health_check_interval_seconds (ConfigManager, default 30)

Architecture Notes
------------------
- Plain instance: construct once at process start and pass it to the cache
  (no class-level singleton)
- Initialization is idempotent and guarded by an asyncio.Lock
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, Set, TypeVar

from redis.asyncio.client import Redis as AsyncRedis  # type: ignore[misc]
from redis.exceptions import RedisError

from weddinglk.core.config import Config, ConfigManager
from weddinglk.core.logging.logger import get_logger
from weddinglk.core.redis.metrics import RedisMetrics

logger = get_logger(__name__)

T = TypeVar("T")


class RedisService:
    """
    Instrumented async Redis client wrapper.

    Example
    -------
    >>> redis_service = RedisService()
    >>> await redis_service.initialize()
    >>> await redis_service.setex("venue:1", 60, '{"name": "X"}')
    >>> await redis_service.get("venue:1")
    '{"name": "X"}'
    >>> await redis_service.shutdown()
    """

    def __init__(
        self,
        client: Optional[AsyncRedis] = None,
        url: Optional[str] = None,
        metrics: Optional[RedisMetrics] = None,
    ) -> None:
        self._client: Optional[AsyncRedis] = client
        self._url: str = url or Config.REDIS_URL
        self._metrics: RedisMetrics = metrics or RedisMetrics()
        self._init_lock: asyncio.Lock = asyncio.Lock()
        self._is_healthy: bool = client is not None
        self._last_health_check: Optional[float] = None

    # ═══════════════════════════════════════════════════════════════════════
    # LIFECYCLE MANAGEMENT
    # ═══════════════════════════════════════════════════════════════════════

    async def initialize(self) -> None:
        """
        Create (if needed) and verify the Redis client.

        Idempotent. Safe to call multiple times.

        Raises
        ------
        RuntimeError
            If the client cannot be created or does not answer PING.
        """
        async with self._init_lock:
            if self._client is None:
                self._client = AsyncRedis.from_url(
                    self._url,
                    socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                    decode_responses=Config.REDIS_DECODE_RESPONSES,
                    max_connections=Config.REDIS_MAX_CONNECTIONS,
                    health_check_interval=ConfigManager.get(
                        "redis.health_check_interval_seconds", 30
                    ),
                )

            start_time = time.monotonic()
            try:
                await self._client.ping()  # type: ignore[misc]
            except Exception as exc:
                self._is_healthy = False
                logger.critical(
                    "Failed to initialize RedisService",
                    extra={
                        "url_scheme": self._url_scheme,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                raise RuntimeError(f"Failed to initialize RedisService: {exc}") from exc

            self._is_healthy = True
            logger.info(
                "RedisService initialized successfully",
                extra={
                    "url_scheme": self._url_scheme,
                    "socket_timeout_seconds": Config.REDIS_SOCKET_TIMEOUT,
                    "max_connections": Config.REDIS_MAX_CONNECTIONS,
                    "initialization_time_ms": round((time.monotonic() - start_time) * 1000, 2),
                },
            )

    async def shutdown(self) -> None:
        """Close the Redis client. Safe to call even if not initialized."""
        client = self._client
        self._client = None
        self._is_healthy = False

        if client is None:
            logger.debug("RedisService not initialized, nothing to shutdown")
            return

        try:
            await client.aclose()
            logger.info("RedisService shutdown complete")
        except Exception as exc:
            logger.error(
                "Error during RedisService shutdown",
                extra={"error": str(exc), "error_type": type(exc).__name__},
                exc_info=True,
            )

    @property
    def _url_scheme(self) -> str:
        return self._url.split("://")[0] if "://" in self._url else "unknown"

    @property
    def metrics(self) -> RedisMetrics:
        return self._metrics

    def client(self) -> AsyncRedis:
        """
        Return the active Redis client.

        Raises
        ------
        RuntimeError
            If no client has been created or injected.
        """
        if self._client is None:
            raise RuntimeError(
                "RedisService not initialized. "
                "Call `await redis_service.initialize()` first."
            )
        return self._client

    # ═══════════════════════════════════════════════════════════════════════
    # HEALTH & STATUS
    # ═══════════════════════════════════════════════════════════════════════

    async def health_check(self) -> bool:
        """
        Verify Redis connectivity via PING.

        Returns
        -------
        bool
            True if Redis answered, False otherwise. Never raises.
        """
        self._last_health_check = time.time()

        if self._client is None:
            logger.warning("Redis health check failed: RedisService not initialized")
            self._is_healthy = False
            return False

        try:
            pong = await self._execute("PING", lambda: self.client().ping())
        except Exception:
            self._is_healthy = False
            return False

        self._is_healthy = bool(pong)
        if not self._is_healthy:
            logger.warning("Redis health check failed: PING returned False")
        return self._is_healthy

    def is_healthy(self) -> bool:
        """Return cached health status without performing I/O."""
        return self._is_healthy

    def get_status(self) -> dict[str, Any]:
        return {
            "initialized": self._client is not None,
            "healthy": self._is_healthy,
            "last_health_check": self._last_health_check,
            "metrics": self._metrics.get_summary(),
        }

    # ═══════════════════════════════════════════════════════════════════════
    # INSTRUMENTED EXECUTION
    # ═══════════════════════════════════════════════════════════════════════

    async def _execute(
        self,
        command: str,
        operation: Callable[[], Awaitable[T]],
        **log_fields: Any,
    ) -> T:
        """
        Run one Redis command with metrics and structured logging.

        Errors are logged and re-raised unchanged.
        """
        start_time = time.monotonic()
        try:
            result = await operation()
        except (RedisError, OSError, RuntimeError) as exc:
            latency_ms = (time.monotonic() - start_time) * 1000
            self._metrics.record_operation(
                command, latency_ms, success=False, error_type=type(exc).__name__
            )
            logger.error(
                f"Redis {command} operation failed",
                extra={
                    **log_fields,
                    "latency_ms": round(latency_ms, 2),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            raise

        latency_ms = (time.monotonic() - start_time) * 1000
        self._metrics.record_operation(command, latency_ms, success=True)
        logger.debug(
            f"Redis {command} operation",
            extra={**log_fields, "latency_ms": round(latency_ms, 2)},
        )
        return result

    # ═══════════════════════════════════════════════════════════════════════
    # KEY-VALUE OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════

    async def get(self, key: str) -> Optional[str]:
        """Return the string stored at `key`, or None."""
        return await self._execute("GET", lambda: self.client().get(key), key=key)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> bool:
        """Store `value` at `key` with a TTL in seconds."""
        result = await self._execute(
            "SETEX",
            lambda: self.client().setex(key, ttl_seconds, value),
            key=key,
            ttl_seconds=ttl_seconds,
        )
        return bool(result)

    async def delete(self, *keys: str) -> int:
        """Delete keys; returns how many existed."""
        if not keys:
            return 0
        count = await self._execute(
            "DEL",
            lambda: self.client().delete(*keys),
            key_count=len(keys),
        )
        return int(count)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Set expiration on an existing key; False if the key is missing."""
        result = await self._execute(
            "EXPIRE",
            lambda: self.client().expire(key, ttl_seconds),
            key=key,
            ttl_seconds=ttl_seconds,
        )
        return bool(result)

    async def ttl(self, key: str) -> int:
        """
        Remaining TTL of a key in seconds.

        -1 if the key has no expiry, -2 if it does not exist.
        """
        result = await self._execute("TTL", lambda: self.client().ttl(key), key=key)
        return int(result)

    async def flushdb(self) -> bool:
        """Remove every key in the current database."""
        result = await self._execute("FLUSHDB", lambda: self.client().flushdb())
        logger.warning("Redis database flushed", extra={"url_scheme": self._url_scheme})
        return bool(result)

    # ═══════════════════════════════════════════════════════════════════════
    # SET OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════

    async def sadd(self, key: str, *members: str) -> int:
        """Add members to the set at `key`; returns number newly added."""
        if not members:
            return 0
        result = await self._execute(
            "SADD",
            lambda: self.client().sadd(key, *members),
            key=key,
            member_count=len(members),
        )
        return int(result)

    async def smembers(self, key: str) -> Set[str]:
        """Return all members of the set at `key` (empty if missing)."""
        members = await self._execute("SMEMBERS", lambda: self.client().smembers(key), key=key)
        return {self._decode(member) for member in (members or ())}

    async def srem(self, key: str, *members: str) -> int:
        """Remove members from the set at `key`; returns number removed."""
        if not members:
            return 0
        result = await self._execute(
            "SREM",
            lambda: self.client().srem(key, *members),
            key=key,
            member_count=len(members),
        )
        return int(result)

    @staticmethod
    def _decode(value: Any) -> str:
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

