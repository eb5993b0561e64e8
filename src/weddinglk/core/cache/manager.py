"""
TieredCacheManager: multi-layer cache façade for WeddingLK (2025)

Purpose
-------
Single entry point for cached reads and writes across the memory, redis and
database tiers. Reads fall through tiers in priority order, writes fan out to
every enabled tier at once, and tags allow bulk invalidation.

Responsibilities
----------------
- `get` / `get_many` / `exists`: consult enabled tiers in ascending priority;
  first hit wins
- `set`: resolve the effective TTL, write every enabled tier concurrently,
  then register tags
- `delete` / `invalidate_by_tags` / `clear`: remove entries from every tier
- `get_with_fallback` / `warm_cache`: populate the cache from caller data
- `get_with_background_refresh`: serve stale entries while a background task
  refetches them
- `health_check` / `get_stats`: per-tier liveness and hit/miss accounting
- `close`: cancel pending refreshes, release the memory tier and the Redis
  connection

Non-Responsibilities
--------------------
- Storage details (handled by the backends package)
- Tag bookkeeping (handled by TagIndex)
- Deciding what to cache or when to invalidate (callers, CacheInvalidationService)

Failure Policy
--------------
Cache problems degrade service, they never break it. A tier that fails on
read is a miss for that tier only; a tier that fails on write is logged and
reported in the returned TierWriteResult list. The only errors that reach the
caller are those raised by the caller's own `fetch` callables.

Architecture Notes
------------------
- Plain instance built once at process start (`TieredCacheManager.create`)
  and passed to consumers explicitly; there is no module-level singleton
- No back-fill: a hit in a slower tier is not copied into faster tiers
- No ordering guarantee between a concurrent `set` and another caller's `get`
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import replace
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    TypeVar,
    Union,
)

from weddinglk.core.cache.backends import (
    CacheBackend,
    DatabaseBackend,
    MemoryBackend,
    RedisBackend,
)
from weddinglk.core.cache.metrics import CacheStats
from weddinglk.core.cache.models import CacheOptions, TierWriteResult
from weddinglk.core.cache.tags import TagIndex
from weddinglk.core.cache.tiers import (
    DATABASE_TIER,
    MEMORY_TIER,
    REDIS_TIER,
    TierConfig,
    TierRegistry,
)
from weddinglk.core.config import ConfigManager
from weddinglk.core.logging.logger import get_logger
from weddinglk.core.redis.service import RedisService

logger = get_logger(__name__)

T = TypeVar("T")
Fetch = Callable[[], Union[T, Awaitable[T]]]

_NO_OPTIONS = CacheOptions()
DEFAULT_STALE_WHILE_REVALIDATE_SECONDS = 600


class TieredCacheManager:
    """
    Multi-layer cache façade.

    Example
    -------
    >>> redis_service = RedisService()
    >>> await redis_service.initialize()
    >>> cache = TieredCacheManager.create(redis_service)
    >>> await cache.set("venue:1", {"name": "X"}, CacheOptions(ttl=300, tags=["venues"]))
    >>> await cache.get("venue:1")
    {'name': 'X'}
    >>> await cache.invalidate_by_tags(["venues"])
    1
    >>> await cache.get("venue:1") is None
    True
    """

    def __init__(
        self,
        registry: TierRegistry,
        backends: Mapping[str, CacheBackend],
        tag_index: TagIndex,
        stats: Optional[CacheStats] = None,
        redis_service: Optional[RedisService] = None,
    ) -> None:
        self.registry = registry
        self._backends: Dict[str, CacheBackend] = dict(backends)
        self.tags = tag_index
        self.stats = stats or CacheStats()
        self._redis = redis_service
        self._refreshes: Dict[str, "asyncio.Task[None]"] = {}

    @classmethod
    def create(
        cls,
        redis_service: Optional[RedisService] = None,
        registry: Optional[TierRegistry] = None,
        clock: Callable[[], float] = time.monotonic,
        compressor: Optional[Callable[[str], str]] = None,
        decompressor: Optional[Callable[[str], str]] = None,
    ) -> "TieredCacheManager":
        """
        Build the standard memory/redis/database stack.

        Without a `redis_service` the redis tier is disabled and tags are
        tracked in-process only.
        """
        # Tiers disabled below must not leak into a registry the caller reuses
        registry = registry.copy() if registry is not None else TierRegistry.from_config()
        backends: Dict[str, CacheBackend] = {}

        for tier in registry.all():
            backend = cls._build_backend(tier, redis_service, clock, compressor, decompressor)
            if backend is None:
                registry.set_enabled(tier.name, False)
                continue
            backends[tier.name] = backend

        manager = cls(
            registry=registry,
            backends=backends,
            tag_index=TagIndex(redis_service, clock=clock),
            redis_service=redis_service,
        )
        logger.info(
            "Tiered cache initialized",
            extra={
                "tiers": [tier.name for tier in registry.ordered()],
                "redis_enabled": redis_service is not None,
            },
        )
        return manager

    @staticmethod
    def _build_backend(
        tier: TierConfig,
        redis_service: Optional[RedisService],
        clock: Callable[[], float],
        compressor: Optional[Callable[[str], str]],
        decompressor: Optional[Callable[[str], str]],
    ) -> Optional[CacheBackend]:
        if tier.name == MEMORY_TIER:
            return MemoryBackend(tier, clock=clock)
        if tier.name == REDIS_TIER:
            if redis_service is None:
                return None
            codec: Dict[str, Callable[[str], str]] = {}
            if compressor is not None and decompressor is not None:
                codec = {"compressor": compressor, "decompressor": decompressor}
            return RedisBackend(tier, redis_service, **codec)
        if tier.name == DATABASE_TIER:
            return DatabaseBackend(tier)
        logger.warning(
            "No backend for configured cache tier; disabling it",
            extra={"tier": tier.name},
        )
        return None

    # ═══════════════════════════════════════════════════════════════════════
    # INTERNAL HELPERS
    # ═══════════════════════════════════════════════════════════════════════

    def _active_backends(self) -> List[CacheBackend]:
        """Backends of enabled tiers in read order."""
        return [
            self._backends[tier.name]
            for tier in self.registry.ordered()
            if tier.name in self._backends
        ]

    def effective_ttl(self, options: CacheOptions) -> int:
        """Explicit TTL, else the named tier's TTL, else the default."""
        if options.ttl:
            return int(options.ttl)
        return self.registry.default_ttl(options.layer)

    async def _delete_everywhere(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        for backend in self._backends.values():
            try:
                await backend.delete(keys)
            except Exception as exc:
                self.stats.record_error()
                logger.warning(
                    "Cache tier delete failed",
                    extra={
                        "tier": backend.name,
                        "key_count": len(keys),
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
        self.tags.forget(keys)

    # ═══════════════════════════════════════════════════════════════════════
    # READ / WRITE
    # ═══════════════════════════════════════════════════════════════════════

    async def _lookup(
        self, key: str, record: bool = True
    ) -> Tuple[Optional[Any], Optional[CacheBackend]]:
        """First non-absent value and the tier that held it."""
        for backend in self._active_backends():
            try:
                value = await backend.get(key)
            except Exception as exc:
                self.stats.record_error()
                logger.warning(
                    "Cache tier read failed; treating as miss",
                    extra={
                        "tier": backend.name,
                        "key": key,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                value = None

            if value is not None:
                if record:
                    self.stats.record_hit(backend.name)
                logger.debug("Cache HIT", extra={"key": key, "tier": backend.name})
                return value, backend

            if record:
                self.stats.record_tier_miss(backend.name)

        if record:
            self.stats.record_miss()
        logger.debug("Cache MISS", extra={"key": key})
        return None, None

    async def get(self, key: str, options: Optional[CacheOptions] = None) -> Optional[Any]:
        """
        Look the key up tier by tier, fastest first.

        Returns the first non-absent value, or None when every tier misses.
        Stored None values are indistinguishable from absence.
        """
        value, _ = await self._lookup(key)
        return value

    async def get_many(
        self, keys: Iterable[str], options: Optional[CacheOptions] = None
    ) -> List[Optional[Any]]:
        """Values for `keys` in the same order, None for each miss."""
        return list(await asyncio.gather(*(self.get(key, options) for key in keys)))

    async def exists(self, key: str) -> bool:
        """Whether any enabled tier holds `key`; not counted as a hit or miss."""
        value, _ = await self._lookup(key, record=False)
        return value is not None

    async def set(
        self,
        key: str,
        value: Any,
        options: Optional[CacheOptions] = None,
    ) -> List[TierWriteResult]:
        """
        Write the value into every enabled tier concurrently, then tag it.

        Returns
        -------
        List[TierWriteResult]
            One result per enabled tier. Failures are logged, never raised.
        """
        options = options or _NO_OPTIONS
        ttl = self.effective_ttl(options)
        backends = self._active_backends()

        outcomes = await asyncio.gather(
            *(backend.set(key, value, ttl, options) for backend in backends),
            return_exceptions=True,
        )

        results: List[TierWriteResult] = []
        for backend, outcome in zip(backends, outcomes):
            if isinstance(outcome, BaseException):
                result = TierWriteResult(backend.name, False, f"{type(outcome).__name__}: {outcome}")
            else:
                result = TierWriteResult(backend.name, bool(outcome))

            if not result.success:
                self.stats.record_error()
                logger.warning(
                    "Cache tier write failed",
                    extra={
                        "tier": backend.name,
                        "key": key,
                        "ttl_seconds": ttl,
                        "error": result.error,
                    },
                )
            results.append(result)

        await self.tags.register(key, options.tags, ttl)
        self.stats.record_set()

        logger.debug(
            "Cache SET",
            extra={
                "key": key,
                "ttl_seconds": ttl,
                "tags": list(options.tags),
                "tiers": [r.tier for r in results if r.success],
            },
        )
        return results

    async def delete(self, key: str) -> None:
        """Remove a single key from every tier."""
        await self._delete_everywhere([key])
        self.stats.record_invalidation()
        logger.debug("Cache DELETE", extra={"key": key})

    async def invalidate_by_tags(self, tags: Iterable[str]) -> int:
        """
        Purge every key registered under any of `tags`, then the tags themselves.

        Returns
        -------
        int
            Number of distinct keys purged.
        """
        tags = list(dict.fromkeys(tags))
        purged: Set[str] = set()

        for tag in tags:
            keys = await self.tags.members(tag)
            await self._delete_everywhere(keys)
            await self.tags.drop(tag)
            purged |= keys

        self.stats.record_invalidation(len(purged))
        logger.info(
            "Cache invalidated by tags",
            extra={"tags": tags, "keys_purged": len(purged)},
        )
        return len(purged)

    # ═══════════════════════════════════════════════════════════════════════
    # POPULATION
    # ═══════════════════════════════════════════════════════════════════════

    @staticmethod
    async def _call_fetch(fetch: Fetch[T]) -> T:
        result = fetch()
        if inspect.isawaitable(result):
            result = await result
        return result  # type: ignore[return-value]

    async def get_with_fallback(
        self,
        key: str,
        fetch: Fetch[T],
        options: Optional[CacheOptions] = None,
    ) -> T:
        """
        Return the cached value, or compute it with `fetch`, cache it and return it.

        `fetch` may be sync or async and is called at most once. Whatever it
        raises propagates unchanged; nothing is cached in that case.
        """
        cached = await self.get(key, options)
        if cached is not None:
            return cached

        try:
            value = await self._call_fetch(fetch)
        except Exception as exc:
            logger.error(
                "Cache fallback fetch failed",
                extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            raise

        if value is not None:
            await self.set(key, value, options)
        return value

    async def warm_cache(
        self,
        key: str,
        fetch: Fetch[T],
        options: Optional[CacheOptions] = None,
    ) -> T:
        """Unconditionally refresh `key` from `fetch`; errors propagate unchanged."""
        try:
            value = await self._call_fetch(fetch)
        except Exception as exc:
            logger.warning(
                "Cache warm-up fetch failed",
                extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            raise

        if value is not None:
            await self.set(key, value, options)
        self.stats.record_warmup()
        logger.info("Cache warmed", extra={"key": key})
        return value

    async def get_with_background_refresh(
        self,
        key: str,
        fetch: Fetch[T],
        options: Optional[CacheOptions] = None,
        stale_while_revalidate: Optional[int] = None,
    ) -> T:
        """
        Stale-while-revalidate read.

        Entries are stored for the effective TTL plus `stale_while_revalidate`
        seconds. During that trailing window the cached value is still
        returned, and one background refresh per key is scheduled to replace
        it. A miss fetches inline; those fetch errors propagate unchanged.
        Background refresh errors are logged and counted, never raised.
        """
        options = options or _NO_OPTIONS
        window = int(
            stale_while_revalidate
            if stale_while_revalidate is not None
            else ConfigManager.get(
                "cache.stale_while_revalidate_seconds", DEFAULT_STALE_WHILE_REVALIDATE_SECONDS
            )
        )
        stored = replace(options, ttl=self.effective_ttl(options) + window)

        cached, backend = await self._lookup(key)
        if cached is not None and backend is not None:
            remaining = await backend.remaining_ttl(key)
            if remaining is not None and remaining <= window:
                self._schedule_refresh(key, fetch, stored)
            return cached

        try:
            value = await self._call_fetch(fetch)
        except Exception as exc:
            logger.error(
                "Cache fallback fetch failed",
                extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            raise

        if value is not None:
            await self.set(key, value, stored)
        return value

    def _schedule_refresh(self, key: str, fetch: Fetch[Any], options: CacheOptions) -> None:
        pending = self._refreshes.get(key)
        if pending is not None and not pending.done():
            return

        task = asyncio.create_task(self._refresh(key, fetch, options), name=f"cache-refresh:{key}")
        self._refreshes[key] = task
        task.add_done_callback(lambda done: self._refresh_finished(key, done))
        logger.debug("Serving stale cache entry; refresh scheduled", extra={"key": key})

    async def _refresh(self, key: str, fetch: Fetch[Any], options: CacheOptions) -> None:
        try:
            value = await self._call_fetch(fetch)
        except Exception as exc:
            self.stats.record_error()
            logger.warning(
                "Background cache refresh failed; keeping stale value",
                extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            return

        if value is not None:
            await self.set(key, value, options)
        logger.info("Background cache refresh completed", extra={"key": key})

    def _refresh_finished(self, key: str, task: "asyncio.Task[None]") -> None:
        if self._refreshes.get(key) is task:
            del self._refreshes[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background cache refresh crashed",
                extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
            )

    @property
    def pending_refreshes(self) -> int:
        return sum(1 for task in self._refreshes.values() if not task.done())

    async def wait_for_refreshes(self) -> None:
        """Block until every scheduled background refresh has finished."""
        while self._refreshes:
            await asyncio.gather(*list(self._refreshes.values()), return_exceptions=True)

    # ═══════════════════════════════════════════════════════════════════════
    # MAINTENANCE / OBSERVABILITY
    # ═══════════════════════════════════════════════════════════════════════

    async def clear(self) -> None:
        """Empty every tier and forget all tag memberships held locally."""
        for backend in self._backends.values():
            try:
                await backend.clear()
            except Exception as exc:
                self.stats.record_error()
                logger.warning(
                    "Cache tier clear failed",
                    extra={
                        "tier": backend.name,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
        self.tags.clear()
        logger.info("Cache cleared", extra={"tiers": list(self._backends)})

    async def health_check(self) -> Dict[str, Any]:
        """
        Health-check every enabled tier.

        Returns
        -------
        Dict[str, Any]
            ``{"status": "healthy" | "degraded", "layers": {tier: bool}}``.
            Status is healthy only when every tier reports healthy.
        """
        layers: Dict[str, bool] = {}
        for backend in self._active_backends():
            try:
                layers[backend.name] = bool(await backend.health_check())
            except Exception as exc:
                logger.warning(
                    "Cache tier health check failed",
                    extra={
                        "tier": backend.name,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                layers[backend.name] = False

        status = "healthy" if all(layers.values()) else "degraded"
        if status != "healthy":
            logger.warning("Cache degraded", extra={"layers": layers})
        return {"status": status, "layers": layers}

    def get_stats(self) -> Dict[str, Any]:
        """Snapshot of hit/miss counters with current tier sizes."""
        for name, backend in self._backends.items():
            self.stats.record_tier_size(name, backend.size())
            if isinstance(backend, MemoryBackend):
                self.stats.record_memory_usage(backend.estimated_bytes())
        return self.stats.snapshot()

    def backend(self, name: str) -> Optional[CacheBackend]:
        return self._backends.get(name)

    async def close(self) -> None:
        """Cancel pending refreshes, drop in-process entries and close the Redis connection."""
        refreshes = list(self._refreshes.values())
        for task in refreshes:
            task.cancel()
        await asyncio.gather(*refreshes, return_exceptions=True)

        for backend in self._backends.values():
            if isinstance(backend, MemoryBackend):
                await backend.clear()
        self.tags.clear()

        if self._redis is not None:
            await self._redis.shutdown()
        logger.info("Tiered cache closed")
