"""
Tag index for bulk cache invalidation.

Purpose
-------
Map tag names to the keys stored under them so `invalidate_by_tags` can purge
every key sharing a label in one call.

Storage
-------
- Remote: one Redis set per tag (``SADD <prefix><tag> <key>``), shared across
  processes. Remote failures are logged and absorbed.
- Local: a process-local mirror ``tag -> {key: deadline}`` plus the reverse
  ``key -> tags`` map, so invalidation still finds keys written by this
  process while Redis is unreachable. A local member lives only as long as
  its entry; expired members are swept from `register` once per
  ``cache.tag_sweep_interval_seconds``.

Tag Lifetime
------------
A tag set expires after ``max(tag_ttl_seconds, entry ttl, remaining set TTL)``.
The set therefore never expires while a key registered under it may still be
live; it can outlive its members, which only costs a no-op delete.

Membership
----------
A key is listed under a tag iff it was last set with that tag. Re-setting a
key with a different tag list removes it from the tags it no longer carries
(locally, and remotely for tags this process knows about).
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Iterable, Optional, Sequence, Set

from weddinglk.core.config import ConfigManager
from weddinglk.core.logging.logger import get_logger
from weddinglk.core.redis.service import RedisService

logger = get_logger(__name__)

DEFAULT_TAG_TTL_SECONDS = 86400
DEFAULT_TAG_PREFIX = "tag:"
DEFAULT_SWEEP_INTERVAL_SECONDS = 300


class TagIndex:
    """
    Example
    -------
    >>> tags = TagIndex(redis_service)
    >>> await tags.register("venue:1", ["venues"], ttl_seconds=300)
    >>> await tags.members("venues")
    {'venue:1'}
    >>> await tags.drop("venues")
    """

    def __init__(
        self,
        redis_service: Optional[RedisService] = None,
        prefix: Optional[str] = None,
        tag_ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval_seconds: Optional[float] = None,
    ) -> None:
        self._redis = redis_service
        self._prefix = prefix if prefix is not None else ConfigManager.get(
            "cache.tag_prefix", DEFAULT_TAG_PREFIX
        )
        self._tag_ttl_seconds = int(
            tag_ttl_seconds
            if tag_ttl_seconds is not None
            else ConfigManager.get("cache.tag_ttl_seconds", DEFAULT_TAG_TTL_SECONDS)
        )
        self._sweep_interval = float(
            sweep_interval_seconds
            if sweep_interval_seconds is not None
            else ConfigManager.get(
                "cache.tag_sweep_interval_seconds", DEFAULT_SWEEP_INTERVAL_SECONDS
            )
        )
        self._clock = clock
        self._next_sweep = clock() + self._sweep_interval
        self._local: Dict[str, Dict[str, float]] = {}
        self._key_tags: Dict[str, Set[str]] = {}

    def tag_key(self, tag: str) -> str:
        return f"{self._prefix}{tag}"

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    async def register(self, key: str, tags: Sequence[str], ttl_seconds: int) -> None:
        """Record `key` as the current member of exactly `tags`."""
        now = self._clock()
        if now >= self._next_sweep:
            self.sweep()

        previous = self._key_tags.get(key, set())
        current = set(tags)

        stale = previous - current
        if stale:
            self._remove_local(key, stale)
            await self._remove_remote(key, stale)

        if not current:
            self._key_tags.pop(key, None)
            return

        lifetime = max(self._tag_ttl_seconds, int(ttl_seconds))
        # Locally a key is only worth tracking while its entry can still be live
        deadline = now + int(ttl_seconds)
        for tag in current:
            self._local.setdefault(tag, {})[key] = deadline
        self._key_tags[key] = current

        for tag in current:
            await self._register_remote(key, tag, lifetime)

        logger.debug(
            "Registered cache key under tags",
            extra={"key": key, "tags": sorted(current), "tag_ttl_seconds": lifetime},
        )

    async def _register_remote(self, key: str, tag: str, lifetime: int) -> None:
        if self._redis is None:
            return
        tag_key = self.tag_key(tag)
        try:
            await self._redis.sadd(tag_key, key)
            remaining = await self._redis.ttl(tag_key)
            await self._redis.expire(tag_key, max(lifetime, remaining))
        except Exception as exc:
            logger.warning(
                "Failed to register tag in Redis; local index only",
                extra={
                    "key": key,
                    "tag": tag,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )

    async def _remove_remote(self, key: str, tags: Iterable[str]) -> None:
        if self._redis is None:
            return
        for tag in tags:
            try:
                await self._redis.srem(self.tag_key(tag), key)
            except Exception as exc:
                logger.warning(
                    "Failed to remove key from Redis tag set",
                    extra={
                        "key": key,
                        "tag": tag,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )

    def _remove_local(self, key: str, tags: Iterable[str]) -> None:
        for tag in tags:
            members = self._local.get(tag)
            if members is None:
                continue
            members.pop(key, None)
            if not members:
                del self._local[tag]

    # =========================================================================
    # LOOKUP / REMOVAL
    # =========================================================================

    def _prune(self, tag: str, now: float) -> int:
        members = self._local.get(tag)
        if members is None:
            return 0

        expired = [key for key, deadline in members.items() if deadline < now]
        for key in expired:
            del members[key]
            tags = self._key_tags.get(key)
            if tags is not None:
                tags.discard(tag)
                if not tags:
                    del self._key_tags[key]
        if not members:
            del self._local[tag]
        return len(expired)

    def sweep(self) -> int:
        """
        Drop every expired member from the local mirror.

        `register` calls this at most once per sweep interval, so tags that are
        never invalidated cannot grow the mirror past the keys still live.
        """
        now = self._clock()
        self._next_sweep = now + self._sweep_interval
        pruned = sum(self._prune(tag, now) for tag in list(self._local))
        if pruned:
            logger.debug(
                "Swept expired keys from local tag index",
                extra={"pruned": pruned, "tags": len(self._local)},
            )
        return pruned

    def _local_members(self, tag: str) -> Set[str]:
        self._prune(tag, self._clock())
        return set(self._local.get(tag, ()))

    async def members(self, tag: str) -> Set[str]:
        """Keys currently registered under `tag` (local mirror ∪ Redis)."""
        keys = self._local_members(tag)
        if self._redis is None:
            return keys

        try:
            keys |= await self._redis.smembers(self.tag_key(tag))
        except Exception as exc:
            logger.warning(
                "Failed to read Redis tag set; using local index only",
                extra={
                    "tag": tag,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
        return keys

    async def drop(self, tag: str) -> None:
        """Remove the tag entry itself (local and remote)."""
        for key in self._local.pop(tag, {}):
            tags = self._key_tags.get(key)
            if tags is not None:
                tags.discard(tag)
                if not tags:
                    del self._key_tags[key]

        if self._redis is None:
            return
        try:
            await self._redis.delete(self.tag_key(tag))
        except Exception as exc:
            logger.warning(
                "Failed to delete Redis tag set",
                extra={
                    "tag": tag,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )

    def forget(self, keys: Iterable[str]) -> None:
        """Drop keys from the local mirror after they were deleted."""
        for key in keys:
            tags = self._key_tags.pop(key, set())
            self._remove_local(key, tags)

    def tags_for(self, key: str) -> Set[str]:
        return set(self._key_tags.get(key, ()))

    def clear(self) -> None:
        self._local.clear()
        self._key_tags.clear()

    def __len__(self) -> int:
        return len(self._local)
