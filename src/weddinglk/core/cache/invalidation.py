"""
Entity-driven cache invalidation for WeddingLK (2025).

Purpose
-------
Translate domain change events ("venue 42 was updated") into tag
invalidations on the tiered cache, including the derived caches that depend
on the changed entity (listings, search results, ratings, statistics).

Responsibilities
----------------
- Hold invalidation rules keyed by entity family (users, vendors, venues, ...)
- Queue change events and drain them in rule-priority order
- Invalidate the entity's own tags plus every dependency tag of its rule
- Isolate failures per event: one bad event never blocks the rest

Non-Responsibilities
--------------------
- Deciding when entities change (callers publish events)
- Key or tag storage (handled by TieredCacheManager / TagIndex)

Tag Conventions
---------------
For an event on ``<entity>`` with id ``<id>`` the purged tags are
``<entity>:<id>``, ``<entity>:list`` and ``<entity>:search``, followed by the
rule's dependency tags. Callers tag cached values accordingly (see
`weddinglk.core.cache.keys.entity_tags`).

Priority Levels
---------------
- HIGH (0): users, bookings
- MEDIUM (10): vendors, venues, reviews
- LOW (100): stats; also the rank of events with no matching rule
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from weddinglk.core.cache.manager import TieredCacheManager
from weddinglk.core.logging.logger import get_logger

logger = get_logger(__name__)


class InvalidationPriority(Enum):
    """Processing order of queued events (lower value = earlier)."""

    HIGH = 0
    MEDIUM = 10
    LOW = 100


class ChangeType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(slots=True, frozen=True)
class InvalidationRule:
    """
    How changes to one entity family ripple through the cache.

    Attributes
    ----------
    name:
        Entity family the rule applies to (``"venues"``).
    priority:
        Queue ordering for events matched by this rule.
    dependencies:
        Tags of derived caches purged alongside the entity itself.
    pattern:
        Human-readable key pattern the rule covers, reported in stats.
    """

    name: str
    priority: InvalidationPriority
    dependencies: Tuple[str, ...] = ()
    pattern: str = ""


@dataclass(slots=True, frozen=True)
class InvalidationEvent:
    type: ChangeType
    entity: str
    entity_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)


DEFAULT_RULES: Tuple[InvalidationRule, ...] = (
    InvalidationRule(
        "users",
        InvalidationPriority.HIGH,
        ("user:profile", "user:preferences", "user:bookings"),
        pattern="user:*",
    ),
    InvalidationRule(
        "vendors",
        InvalidationPriority.MEDIUM,
        ("vendors:list", "vendor:search", "vendor:stats"),
        pattern="vendor:*",
    ),
    InvalidationRule(
        "venues",
        InvalidationPriority.MEDIUM,
        ("venues:list", "venue:search", "venue:stats"),
        pattern="venue:*",
    ),
    InvalidationRule(
        "bookings",
        InvalidationPriority.HIGH,
        ("user:bookings", "vendor:bookings", "booking:stats"),
        pattern="booking:*",
    ),
    InvalidationRule(
        "reviews",
        InvalidationPriority.MEDIUM,
        ("vendor:rating", "venue:rating", "review:stats"),
        pattern="review:*",
    ),
    InvalidationRule(
        "stats",
        InvalidationPriority.LOW,
        ("home:stats", "dashboard:stats", "analytics:stats"),
        pattern="stats:*",
    ),
)


class CacheInvalidationService:
    """
    Queue of entity change events applied to a TieredCacheManager.

    Example
    -------
    >>> service = CacheInvalidationService(cache)
    >>> await service.invalidate(
    ...     InvalidationEvent(ChangeType.UPDATE, "venues", "42")
    ... )
    """

    def __init__(
        self,
        cache: TieredCacheManager,
        rules: Optional[Iterable[InvalidationRule]] = None,
    ) -> None:
        self._cache = cache
        self._rules: Dict[str, InvalidationRule] = {}
        self._queue: List[InvalidationEvent] = []
        self._lock = asyncio.Lock()
        # id(event) -> successful applies, for events a caller is awaiting
        self._outcomes: Dict[int, int] = {}
        self.processed: int = 0
        self.failed: int = 0

        for rule in DEFAULT_RULES if rules is None else rules:
            self.add_rule(rule)

    # ═══════════════════════════════════════════════════════════════════════
    # RULES
    # ═══════════════════════════════════════════════════════════════════════

    def add_rule(self, rule: InvalidationRule) -> None:
        """Register or replace the rule for `rule.name`."""
        self._rules[rule.name] = rule
        logger.debug(
            "Invalidation rule registered",
            extra={"rule": rule.name, "priority": rule.priority.name},
        )

    def rule_for(self, entity: str) -> Optional[InvalidationRule]:
        """
        First rule whose name is a prefix of `entity`, or vice versa.

        ``"venue"`` and ``"venues_archive"`` both match the ``venues`` rule.
        """
        for name, rule in self._rules.items():
            if entity.startswith(name) or name.startswith(entity):
                return rule
        return None

    def _rank(self, event: InvalidationEvent) -> int:
        rule = self.rule_for(event.entity)
        return (rule.priority if rule else InvalidationPriority.LOW).value

    @staticmethod
    def entity_invalidation_tags(entity: str, entity_id: str) -> List[str]:
        return [f"{entity}:{entity_id}", f"{entity}:list", f"{entity}:search"]

    # ═══════════════════════════════════════════════════════════════════════
    # QUEUE
    # ═══════════════════════════════════════════════════════════════════════

    def enqueue(self, event: InvalidationEvent) -> None:
        self._queue.append(event)
        logger.debug(
            "Invalidation event queued",
            extra={
                "change": event.type.value,
                "entity": event.entity,
                "entity_id": event.entity_id,
                "queue_length": len(self._queue),
            },
        )

    async def invalidate(self, event: InvalidationEvent) -> int:
        """
        Queue `event` and drain the queue.

        Returns 1 if `event` itself was applied, 0 otherwise, even when a
        drain started by another caller picked it up.
        """
        return await self._drain_for([event])

    async def bulk_invalidate(self, events: Iterable[InvalidationEvent]) -> int:
        """Queue every event, then drain once so priorities apply across the batch."""
        events = list(events)
        for event in events:
            self.enqueue(event)
        logger.info("Bulk cache invalidation queued", extra={"event_count": len(events)})
        return await self._drain_for(events)

    async def _drain_for(self, events: List[InvalidationEvent]) -> int:
        tracked = {id(event) for event in events}
        for key in tracked:
            self._outcomes[key] = 0
        try:
            for event in events:
                self.enqueue(event)
            await self.process_queue()
        finally:
            applied = sum(self._outcomes.pop(key, 0) for key in tracked)
        return applied

    async def process_queue(self) -> int:
        """
        Apply queued events, highest priority first.

        Events with equal priority keep their arrival order. Events queued
        while a drain is in progress are picked up by the same drain.

        Returns
        -------
        int
            Number of events applied successfully by this call.
        """
        applied = 0
        async with self._lock:
            while self._queue:
                batch = sorted(self._queue, key=self._rank)
                self._queue = []
                logger.info(
                    "Processing invalidation queue",
                    extra={"event_count": len(batch)},
                )
                for event in batch:
                    if await self._apply(event):
                        applied += 1
                        if id(event) in self._outcomes:
                            self._outcomes[id(event)] += 1
        return applied

    async def _apply(self, event: InvalidationEvent) -> bool:
        rule = self.rule_for(event.entity)
        if rule is None:
            logger.warning(
                "No invalidation rule for entity; event skipped",
                extra={"entity": event.entity, "entity_id": event.entity_id},
            )
            return False

        tags = self.entity_invalidation_tags(event.entity, event.entity_id)
        tags.extend(rule.dependencies)

        try:
            purged = await self._cache.invalidate_by_tags(tags)
        except Exception as exc:
            self.failed += 1
            logger.error(
                "Cache invalidation failed for event",
                extra={
                    "entity": event.entity,
                    "entity_id": event.entity_id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return False

        self.processed += 1
        logger.info(
            "Cache invalidated for entity change",
            extra={
                "change": event.type.value,
                "entity": event.entity,
                "entity_id": event.entity_id,
                "rule": rule.name,
                "keys_purged": purged,
            },
        )
        return True

    async def invalidate_all(self) -> None:
        await self._cache.clear()
        logger.info("All cache invalidated")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "rules_count": len(self._rules),
            "queue_length": len(self._queue),
            "is_processing": self._lock.locked(),
            "processed": self.processed,
            "failed": self.failed,
            "rules": [
                {
                    "name": name,
                    "pattern": rule.pattern,
                    "priority": rule.priority.name.lower(),
                    "dependencies_count": len(rule.dependencies),
                }
                for name, rule in self._rules.items()
            ],
        }
