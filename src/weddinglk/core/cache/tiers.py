"""
Tier registry for the multi-layer cache.

Purpose
-------
Describe the fixed set of cache tiers (memory, redis, database), each with a
read priority, default TTL and capacity, and expose them in strict read order.

Invariants
----------
- Tier names are unique.
- Priorities are distinct, establishing exactly one read order.
- TTLs and capacities are non-negative.

Violations are reported once, at construction, as ConfigValidationError.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from weddinglk.core.config import ConfigManager, ConfigValidationError
from weddinglk.core.logging.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 3600

MEMORY_TIER = "memory"
REDIS_TIER = "redis"
DATABASE_TIER = "database"


@dataclass(frozen=True, slots=True)
class TierConfig:
    """Static description of one cache tier. Lower priority is read first."""

    name: str
    priority: int
    default_ttl_seconds: int
    max_entries: int
    enabled: bool = True

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "TierConfig":
        try:
            return cls(
                name=name,
                priority=int(data["priority"]),
                default_ttl_seconds=int(data["ttl_seconds"]),
                max_entries=int(data["max_entries"]),
                enabled=bool(data.get("enabled", True)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigValidationError(
                f"Invalid definition for cache tier '{name}': {exc}"
            ) from exc


class TierRegistry:
    """
    Ordered collection of cache tiers.

    Example
    -------
    >>> registry = TierRegistry.from_config()
    >>> [tier.name for tier in registry.ordered()]
    ['memory', 'redis', 'database']
    >>> registry.default_ttl("memory")
    300
    >>> registry.default_ttl(None)
    3600
    """

    def __init__(
        self,
        tiers: Iterable[TierConfig],
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._tiers: Dict[str, TierConfig] = {}
        self._default_ttl_seconds = default_ttl_seconds

        seen_priorities: Dict[int, str] = {}
        for tier in tiers:
            if tier.name in self._tiers:
                raise ConfigValidationError(f"Duplicate cache tier name '{tier.name}'")
            if tier.priority in seen_priorities:
                raise ConfigValidationError(
                    f"Cache tiers '{seen_priorities[tier.priority]}' and '{tier.name}' "
                    f"share priority {tier.priority}"
                )
            if tier.default_ttl_seconds < 0 or tier.max_entries < 0:
                raise ConfigValidationError(
                    f"Cache tier '{tier.name}' has a negative TTL or capacity"
                )
            seen_priorities[tier.priority] = tier.name
            self._tiers[tier.name] = tier

        if default_ttl_seconds < 0:
            raise ConfigValidationError("Default cache TTL must be non-negative")

    @classmethod
    def from_config(cls) -> "TierRegistry":
        """Build the registry from `cache.tiers` in ConfigManager."""
        raw_tiers = ConfigManager.get("cache.tiers", {})
        if not isinstance(raw_tiers, Mapping) or not raw_tiers:
            raise ConfigValidationError("No cache tiers configured under 'cache.tiers'")

        tiers = [TierConfig.from_mapping(name, data) for name, data in raw_tiers.items()]
        registry = cls(
            tiers,
            default_ttl_seconds=int(
                ConfigManager.get("cache.default_ttl_seconds", DEFAULT_TTL_SECONDS)
            ),
        )
        logger.info(
            "Cache tier registry built",
            extra={
                "tiers": [
                    {
                        "name": tier.name,
                        "priority": tier.priority,
                        "ttl_seconds": tier.default_ttl_seconds,
                        "max_entries": tier.max_entries,
                        "enabled": tier.enabled,
                    }
                    for tier in registry.all()
                ],
            },
        )
        return registry

    def all(self) -> List[TierConfig]:
        """Every tier, enabled or not, in ascending priority."""
        return sorted(self._tiers.values(), key=lambda tier: tier.priority)

    def ordered(self) -> List[TierConfig]:
        """Enabled tiers in ascending priority (read order)."""
        return [tier for tier in self.all() if tier.enabled]

    def __iter__(self) -> Iterator[TierConfig]:
        return iter(self.ordered())

    def __contains__(self, name: object) -> bool:
        return name in self._tiers

    def get(self, name: str) -> Optional[TierConfig]:
        return self._tiers.get(name)

    def default_ttl(self, layer: Optional[str] = None) -> int:
        """TTL of the named tier, else the registry-wide default."""
        if layer and layer in self._tiers:
            return self._tiers[layer].default_ttl_seconds
        return self._default_ttl_seconds

    def set_enabled(self, name: str, enabled: bool) -> None:
        tier = self._tiers.get(name)
        if tier is None:
            logger.warning("Attempted to toggle unknown cache tier", extra={"tier": name})
            return
        self._tiers[name] = replace(tier, enabled=enabled)
        logger.info("Cache tier toggled", extra={"tier": name, "enabled": enabled})

    def copy(self) -> "TierRegistry":
        """Independent registry with the same tiers; toggles do not propagate."""
        return TierRegistry(self._tiers.values(), default_ttl_seconds=self._default_ttl_seconds)
