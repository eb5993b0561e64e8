"""
ConfigManager: YAML-backed cache configuration with dot-notation access.

Purpose
-------
Holds the tunables of the cache subsystem (tier layout, TTLs, tag index
lifetime, key namespace). Values come from the packaged `defaults.yaml`,
optionally deep-merged with an operator supplied YAML file
(`Config.CACHE_CONFIG_PATH`) and with in-process overrides.

Responsibilities
----------------
- Load and deep-merge YAML sources in precedence order:
  packaged defaults < CACHE_CONFIG_PATH file < runtime overrides.
- Resolve dotted keys (`"cache.tiers.memory.ttl_seconds"`) without raising.
- Track simple read metrics for observability.

Non-Responsibilities
--------------------
- Validation of tier semantics (handled by TierRegistry)
- Environment variables (handled by Config)
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

import yaml

from weddinglk.core.config.config import Config

# Plain stdlib logger: the structured logging package imports this one.
logger = logging.getLogger(__name__)

DEFAULTS_FILE = Path(__file__).with_name("defaults.yaml")


class ConfigManager:
    """
    Cache configuration with hierarchical dot-notation access.

    Example
    -------
    >>> ConfigManager.get("cache.default_ttl_seconds")
    3600
    >>> ConfigManager.get("cache.tiers.memory.max_entries", 1000)
    1000
    """

    _cache: Dict[str, Any] = {}
    _loaded: bool = False
    _metrics: Dict[str, int] = {"gets": 0, "misses": 0, "loads": 0}

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: Mapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, Mapping) and isinstance(target.get(key), MutableMapping):
                ConfigManager._deep_merge_dict(target[key], value)
            else:
                target[key] = copy.deepcopy(value)

    @classmethod
    def _load_yaml_file(cls, path: Path) -> Optional[Dict[str, Any]]:
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle)
        except (OSError, yaml.YAMLError) as exc:
            logger.warning(
                "Failed to load YAML config",
                extra={
                    "file": str(path),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return None

        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.warning(
                "Ignoring non-dict YAML root object",
                extra={"file": str(path), "root_type": type(data).__name__},
            )
            return None
        return data

    @classmethod
    def load(cls, extra_path: Optional[str] = None) -> None:
        """
        (Re)load configuration from YAML sources.

        Parameters
        ----------
        extra_path:
            Optional YAML file to merge over the packaged defaults. Falls back
            to `Config.CACHE_CONFIG_PATH` when omitted.
        """
        merged: Dict[str, Any] = {}
        sources: List[str] = []

        defaults = cls._load_yaml_file(DEFAULTS_FILE)
        if defaults:
            cls._deep_merge_dict(merged, defaults)
            sources.append(str(DEFAULTS_FILE))

        override_path = extra_path or Config.CACHE_CONFIG_PATH
        if override_path:
            path = Path(override_path)
            if path.exists():
                data = cls._load_yaml_file(path)
                if data:
                    cls._deep_merge_dict(merged, data)
                    sources.append(str(path))
            else:
                logger.warning(
                    "Cache config override file not found; using defaults",
                    extra={"file": override_path},
                )

        cls._cache = merged
        cls._loaded = True
        cls._metrics["loads"] += 1

        logger.info(
            "Cache configuration loaded",
            extra={"sources": sources, "top_level_keys": sorted(merged.keys())},
        )

    @classmethod
    def override(cls, values: Mapping[str, Any]) -> None:
        """Deep-merge runtime overrides into the loaded configuration."""
        if not cls._loaded:
            cls.load()
        cls._deep_merge_dict(cls._cache, values)
        logger.debug("Cache configuration overridden", extra={"keys": sorted(values.keys())})

    @classmethod
    def reset(cls) -> None:
        """Drop all loaded state; the next `get` reloads from YAML."""
        cls._cache = {}
        cls._loaded = False

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value by dot-notation path.

        Returns `default` when any segment of the path is missing.
        """
        if not cls._loaded:
            cls.load()

        cls._metrics["gets"] += 1
        value: Any = cls._cache
        for part in key.split("."):
            if not isinstance(value, Mapping) or part not in value:
                cls._metrics["misses"] += 1
                return default
            value = value[part]

        return default if value is None else copy.deepcopy(value)

    @classmethod
    def get_metrics(cls) -> Dict[str, int]:
        return dict(cls._metrics)
