"""
Cache key and tag conventions.

Keys are namespaced as ``<prefix>:<namespace>:<part>[:<part>...]`` where the
prefix comes from ``cache.key_namespace`` (default ``weddinglk``). Entity
caches are tagged with the entity name and with ``<entity>:<id>`` so both
"everything about venues" and "everything about venue 42" can be invalidated.
"""

from __future__ import annotations

from typing import Any, List, Optional

from weddinglk.core.config import ConfigManager

DEFAULT_KEY_NAMESPACE = "weddinglk"


def build_key(namespace: str, *parts: Any) -> str:
    """
    >>> build_key("venue", 42)
    'weddinglk:venue:42'
    >>> build_key("vendors", "list", "page", 2)
    'weddinglk:vendors:list:page:2'
    """
    if not namespace:
        raise ValueError("Cache key namespace must be non-empty")
    prefix = ConfigManager.get("cache.key_namespace", DEFAULT_KEY_NAMESPACE)
    segments = [str(prefix), namespace, *(str(part) for part in parts)]
    return ":".join(segments)


def entity_tags(entity: str, entity_id: Optional[Any] = None) -> List[str]:
    """
    >>> entity_tags("venues")
    ['venues']
    >>> entity_tags("venues", 42)
    ['venues', 'venues:42']
    """
    if entity_id is None or entity_id == "":
        return [entity]
    return [entity, f"{entity}:{entity_id}"]
