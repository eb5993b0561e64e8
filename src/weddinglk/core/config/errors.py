"""
Configuration error hierarchy for the WeddingLK cache.

Exception Hierarchy
-------------------
ConfigError (base)
└── ConfigValidationError (invalid tier definitions, bad TTLs)
"""


class ConfigError(Exception):
    """
    Base exception for all configuration-related errors.

    Example
    -------
    >>> try:
    ...     registry = TierRegistry.from_config()
    ... except ConfigError as e:
    ...     logger.error(f"Cache configuration rejected: {e}")
    """
    pass


class ConfigValidationError(ConfigError):
    """
    Raised when configuration validation fails.

    This exception is raised when:
    - Two tiers share the same priority (no strict read order)
    - A TTL or capacity is negative
    - A tier definition is missing required fields
    """
    pass


__all__ = [
    "ConfigError",
    "ConfigValidationError",
]
