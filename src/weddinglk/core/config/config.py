"""
Process-level settings for the WeddingLK cache, read from the environment.

Everything fixed at process start lives here: how to reach Redis, how to log,
and where an optional YAML override for the cache tunables sits. Tier layout
and TTLs are not environment settings; see ConfigManager.

Each setting is declared once in `_SETTINGS` with its parser, default and
bounds. `Config.load()` walks that table, so a malformed value never aborts
startup: it is reported (log warning + `get_metrics().validation_errors`)
and the default is used instead.

Environment Variables
---------------------
- ENVIRONMENT: development | testing | staging | production (default: development)
- LOG_LEVEL: DEBUG..CRITICAL (default: INFO)
- LOG_JSON: Force JSON console output (default: JSON only in production)
- LOG_COLORS: ANSI colours on a TTY console (default: True)
- LOG_TO_FILE: Enable the daily rotating JSON file handler (default: False)
- LOGS_DIR: Directory for file logs (default: ./logs)
- REDIS_URL: redis://, rediss:// or unix:// URL (default: redis://localhost:6379/0)
- REDIS_SOCKET_TIMEOUT: Socket timeout in seconds, 1-60 (default: 5)
- REDIS_MAX_CONNECTIONS: Connection pool size, 1-500 (default: 50)
- REDIS_DECODE_RESPONSES: Decode replies to str (default: True)
- CACHE_CONFIG_PATH: Optional YAML file merged over packaged cache defaults
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlsplit

from dotenv import load_dotenv

load_dotenv()

# Structured logging is configured from these settings, so it cannot be used here
_log = logging.getLogger(__name__)

_TRUE = frozenset({"true", "yes", "1", "on"})
_FALSE = frozenset({"false", "no", "0", "off"})
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_REDIS_SCHEMES = ("redis", "rediss", "unix")


class Environment(Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def from_string(cls, value: str) -> "Environment":
        """
        Case-insensitive lookup; anything unrecognised means development.

        >>> Environment.from_string("Production") is Environment.PRODUCTION
        True
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            _log.warning("Unknown ENVIRONMENT %r, using development", value)
            return cls.DEVELOPMENT


@dataclass
class ConfigLoadReport:
    """What the last `Config.load()` took from the environment."""

    from_environment: Dict[str, bool] = field(default_factory=dict)
    validation_errors: Dict[str, str] = field(default_factory=dict)
    loaded_at: Optional[str] = None

    @property
    def defaults_used(self):
        return sorted(key for key, from_env in self.from_environment.items() if not from_env)

    def get_summary(self) -> Dict[str, Any]:
        return {
            "total_configs": len(self.from_environment),
            "from_environment": sum(self.from_environment.values()),
            "validation_errors": len(self.validation_errors),
            "defaults_used": self.defaults_used,
            "last_reload": self.loaded_at,
        }


# ---------------------------------------------------------------------------
# Parsers: raw string -> value, or ValueError with a readable reason
# ---------------------------------------------------------------------------


def _parse_bool(raw: str) -> bool:
    normalized = raw.strip().lower()
    if normalized in _TRUE:
        return True
    if normalized in _FALSE:
        return False
    raise ValueError("not a boolean")


def _int_between(low: int, high: int) -> Callable[[str], int]:
    def parse(raw: str) -> int:
        try:
            value = int(raw)
        except ValueError:
            raise ValueError("not an integer") from None
        if not low <= value <= high:
            raise ValueError(f"outside {low}..{high}")
        return value

    return parse


def _parse_log_level(raw: str) -> str:
    level = raw.strip().upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"expected one of {', '.join(_LOG_LEVELS)}")
    return level


def _parse_redis_url(raw: str) -> str:
    scheme = urlsplit(raw).scheme
    if scheme not in _REDIS_SCHEMES:
        raise ValueError(f"unsupported scheme {scheme or '(none)'!r}")
    return raw


def _parse_environment(raw: str) -> str:
    return Environment.from_string(raw).value


# (attribute / env var, parser, default)
_SETTINGS: Tuple[Tuple[str, Callable[[str], Any], Any], ...] = (
    ("ENVIRONMENT", _parse_environment, "development"),
    ("REDIS_URL", _parse_redis_url, "redis://localhost:6379/0"),
    ("REDIS_SOCKET_TIMEOUT", _int_between(1, 60), 5),
    ("REDIS_MAX_CONNECTIONS", _int_between(1, 500), 50),
    ("REDIS_DECODE_RESPONSES", _parse_bool, True),
    ("LOG_LEVEL", _parse_log_level, "INFO"),
    ("LOG_JSON", _parse_bool, None),
    ("LOG_COLORS", _parse_bool, True),
    ("LOG_TO_FILE", _parse_bool, False),
    ("LOGS_DIR", Path, Path("logs")),
    ("CACHE_CONFIG_PATH", str, None),
)


class Config:
    """
    Class-level settings, populated by `load()` at import time.

    >>> Config.REDIS_URL
    'redis://localhost:6379/0'
    """

    ENVIRONMENT: str = "development"

    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_MAX_CONNECTIONS: int = 50
    REDIS_DECODE_RESPONSES: bool = True

    LOG_LEVEL: str = "INFO"
    LOG_JSON: Optional[bool] = None
    LOG_COLORS: bool = True
    LOG_TO_FILE: bool = False
    LOGS_DIR: Path = Path("logs")

    CACHE_CONFIG_PATH: Optional[str] = None

    _report: ConfigLoadReport = ConfigLoadReport()

    @classmethod
    def _read(cls, name: str, parse: Callable[[str], Any], default: Any) -> Any:
        raw = os.getenv(name)
        cls._report.from_environment[name] = raw is not None
        if raw is None:
            return default
        try:
            return parse(raw)
        except ValueError as exc:
            message = f"{name}={raw!r} rejected ({exc}); using default {default!r}"
            _log.warning(message)
            cls._report.validation_errors[name] = message
            cls._report.from_environment[name] = False
            return default

    @classmethod
    def load(cls) -> None:
        """(Re)read every setting; tests call this after monkeypatching env."""
        cls._report = ConfigLoadReport()
        for name, parse, default in _SETTINGS:
            setattr(cls, name, cls._read(name, parse, default))
        cls._report.loaded_at = datetime.now(timezone.utc).isoformat()

    @classmethod
    def is_production(cls) -> bool:
        return cls.ENVIRONMENT == Environment.PRODUCTION.value

    @classmethod
    def is_development(cls) -> bool:
        return cls.ENVIRONMENT == Environment.DEVELOPMENT.value

    @classmethod
    def is_testing(cls) -> bool:
        return cls.ENVIRONMENT == Environment.TESTING.value

    @classmethod
    def get_metrics(cls) -> ConfigLoadReport:
        return cls._report

    @classmethod
    def get_config_summary(cls) -> Dict[str, Any]:
        """Settings safe to print: the Redis URL is reduced to scheme and host."""
        parts = urlsplit(cls.REDIS_URL)
        return {
            "environment": cls.ENVIRONMENT,
            "log_level": cls.LOG_LEVEL,
            "log_to_file": cls.LOG_TO_FILE,
            "redis_url_scheme": parts.scheme or "unknown",
            "redis_host": parts.hostname,
            "redis_max_connections": cls.REDIS_MAX_CONNECTIONS,
            "redis_socket_timeout": cls.REDIS_SOCKET_TIMEOUT,
            "cache_config_path": cls.CACHE_CONFIG_PATH,
        }


Config.load()
