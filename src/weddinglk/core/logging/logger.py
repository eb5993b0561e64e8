"""
WeddingLK Logging Subsystem (2025)

Purpose
-------
Structured, non-blocking logging for the cache stack. Every module logs a
short constant message plus structured fields:

    logger.warning("Redis cache read failed; treating as miss",
                   extra={"tier": "redis", "key": key, "error": str(exc)})

The fields, not the message text, carry the detail: tier names, keys, tags,
TTLs and error types are what operators filter on.

Responsibilities
----------------
- Configure the root logger once (idempotent) from Config.
- Hand records to a bounded queue drained by a background listener so
  handler I/O never blocks the event loop; drop records when the queue is full.
- Enrich records with correlation_id, request_id, component and operation
  taken from a ContextVar (see LogContext).
- Render records as JSON (production, LOG_JSON=true, log files) or as a
  single console line with the structured fields appended as key=value.

Non-Responsibilities
--------------------
- Metrics (RedisMetrics, CacheStats)
- Log shipping or retention beyond one rotated file

Configuration Keys
------------------
ENVIRONMENT, LOG_LEVEL, LOG_JSON, LOG_COLORS, LOG_TO_FILE, LOGS_DIR (Config)
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from weddinglk.core.config.config import Config

_log_context: ContextVar[Dict[str, Any]] = ContextVar("weddinglk_log_context", default={})

_INIT_FLAG = "_weddinglk_logging_initialized"

# Attributes every LogRecord carries; anything else came in through `extra`
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}

_CONTEXT_ATTRS = ("correlation_id", "request_id", "component", "operation")


# ═══════════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class LoggerConfig:
    """Snapshot of the logging settings; build with `from_config()`."""

    level: int = logging.INFO
    use_json: bool = False
    use_colors: bool = False
    to_file: bool = False
    logs_dir: Path = Path("logs")
    file_name: str = "weddinglk_cache.json.log"
    file_backups: int = 1
    queue_max_size: int = 10_000

    console_format: str = "%(asctime)s | %(levelname)-8s | %(name)-32s | %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"

    @classmethod
    def from_config(cls) -> "LoggerConfig":
        production = str(Config.ENVIRONMENT).lower() == "production"
        use_json = production if Config.LOG_JSON is None else bool(Config.LOG_JSON)
        return cls(
            level=getattr(logging, str(Config.LOG_LEVEL).upper(), logging.INFO),
            use_json=use_json,
            use_colors=(
                not use_json and bool(Config.LOG_COLORS) and sys.stdout.isatty()
            ),
            to_file=bool(Config.LOG_TO_FILE),
            logs_dir=Path(Config.LOGS_DIR).resolve(),
        )


@dataclass(slots=True)
class LoggingMetrics:
    records_enqueued: int = 0
    records_dropped: int = 0
    listener_errors: int = 0


@dataclass(frozen=True, slots=True)
class LoggingHealth:
    initialized: bool
    queue_size: int
    queue_max_size: int
    records_enqueued: int
    records_dropped: int
    listener_errors: int


_metrics = LoggingMetrics()
_queue: Optional["queue.Queue[logging.LogRecord]"] = None
_listener: Optional[QueueListener] = None


# ═══════════════════════════════════════════════════════════════════════════
# FILTERS & FORMATTERS
# ═══════════════════════════════════════════════════════════════════════════


class ContextFilter(logging.Filter):
    """Copy the active LogContext onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _log_context.get()

        correlation_id = context.get("correlation_id") or context.get("request_id") or "N/A"
        record.correlation_id = correlation_id
        record.request_id = context.get("request_id") or correlation_id
        record.component = context.get("component") or record.name.split(".", 1)[0]
        record.operation = context.get("operation") or "N/A"
        return True


def structured_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields passed through `extra=` (context fields excluded)."""
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS
        and key not in _CONTEXT_ATTRS
        and not key.startswith("_")
    }


class ConsoleFormatter(logging.Formatter):
    """One line per record, structured fields appended as key=value."""

    LEVEL_COLORS: Dict[str, str] = {
        "DEBUG": "\033[90m",
        "INFO": "\033[94m",
        "WARNING": "\033[93m",
        "ERROR": "\033[91m",
        "CRITICAL": "\033[91m\033[1m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, datefmt: str, colors: bool = False) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colors = colors

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        levelname = record.levelname
        if self.colors and levelname in self.LEVEL_COLORS:
            record.levelname = f"{self.LEVEL_COLORS[levelname]}{levelname}{self.RESET}"
        try:
            line = super().format(record)
        finally:
            record.levelname = levelname

        fields = structured_fields(record)
        if fields:
            rendered = " ".join(f"{key}={value}" for key, value in fields.items())
            head, sep, tail = line.partition("\n")
            line = f"{head} | {rendered}{sep}{tail}"
        return line


class JSONFormatter(logging.Formatter):
    """Canonical machine-readable representation."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for attr in _CONTEXT_ATTRS:
            value = getattr(record, attr, None)
            if value not in (None, "N/A"):
                payload[attr] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        fields = structured_fields(record)
        if fields:
            payload["extra"] = fields

        return json.dumps(payload, ensure_ascii=False, default=str)


# ═══════════════════════════════════════════════════════════════════════════
# QUEUE PLUMBING
# ═══════════════════════════════════════════════════════════════════════════


class CacheQueueHandler(QueueHandler):
    """Non-blocking enqueue; a full queue drops the record and counts it."""

    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _metrics.records_enqueued += 1
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            _metrics.records_dropped += 1
            sys.stderr.write("weddinglk: logging queue full, record dropped\n")


class CacheQueueListener(QueueListener):
    def handleError(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _metrics.listener_errors += 1
        sys.stderr.write(f"weddinglk: log handler failed for record from {record.name}\n")


def _handlers(config: LoggerConfig) -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(config.level)
    console.setFormatter(
        JSONFormatter()
        if config.use_json
        else ConsoleFormatter(config.console_format, config.date_format, colors=config.use_colors)
    )
    handlers: List[logging.Handler] = [console]

    if config.to_file:
        config.logs_dir.mkdir(parents=True, exist_ok=True)
        rotating = TimedRotatingFileHandler(
            filename=str(config.logs_dir / config.file_name),
            when="midnight",
            backupCount=config.file_backups,
            encoding="utf-8",
            utc=True,
        )
        rotating.setLevel(config.level)
        rotating.setFormatter(JSONFormatter())
        handlers.append(rotating)

    return handlers


# ═══════════════════════════════════════════════════════════════════════════
# SETUP / TEARDOWN
# ═══════════════════════════════════════════════════════════════════════════


def setup_logging(config: Optional[LoggerConfig] = None) -> None:
    """Install the queue-based handler stack on the root logger (once)."""
    global _metrics, _queue, _listener

    root = logging.getLogger()
    if getattr(root, _INIT_FLAG, False):
        return

    config = config or LoggerConfig.from_config()
    _metrics = LoggingMetrics()
    _queue = queue.Queue(config.queue_max_size)

    _listener = CacheQueueListener(_queue, *_handlers(config), respect_handler_level=True)
    _listener.start()

    queue_handler = CacheQueueHandler(_queue)
    queue_handler.setLevel(config.level)
    # Context must be captured on the emitting task, before the record is queued
    queue_handler.addFilter(ContextFilter())

    root.handlers.clear()
    root.setLevel(config.level)
    root.addHandler(queue_handler)

    # redis-py logs every reconnect at DEBUG
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    setattr(root, _INIT_FLAG, True)
    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": Config.ENVIRONMENT,
            "log_level": logging.getLevelName(config.level),
            "json": config.use_json,
            "to_file": config.to_file,
        },
    )


def shutdown_logging() -> None:
    """Drain the queue, close handlers and allow `setup_logging` to run again."""
    global _queue, _listener

    root = logging.getLogger()
    if not getattr(root, _INIT_FLAG, False):
        return

    logging.getLogger(__name__).info("Shutting down logging")

    if _listener is not None:
        _listener.stop()
        for handler in _listener.handlers:
            handler.close()
        _listener = None

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    setattr(root, _INIT_FLAG, False)
    _queue = None


def get_logging_health() -> LoggingHealth:
    return LoggingHealth(
        initialized=bool(getattr(logging.getLogger(), _INIT_FLAG, False)),
        queue_size=_queue.qsize() if _queue is not None else 0,
        queue_max_size=_queue.maxsize if _queue is not None else 0,
        records_enqueued=_metrics.records_enqueued,
        records_dropped=_metrics.records_dropped,
        listener_errors=_metrics.listener_errors,
    )


# ═══════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ═══════════════════════════════════════════════════════════════════════════


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Scope correlation fields over a block of work (sync or async).

    Example
    -------
    >>> async with LogContext(component="cache", operation="invalidate"):
    ...     await cache.invalidate_by_tags(["venues"])
    """

    def __init__(
        self,
        component: Optional[str] = None,
        operation: Optional[str] = None,
        correlation_id: Optional[str] = None,
        request_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        correlation_id = correlation_id or request_id or uuid.uuid4().hex[:8]
        self.context: Dict[str, Any] = {
            "component": component,
            "operation": operation,
            "correlation_id": correlation_id,
            "request_id": request_id or correlation_id,
            **extra,
        }
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        self._token = _log_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def set_log_context(
    component: Optional[str] = None,
    operation: Optional[str] = None,
    correlation_id: Optional[str] = None,
    request_id: Optional[str] = None,
    **extra: Any,
) -> None:
    """Merge fields into the current context without scoping them."""
    context = dict(_log_context.get())
    updates = {
        "component": component,
        "operation": operation,
        "correlation_id": correlation_id,
        "request_id": request_id,
    }
    context.update({key: value for key, value in updates.items() if value})
    if request_id and not context.get("correlation_id"):
        context["correlation_id"] = request_id
    context.update(extra)
    _log_context.set(context)


def get_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


def clear_log_context() -> None:
    _log_context.set({})


setup_logging()
