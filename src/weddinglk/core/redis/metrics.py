"""
Per-command Redis statistics for the remote cache tier.

RedisService reports every command it issues here: latency, outcome and,
on failure, the exception type. The cache treats any Redis failure as a
miss, so these counters are the only place an outage stays visible; the
`errors` breakdown separates a dead server (ConnectionError) from a slow
one (TimeoutError).

One RedisMetrics belongs to one RedisService. Latency percentiles are
computed over the last `redis.latency_samples` calls of each command, and
calls slower than `redis.slow_operation_ms` are logged at WARNING.
"""

from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from weddinglk.core.config import ConfigManager
from weddinglk.core.logging.logger import get_logger

logger = get_logger(__name__)


@dataclass
class CommandStats:
    calls: int = 0
    failures: int = 0
    latency_total_ms: float = 0.0
    latency_max_ms: float = 0.0
    samples: Deque[float] = field(default_factory=deque)
    errors: Counter = field(default_factory=Counter)
    last_failure_at: Optional[float] = None

    @property
    def success_rate(self) -> float:
        """Fraction of calls that succeeded; 0.0 before the first call."""
        if not self.calls:
            return 0.0
        return (self.calls - self.failures) / self.calls

    @property
    def mean_latency_ms(self) -> float:
        return self.latency_total_ms / self.calls if self.calls else 0.0

    def quantile(self, q: float) -> float:
        """Nearest-rank quantile over the retained samples."""
        if not self.samples:
            return 0.0
        ordered = sorted(self.samples)
        return ordered[min(int(len(ordered) * q), len(ordered) - 1)]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total": self.calls,
            "failure": self.failures,
            "success_rate": round(self.success_rate, 4),
            "avg_latency_ms": round(self.mean_latency_ms, 2),
            "p95_latency_ms": round(self.quantile(0.95), 2),
            "max_latency_ms": round(self.latency_max_ms, 2),
            "errors": dict(self.errors),
        }


class RedisMetrics:
    """
    >>> metrics = RedisMetrics()
    >>> metrics.record_operation("GET", 1.2)
    >>> metrics.get_summary()["operations"]["GET"]["total"]
    1
    """

    def __init__(self) -> None:
        self._slow_ms: float = ConfigManager.get("redis.slow_operation_ms", 100)
        self._sample_size: int = ConfigManager.get("redis.latency_samples", 1000)
        self._commands: Dict[str, CommandStats] = {}
        self._since: float = time.time()

    def command(self, name: str) -> CommandStats:
        stats = self._commands.get(name)
        if stats is None:
            stats = CommandStats(samples=deque(maxlen=self._sample_size))
            self._commands[name] = stats
        return stats

    def record_operation(
        self,
        operation: str,
        latency_ms: float,
        success: bool = True,
        error_type: Optional[str] = None,
    ) -> None:
        stats = self.command(operation)
        stats.calls += 1
        stats.latency_total_ms += latency_ms
        stats.latency_max_ms = max(stats.latency_max_ms, latency_ms)
        stats.samples.append(latency_ms)

        if not success:
            stats.failures += 1
            stats.errors[error_type or "unknown"] += 1
            stats.last_failure_at = time.time()

        if latency_ms > self._slow_ms:
            logger.warning(
                "Slow Redis operation detected",
                extra={
                    "redis_command": operation,
                    "latency_ms": round(latency_ms, 2),
                    "threshold_ms": self._slow_ms,
                },
            )

    def get_summary(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self._since, 1),
            "total_operations": sum(s.calls for s in self._commands.values()),
            "total_failures": sum(s.failures for s in self._commands.values()),
            "operations": {name: s.as_dict() for name, s in self._commands.items()},
        }

    def reset(self) -> None:
        self._commands.clear()
        self._since = time.time()
