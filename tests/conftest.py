"""
Pytest Configuration and Fixtures for the WeddingLK Cache Tests
===============================================================

Purpose
-------
Centralized fixtures for the cache test suite: a controllable clock, an
in-memory asynchronous Redis double, and ready-built cache managers.

Responsibilities
----------------
- Testcontainers Redis for integration tests
- Fake Redis client with failure injection for unit tests
- Tier registry and TieredCacheManager factories

Architecture Notes
------------------
- Unit tests use the Redis double (fast, isolated, no network)
- Integration tests use testcontainers (real Redis)
- Environment is pinned before the package is imported, since Config loads
  at import time
"""

from __future__ import annotations

import fnmatch
import os
from typing import Any, Dict, Generator, Optional, Set

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("LOG_COLORS", "false")

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from weddinglk.core.cache import TieredCacheManager, TierConfig, TierRegistry
from weddinglk.core.config import ConfigManager
from weddinglk.core.logging.logger import get_logger
from weddinglk.core.redis import RedisService

logger = get_logger(__name__)


# ============================================================================
# TEST DOUBLES
# ============================================================================


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """
    Asynchronous stand-in for `redis.asyncio.Redis` (decode_responses=True).

    Supports the commands RedisService issues. Expiry follows the injected
    clock, so advancing a FakeClock expires remote keys as well. Set
    `fail = True` to make every command raise a connection error.
    """

    def __init__(self, clock: Optional[FakeClock] = None) -> None:
        self.clock = clock or FakeClock()
        self.strings: Dict[str, str] = {}
        self.sets: Dict[str, Set[str]] = {}
        self.deadlines: Dict[str, float] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.fail = False
        self.closed = False

    def _command(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if self.fail:
            raise RedisConnectionError("Connection refused")

    def _purge(self, key: str) -> None:
        deadline = self.deadlines.get(key)
        if deadline is not None and self.clock() >= deadline:
            self._drop(key)

    def _drop(self, key: str) -> bool:
        existed = self.strings.pop(key, None) is not None
        existed = self.sets.pop(key, None) is not None or existed
        self.deadlines.pop(key, None)
        return existed

    def _exists(self, key: str) -> bool:
        self._purge(key)
        return key in self.strings or key in self.sets

    def commands(self, name: str) -> list[tuple[Any, ...]]:
        return [args for command, args in self.calls if command == name]

    async def ping(self) -> bool:
        self._command("PING")
        return True

    async def get(self, key: str) -> Optional[str]:
        self._command("GET", key)
        self._purge(key)
        return self.strings.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self._command("SETEX", key, ttl, value)
        self.sets.pop(key, None)
        self.strings[key] = value
        self.deadlines[key] = self.clock() + ttl
        return True

    async def delete(self, *keys: str) -> int:
        self._command("DEL", *keys)
        return sum(1 for key in keys if self._exists(key) and self._drop(key))

    async def expire(self, key: str, ttl: int) -> bool:
        self._command("EXPIRE", key, ttl)
        if not self._exists(key):
            return False
        self.deadlines[key] = self.clock() + ttl
        return True

    async def ttl(self, key: str) -> int:
        self._command("TTL", key)
        if not self._exists(key):
            return -2
        deadline = self.deadlines.get(key)
        if deadline is None:
            return -1
        return int(deadline - self.clock())

    async def flushdb(self) -> bool:
        self._command("FLUSHDB")
        self.strings.clear()
        self.sets.clear()
        self.deadlines.clear()
        return True

    async def sadd(self, key: str, *members: str) -> int:
        self._command("SADD", key, *members)
        self._purge(key)
        bucket = self.sets.setdefault(key, set())
        added = len(set(members) - bucket)
        bucket.update(members)
        return added

    async def smembers(self, key: str) -> Set[str]:
        self._command("SMEMBERS", key)
        self._purge(key)
        return set(self.sets.get(key, set()))

    async def srem(self, key: str, *members: str) -> int:
        self._command("SREM", key, *members)
        self._purge(key)
        bucket = self.sets.get(key)
        if bucket is None:
            return 0
        removed = len(bucket & set(members))
        bucket.difference_update(members)
        if not bucket:
            self._drop(key)
        return removed

    async def aclose(self) -> None:
        self._command("CLOSE")
        self.closed = True

    def keys(self, pattern: str = "*") -> list[str]:
        return [
            key
            for key in [*self.strings, *self.sets]
            if self._exists(key) and fnmatch.fnmatch(key, pattern)
        ]


# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def reset_config_manager() -> Generator[None, None, None]:
    """Every test starts from packaged defaults."""
    ConfigManager.reset()
    yield
    ConfigManager.reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> TierRegistry:
    """The standard three tiers, independent of any YAML file."""
    return TierRegistry(
        [
            TierConfig("memory", priority=1, default_ttl_seconds=300, max_entries=1000),
            TierConfig("redis", priority=2, default_ttl_seconds=3600, max_entries=10000),
            TierConfig("database", priority=3, default_ttl_seconds=86400, max_entries=100000),
        ],
        default_ttl_seconds=3600,
    )


# ============================================================================
# REDIS FIXTURES
# ============================================================================


@pytest.fixture
def fake_redis(clock: FakeClock) -> FakeRedis:
    """Redis double sharing the cache's clock."""
    return FakeRedis(clock)


@pytest.fixture
def redis_service(fake_redis: FakeRedis) -> RedisService:
    return RedisService(client=fake_redis)  # type: ignore[arg-type]


@pytest.fixture(scope="session")
def redis_container():
    """
    Start Redis testcontainer for integration tests.

    Scope: session (container persists across all tests)
    Skips when no container runtime is reachable.
    """
    testcontainers_redis = pytest.importorskip("testcontainers.redis")

    logger.info("Starting Redis testcontainer...")
    container = testcontainers_redis.RedisContainer(image="redis:7-alpine")
    try:
        container.start()
    except Exception as exc:
        pytest.skip(f"Redis testcontainer unavailable: {exc}")

    logger.info(
        "Redis testcontainer started",
        extra={
            "host": container.get_container_host_ip(),
            "port": container.get_exposed_port(6379),
        },
    )

    yield container

    logger.info("Stopping Redis testcontainer...")
    container.stop()


# ============================================================================
# CACHE FIXTURES
# ============================================================================


@pytest.fixture
def cache(
    redis_service: RedisService,
    registry: TierRegistry,
    clock: FakeClock,
) -> TieredCacheManager:
    """Memory + fake Redis + database tiers."""
    return TieredCacheManager.create(redis_service, registry=registry, clock=clock)


@pytest.fixture
def memory_only_cache(registry: TierRegistry, clock: FakeClock) -> TieredCacheManager:
    """No Redis service: the redis tier is disabled."""
    return TieredCacheManager.create(None, registry=registry, clock=clock)
