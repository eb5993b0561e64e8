"""
Unit tests for TieredCacheManager.

Exercises the façade over a memory tier, a Redis tier backed by the
in-memory Redis double, and the no-op database tier.
"""

import asyncio
import json

import pytest

from weddinglk.core.cache import CacheOptions, TieredCacheManager, TierWriteResult


@pytest.mark.asyncio
class TestReadOrder:
    """Tiers are consulted in ascending priority; first hit wins."""

    async def test_memory_value_shadows_remote_value(self, cache, fake_redis):
        await cache.backend("memory").set("venue:1", "memory copy", 300, CacheOptions())
        fake_redis.strings["venue:1"] = json.dumps("remote copy")

        assert await cache.get("venue:1") == "memory copy"
        assert cache.get_stats()["tier_stats"]["memory"]["hits"] == 1

    async def test_remote_hit_when_memory_misses(self, cache, fake_redis):
        fake_redis.strings["venue:1"] = json.dumps({"name": "X"})

        assert await cache.get("venue:1") == {"name": "X"}

        tier_stats = cache.get_stats()["tier_stats"]
        assert tier_stats["memory"]["misses"] == 1
        assert tier_stats["redis"]["hits"] == 1

    async def test_remote_hit_is_not_copied_into_memory(self, cache, fake_redis):
        fake_redis.strings["venue:1"] = json.dumps({"name": "X"})

        await cache.get("venue:1")

        assert "venue:1" not in cache.backend("memory")

    async def test_miss_consults_every_tier(self, cache):
        assert await cache.get("nothing") is None

        stats = cache.get_stats()
        assert stats["misses"] == 1
        assert {name: s["misses"] for name, s in stats["tier_stats"].items()} == {
            "memory": 1,
            "redis": 1,
            "database": 1,
        }

    async def test_remote_outage_falls_through_to_miss(self, cache, fake_redis):
        fake_redis.strings["venue:1"] = json.dumps("X")
        fake_redis.fail = True

        assert await cache.get("venue:1") is None

    async def test_raising_tier_counts_as_tier_miss(self, cache, mocker):
        mocker.patch.object(cache.backend("memory"), "get", side_effect=RuntimeError("boom"))
        await cache.backend("redis").set("k", "remote", 60, CacheOptions())

        assert await cache.get("k") == "remote"
        assert cache.get_stats()["errors"] == 1


@pytest.mark.asyncio
class TestWrite:

    async def test_writes_every_enabled_tier(self, cache, fake_redis):
        results = await cache.set("venue:1", {"name": "X"})

        assert results == [
            TierWriteResult("memory", True),
            TierWriteResult("redis", True),
            TierWriteResult("database", True),
        ]
        assert "venue:1" in cache.backend("memory")
        assert json.loads(fake_redis.strings["venue:1"]) == {"name": "X"}

    async def test_remote_failure_does_not_fail_set(self, cache, fake_redis):
        fake_redis.fail = True

        results = await cache.set("venue:1", {"name": "X"}, CacheOptions(tags=["venues"]))

        by_tier = {result.tier: result.success for result in results}
        assert by_tier == {"memory": True, "redis": False, "database": True}
        assert await cache.get("venue:1") == {"name": "X"}

    async def test_raising_tier_write_is_collected(self, cache, mocker):
        mocker.patch.object(
            cache.backend("database"), "set", side_effect=ValueError("disk full")
        )

        results = await cache.set("k", 1)

        failed = [result for result in results if not result.success]
        assert len(failed) == 1
        assert failed[0].tier == "database"
        assert "disk full" in failed[0].error

    async def test_overwrite_replaces_value(self, cache):
        await cache.set("k", {"v": 1})
        await cache.set("k", {"v": 2})

        assert await cache.get("k") == {"v": 2}


@pytest.mark.asyncio
class TestTtlResolution:
    """Explicit ttl, else the named layer's ttl, else 3600."""

    async def _setex_ttl(self, cache, fake_redis, options):
        await cache.set("k", 1, options)
        return fake_redis.commands("SETEX")[-1][1]

    async def test_explicit_ttl(self, cache, fake_redis):
        assert await self._setex_ttl(cache, fake_redis, CacheOptions(ttl=42)) == 42

    async def test_layer_ttl(self, cache, fake_redis):
        assert await self._setex_ttl(cache, fake_redis, CacheOptions(layer="memory")) == 300
        assert await self._setex_ttl(cache, fake_redis, CacheOptions(layer="database")) == 86400

    async def test_default_ttl(self, cache, fake_redis):
        assert await self._setex_ttl(cache, fake_redis, None) == 3600
        assert await self._setex_ttl(cache, fake_redis, CacheOptions(layer="disk")) == 3600

    async def test_zero_ttl_means_not_given(self, cache, fake_redis):
        assert await self._setex_ttl(cache, fake_redis, CacheOptions(ttl=0, layer="memory")) == 300

    async def test_same_ttl_applies_to_memory_tier(self, cache, clock):
        await cache.set("k", 1, CacheOptions(ttl=10, layer="database"))

        clock.advance(11)

        assert await cache.backend("memory").get("k") is None


@pytest.mark.asyncio
class TestExpiry:

    async def test_value_present_before_ttl_absent_after(self, cache, clock):
        await cache.set("k", "v", CacheOptions(ttl=5))

        clock.advance(4)
        assert await cache.get("k") == "v"

        clock.advance(2)
        assert await cache.get("k") is None


@pytest.mark.asyncio
class TestTagInvalidation:

    async def test_tagged_key_absent_from_every_tier(self, cache, fake_redis):
        await cache.set("k", "v", CacheOptions(tags=["x"]))

        purged = await cache.invalidate_by_tags(["x"])

        assert purged == 1
        assert await cache.get("k") is None
        assert "k" not in cache.backend("memory")
        assert "k" not in fake_redis.strings
        assert "tag:x" not in fake_redis.sets

    async def test_untagged_keys_survive(self, cache):
        await cache.set("tagged", 1, CacheOptions(tags=["x"]))
        await cache.set("other", 2, CacheOptions(tags=["y"]))
        await cache.set("plain", 3)

        await cache.invalidate_by_tags(["x"])

        assert await cache.get("other") == 2
        assert await cache.get("plain") == 3

    async def test_key_under_several_tags_counted_once(self, cache):
        await cache.set("k", 1, CacheOptions(tags=["x", "y"]))

        assert await cache.invalidate_by_tags(["x", "y"]) == 1
        assert cache.get_stats()["invalidations"] == 1

    async def test_unknown_tag_purges_nothing(self, cache):
        assert await cache.invalidate_by_tags(["nobody"]) == 0

    async def test_retagged_key_not_purged_by_old_tag(self, cache):
        await cache.set("k", 1, CacheOptions(tags=["old"]))
        await cache.set("k", 2, CacheOptions(tags=["new"]))

        assert await cache.invalidate_by_tags(["old"]) == 0
        assert await cache.get("k") == 2

    async def test_invalidation_works_while_redis_is_down(self, cache, fake_redis):
        await cache.set("k", 1, CacheOptions(tags=["x"]))
        fake_redis.fail = True

        assert await cache.invalidate_by_tags(["x"]) == 1
        assert "k" not in cache.backend("memory")

    async def test_keys_tagged_by_other_processes_are_purged(self, cache, fake_redis):
        fake_redis.strings["venue:9"] = json.dumps("from another worker")
        fake_redis.sets["tag:venues"] = {"venue:9"}

        assert await cache.invalidate_by_tags(["venues"]) == 1
        assert await cache.get("venue:9") is None


@pytest.mark.asyncio
class TestFallback:

    async def test_fetch_called_once_on_miss_and_cached(self, cache):
        calls = []

        def fetch():
            calls.append(1)
            return {"name": "X"}

        first = await cache.get_with_fallback("venue:1", fetch)
        second = await cache.get_with_fallback("venue:1", fetch)

        assert first == second == {"name": "X"}
        assert len(calls) == 1

    async def test_async_fetch_supported(self, cache):
        async def fetch():
            return [1, 2]

        assert await cache.get_with_fallback("k", fetch, CacheOptions(ttl=60)) == [1, 2]
        assert await cache.get("k") == [1, 2]

    async def test_fetch_error_propagates_unchanged(self, cache):
        error = LookupError("venue 1 not found")

        def fetch():
            raise error

        with pytest.raises(LookupError) as excinfo:
            await cache.get_with_fallback("venue:1", fetch)

        assert excinfo.value is error
        assert "venue:1" not in cache.backend("memory")

    async def test_fetch_not_called_on_hit(self, cache, mocker):
        await cache.set("k", "cached")
        fetch = mocker.Mock(return_value="fresh")

        assert await cache.get_with_fallback("k", fetch) == "cached"
        fetch.assert_not_called()

    async def test_none_result_is_returned_but_not_cached(self, cache, mocker):
        fetch = mocker.Mock(return_value=None)

        assert await cache.get_with_fallback("k", fetch) is None
        assert await cache.get_with_fallback("k", fetch) is None
        assert fetch.call_count == 2


@pytest.mark.asyncio
class TestWarmCache:

    async def test_overwrites_existing_value(self, cache, mocker):
        await cache.set("k", "stale")
        fetch = mocker.AsyncMock(return_value="fresh")

        assert await cache.warm_cache("k", fetch) == "fresh"
        assert await cache.get("k") == "fresh"
        fetch.assert_awaited_once()
        assert cache.get_stats()["warmups"] == 1

    async def test_fetch_error_propagates(self, cache):
        async def fetch():
            raise ConnectionError("db down")

        with pytest.raises(ConnectionError, match="db down"):
            await cache.warm_cache("k", fetch)


@pytest.mark.asyncio
class TestHitRate:

    async def test_zero_before_any_lookup(self, cache):
        assert cache.get_stats()["hit_rate"] == 0.0
        assert cache.get_stats()["total_requests"] == 0

    async def test_hits_over_requests(self, cache):
        for key in ("a", "b", "c"):
            await cache.set(key, key)

        for key in ("a", "b", "c", "missing"):
            await cache.get(key)

        stats = cache.get_stats()
        assert (stats["hits"], stats["misses"], stats["total_requests"]) == (3, 1, 4)
        assert stats["hit_rate"] == 3 / 4

    async def test_snapshot_is_detached(self, cache):
        snapshot = cache.get_stats()
        snapshot["tier_stats"]["memory"] = {"hits": 99}
        snapshot["hits"] = 99

        assert cache.get_stats()["hits"] == 0
        assert cache.get_stats()["tier_stats"].get("memory", {}).get("hits", 0) == 0


@pytest.mark.asyncio
class TestVenueScenario:

    async def test_expiry_then_tag_invalidation(self, cache, clock):
        await cache.set("venue:1", {"name": "X"}, CacheOptions(ttl=5, tags=["venues"]))
        assert await cache.get("venue:1") == {"name": "X"}

        clock.advance(6)
        assert await cache.get("venue:1") is None

        await cache.set("venue:2", {"name": "Y"}, CacheOptions(tags=["venues"]))
        await cache.invalidate_by_tags(["venues"])

        assert await cache.get("venue:2") is None


@pytest.mark.asyncio
class TestHealth:

    async def test_all_tiers_healthy(self, cache):
        assert await cache.health_check() == {
            "status": "healthy",
            "layers": {"memory": True, "redis": True, "database": True},
        }

    async def test_redis_outage_degrades(self, cache, fake_redis):
        fake_redis.fail = True

        health = await cache.health_check()

        assert health["status"] == "degraded"
        assert health["layers"] == {"memory": True, "redis": False, "database": True}

    async def test_unhealthy_tier_stays_in_rotation(self, cache, fake_redis):
        fake_redis.fail = True
        await cache.health_check()
        fake_redis.fail = False

        await cache.set("k", 1)

        assert "k" in fake_redis.strings


@pytest.mark.asyncio
class TestMaintenance:

    async def test_delete_removes_key_from_every_tier(self, cache, fake_redis):
        await cache.set("k", 1, CacheOptions(tags=["x"]))

        await cache.delete("k")

        assert await cache.get("k") is None
        assert "k" not in fake_redis.strings
        assert cache.tags.tags_for("k") == set()

    async def test_clear_empties_tiers(self, cache, fake_redis):
        await cache.set("a", 1, CacheOptions(tags=["x"]))
        await cache.set("b", 2)

        await cache.clear()

        assert cache.backend("memory").size() == 0
        assert fake_redis.keys() == []
        assert await cache.invalidate_by_tags(["x"]) == 0

    async def test_stats_report_tier_sizes(self, cache):
        await cache.set("a", "x" * 100)
        await cache.set("b", "y")

        stats = cache.get_stats()

        assert stats["tier_stats"]["memory"]["size"] == 2
        assert stats["tier_stats"]["database"]["size"] == 0
        assert stats["memory_usage"].endswith("B")
        assert stats["memory_usage"] != "0B"
        assert stats["sets"] == 2

    async def test_close_releases_memory_and_connection(self, cache, fake_redis):
        await cache.set("k", 1)

        await cache.close()

        assert cache.backend("memory").size() == 0
        assert fake_redis.closed is True


@pytest.mark.asyncio
class TestWithoutRedis:

    async def test_redis_tier_disabled(self, memory_only_cache):
        results = await memory_only_cache.set("k", 1)

        assert [result.tier for result in results] == ["memory", "database"]
        assert memory_only_cache.backend("redis") is None
        assert (await memory_only_cache.health_check())["layers"] == {
            "memory": True,
            "database": True,
        }

    async def test_tags_tracked_in_process(self, memory_only_cache):
        await memory_only_cache.set("k", 1, CacheOptions(tags=["x"]))

        assert await memory_only_cache.invalidate_by_tags(["x"]) == 1
        assert await memory_only_cache.get("k") is None

    async def test_close_without_redis(self, memory_only_cache):
        await memory_only_cache.set("k", 1)

        await memory_only_cache.close()

        assert memory_only_cache.backend("memory").size() == 0


@pytest.mark.asyncio
class TestCreateFromConfig:

    async def test_packaged_tier_layout(self, redis_service):
        cache = TieredCacheManager.create(redis_service)

        assert [tier.name for tier in cache.registry.ordered()] == ["memory", "redis", "database"]
        assert cache.backend("memory").tier.max_entries == 1000

    async def test_caller_registry_left_untouched(self, registry, redis_service):
        TieredCacheManager.create(None, registry=registry)

        assert registry.get("redis").enabled is True

        cache = TieredCacheManager.create(redis_service, registry=registry)
        assert [tier.name for tier in cache.registry.ordered()] == ["memory", "redis", "database"]


@pytest.mark.asyncio
class TestTagMirrorBounded:
    """Tags that are never invalidated must not pin expired keys in memory."""

    async def test_expired_search_keys_are_swept(self, memory_only_cache, clock):
        for i in range(2000):
            await memory_only_cache.set(
                f"search:{i}", {"page": i}, CacheOptions(ttl=60, tags=["venues:search"])
            )
        assert memory_only_cache.backend("memory").size() == 1000

        clock.advance(3 * 86400)
        for i in range(10):
            await memory_only_cache.set(f"home:{i}", i)

        assert memory_only_cache.tags.tags_for("search:1999") == set()
        assert len(memory_only_cache.tags) == 0

    async def test_live_keys_survive_the_sweep(self, memory_only_cache, clock):
        await memory_only_cache.set("venue:1", "v", CacheOptions(ttl=3600, tags=["venues"]))

        clock.advance(600)
        await memory_only_cache.set("home", "h")

        assert memory_only_cache.tags.tags_for("venue:1") == {"venues"}
        assert await memory_only_cache.invalidate_by_tags(["venues"]) == 1


@pytest.mark.asyncio
class TestBatchReads:

    async def test_get_many_preserves_order(self, cache):
        await cache.set("a", 1)
        await cache.set("c", 3)

        assert await cache.get_many(["a", "b", "c"]) == [1, None, 3]

        stats = cache.get_stats()
        assert (stats["hits"], stats["misses"]) == (2, 1)

    async def test_get_many_empty(self, cache):
        assert await cache.get_many([]) == []

    async def test_exists_does_not_touch_hit_rate(self, cache, fake_redis):
        fake_redis.strings["remote-only"] = json.dumps("x")

        assert await cache.exists("remote-only") is True
        assert await cache.exists("absent") is False
        assert cache.get_stats()["total_requests"] == 0


@pytest.mark.asyncio
class TestBackgroundRefresh:
    """Stale-while-revalidate: stale values are served while a task refetches."""

    async def test_miss_fetches_inline_and_stores_with_stale_window(self, cache, fake_redis, mocker):
        fetch = mocker.AsyncMock(return_value="v1")

        value = await cache.get_with_background_refresh(
            "k", fetch, CacheOptions(ttl=60), stale_while_revalidate=30
        )

        assert value == "v1"
        fetch.assert_awaited_once()
        assert fake_redis.commands("SETEX")[-1][:2] == ("k", 90)

    async def test_fresh_value_not_refreshed(self, cache, clock, mocker):
        await cache.get_with_background_refresh(
            "k", lambda: "v1", CacheOptions(ttl=60), stale_while_revalidate=30
        )
        fetch = mocker.AsyncMock(return_value="v2")
        clock.advance(50)

        assert await cache.get_with_background_refresh(
            "k", fetch, CacheOptions(ttl=60), stale_while_revalidate=30
        ) == "v1"
        assert cache.pending_refreshes == 0
        fetch.assert_not_awaited()

    async def test_stale_value_served_then_replaced(self, cache, clock, mocker):
        await cache.get_with_background_refresh(
            "k", lambda: "v1", CacheOptions(ttl=60), stale_while_revalidate=30
        )
        fetch = mocker.AsyncMock(return_value="v2")
        clock.advance(70)

        assert await cache.get_with_background_refresh(
            "k", fetch, CacheOptions(ttl=60), stale_while_revalidate=30
        ) == "v1"
        assert cache.pending_refreshes == 1

        await cache.wait_for_refreshes()

        fetch.assert_awaited_once()
        assert await cache.get("k") == "v2"
        assert cache.pending_refreshes == 0

    async def test_one_refresh_per_key(self, cache, clock, mocker):
        await cache.get_with_background_refresh(
            "k", lambda: "v1", CacheOptions(ttl=60), stale_while_revalidate=30
        )
        fetch = mocker.AsyncMock(return_value="v2")
        clock.advance(70)

        for _ in range(3):
            await cache.get_with_background_refresh(
                "k", fetch, CacheOptions(ttl=60), stale_while_revalidate=30
            )
        await cache.wait_for_refreshes()

        assert fetch.await_count == 1

    async def test_failed_refresh_is_logged_and_keeps_stale_value(self, cache, clock, mocker):
        await cache.get_with_background_refresh(
            "k", lambda: "v1", CacheOptions(ttl=60), stale_while_revalidate=30
        )
        warning = mocker.patch("weddinglk.core.cache.manager.logger.warning")
        clock.advance(70)

        await cache.get_with_background_refresh(
            "k",
            mocker.AsyncMock(side_effect=RuntimeError("database down")),
            CacheOptions(ttl=60),
            stale_while_revalidate=30,
        )
        await cache.wait_for_refreshes()

        messages = [call.args[0] for call in warning.call_args_list]
        assert "Background cache refresh failed; keeping stale value" in messages
        assert cache.get_stats()["errors"] == 1
        assert await cache.get("k") == "v1"

    async def test_miss_fetch_error_propagates(self, cache, mocker):
        fetch = mocker.AsyncMock(side_effect=RuntimeError("database down"))

        with pytest.raises(RuntimeError, match="database down"):
            await cache.get_with_background_refresh("k", fetch)

        assert await cache.get("k") is None

    async def test_close_cancels_pending_refresh(self, cache, clock):
        await cache.get_with_background_refresh(
            "k", lambda: "v1", CacheOptions(ttl=60), stale_while_revalidate=30
        )
        never = asyncio.Event()

        async def slow_fetch():
            await never.wait()
            return "v2"

        clock.advance(70)
        await cache.get_with_background_refresh(
            "k", slow_fetch, CacheOptions(ttl=60), stale_while_revalidate=30
        )
        assert cache.pending_refreshes == 1

        await cache.close()

        assert cache.pending_refreshes == 0
