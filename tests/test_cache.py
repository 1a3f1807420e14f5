"""
Tests for featurehost cache layer.

Tests InMemoryCache, RedisCache (fake client), NamespacedCache and cached().
"""
import json
from unittest.mock import AsyncMock

import pytest

from featurehost.cache import MISS, CacheBackend, InMemoryCache, NamespacedCache, RedisCache, cached
from featurehost.cache.base import CacheEntry


class FakeClock:
    def __init__(self, now: float = 500.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """Minimal async Redis client storing raw strings."""

    def __init__(self):
        self.store = {}
        self.px = {}
        self.closed = False

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, px=None):
        self.store[key] = value
        self.px[key] = px

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match=None):
        prefix = match.rstrip("*") if match else ""
        for key in list(self.store):
            if key.startswith(prefix):
                yield key

    async def aclose(self):
        self.closed = True


class TestMiss:
    def test_singleton_and_falsy(self):
        assert type(MISS)() is MISS
        assert not MISS
        assert repr(MISS) == "MISS"

    def test_entry_expiry_is_inclusive(self):
        entry = CacheEntry(key="k", value=1, expires_at=10.0)

        assert not entry.is_expired(9.99)
        assert entry.is_expired(10.0)


class TestInMemoryCache:
    """Tests for InMemoryCache."""

    @pytest.mark.asyncio
    async def test_get_missing_returns_miss(self):
        cache = InMemoryCache()
        assert await cache.get("missing") is MISS

    @pytest.mark.asyncio
    async def test_set_and_get(self):
        cache = InMemoryCache()

        await cache.set("k", {"fee": 5000}, ttl_seconds=30)

        assert await cache.get("k") == {"fee": 5000}

    @pytest.mark.asyncio
    async def test_cached_none_is_a_hit(self):
        cache = InMemoryCache()

        await cache.set("k", None, ttl_seconds=30)

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_hard_ttl(self):
        clock = FakeClock()
        cache = InMemoryCache(clock=clock)
        await cache.set("k", "v", ttl_seconds=30)

        clock.advance(29.9)
        assert await cache.get("k") == "v"

        clock.advance(0.1)
        assert await cache.get("k") is MISS
        # Lazily evicted on read
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_reads_do_not_refresh(self):
        clock = FakeClock()
        cache = InMemoryCache(clock=clock)
        await cache.set("k", "v", ttl_seconds=10)

        for _ in range(5):
            clock.advance(1.5)
            await cache.get("k")
        clock.advance(3.0)

        assert await cache.get("k") is MISS

    @pytest.mark.asyncio
    async def test_last_writer_wins(self):
        cache = InMemoryCache()

        await cache.set("k", "first", ttl_seconds=10)
        await cache.set("k", "second", ttl_seconds=10)

        assert await cache.get("k") == "second"

    @pytest.mark.asyncio
    async def test_returned_values_are_copies(self):
        cache = InMemoryCache()
        original = {"fees": [1, 2]}
        await cache.set("k", original, ttl_seconds=10)

        original["fees"].append("writer")
        first = await cache.get("k")
        first["fees"].append("reader")

        assert await cache.get("k") == {"fees": [1, 2]}

    @pytest.mark.asyncio
    async def test_rejects_non_positive_ttl(self):
        cache = InMemoryCache()

        with pytest.raises(ValueError):
            await cache.set("k", "v", ttl_seconds=0)

    @pytest.mark.asyncio
    async def test_delete_and_clear(self):
        cache = InMemoryCache()
        await cache.set("a", 1, ttl_seconds=10)
        await cache.set("b", 2, ttl_seconds=10)

        assert await cache.delete("a") is True
        assert await cache.delete("a") is False

        await cache.clear()
        assert await cache.get("b") is MISS

    @pytest.mark.asyncio
    async def test_capacity_cleanup(self):
        clock = FakeClock()
        cache = InMemoryCache(max_entries=4, clock=clock)

        for i in range(5):
            await cache.set(f"k{i}", i, ttl_seconds=10 + i)

        assert len(cache) <= 4
        # Entry furthest from expiry is kept
        assert await cache.get("k4") == 4

    @pytest.mark.asyncio
    async def test_hit_miss_counters(self):
        cache = InMemoryCache()
        await cache.set("k", 1, ttl_seconds=10)

        await cache.get("k")
        await cache.get("other")

        assert (cache.hits, cache.misses) == (1, 1)

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryCache(), CacheBackend)


class TestRedisCache:
    """Tests for RedisCache against a fake client."""

    @pytest.mark.asyncio
    async def test_set_serializes_json_with_px(self):
        client = FakeRedis()
        cache = RedisCache(client=client)

        await cache.set("k", {"fee": 1}, ttl_seconds=1.5)

        assert json.loads(client.store["featurehost:cache:k"]) == {"fee": 1}
        assert client.px["featurehost:cache:k"] == 1500

    @pytest.mark.asyncio
    async def test_get_roundtrip_and_miss(self):
        cache = RedisCache(client=FakeRedis())

        await cache.set("k", [1, 2], ttl_seconds=10)

        assert await cache.get("k") == [1, 2]
        assert await cache.get("other") is MISS

    @pytest.mark.asyncio
    async def test_undecodable_entry_is_dropped(self):
        client = FakeRedis()
        client.store["featurehost:cache:k"] = "{broken"
        cache = RedisCache(client=client)

        assert await cache.get("k") is MISS
        assert "featurehost:cache:k" not in client.store

    @pytest.mark.asyncio
    async def test_clear_only_touches_prefix(self):
        client = FakeRedis()
        client.store["other:x"] = "1"
        cache = RedisCache(client=client)
        await cache.set("a", 1, ttl_seconds=10)

        await cache.clear()

        assert list(client.store) == ["other:x"]

    @pytest.mark.asyncio
    async def test_close(self):
        client = FakeRedis()
        cache = RedisCache(client=client)

        await cache.close()

        assert client.closed


class TestNamespacedCache:
    """Tests for NamespacedCache."""

    @pytest.mark.asyncio
    async def test_prefixes_keys(self):
        backend = InMemoryCache()
        cache = NamespacedCache(backend, "gas-tracker")

        await cache.set("fees", 1, ttl_seconds=10)

        assert await backend.get("gas-tracker:fees") == 1
        assert await cache.get("fees") == 1

    @pytest.mark.asyncio
    async def test_namespaces_are_isolated(self):
        backend = InMemoryCache()
        gas = NamespacedCache(backend, "gas-tracker")
        dca = NamespacedCache(backend, "dca-bot")

        await gas.set("shared", "gas", ttl_seconds=10)

        assert await dca.get("shared") is MISS
        assert await dca.delete("shared") is False
        assert await gas.get("shared") == "gas"


class TestCachedHelper:
    """Tests for cached()."""

    @pytest.mark.asyncio
    async def test_loader_runs_once_within_ttl(self):
        cache = InMemoryCache()
        loader = AsyncMock(return_value={"price": 1})

        first = await cached(cache, "k", 60, loader)
        second = await cached(cache, "k", 60, loader)

        assert first == second == {"price": 1}
        assert loader.await_count == 1

    @pytest.mark.asyncio
    async def test_loader_error_is_not_cached(self):
        cache = InMemoryCache()
        loader = AsyncMock(side_effect=[RuntimeError("boom"), "ok"])

        with pytest.raises(RuntimeError):
            await cached(cache, "k", 60, loader)

        assert await cached(cache, "k", 60, loader) == "ok"
        assert loader.await_count == 2

    @pytest.mark.asyncio
    async def test_reloads_after_expiry(self):
        clock = FakeClock()
        cache = InMemoryCache(clock=clock)
        loader = AsyncMock(side_effect=["v1", "v2"])

        assert await cached(cache, "k", 5, loader) == "v1"
        clock.advance(5)
        assert await cached(cache, "k", 5, loader) == "v2"
