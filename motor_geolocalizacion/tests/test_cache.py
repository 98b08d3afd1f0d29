"""
Tests for the in-memory cache and the fail-open remember() helper.
"""

from app.core.exceptions import CacheUnavailableException
from app.infrastructure.cache.memory_cache import MemoryCache


class FakeClock:

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenCache(MemoryCache):
    """Caché cuyo backend siempre falla."""

    async def get(self, key):
        raise CacheUnavailableException("down")

    async def set(self, key, value, ttl):
        raise CacheUnavailableException("down")


class TestMemoryCacheExpiry:
    """Tests for TTL handling."""

    async def test_value_expires_after_ttl(self):
        """A key is gone once its TTL has passed."""
        clock = FakeClock()
        cache = MemoryCache(clock=clock)

        await cache.set("k", "v", ttl=10)
        assert await cache.get("k") == "v"

        clock.now += 10
        assert await cache.get("k") is None

    async def test_increment_ttl_set_only_at_birth(self):
        """Later increments do not extend the counter window."""
        clock = FakeClock()
        cache = MemoryCache(clock=clock)

        assert await cache.increment("c", ttl=60) == 1
        clock.now += 50
        assert await cache.increment("c", ttl=60) == 2

        clock.now += 11
        assert await cache.get("c") is None
        assert await cache.increment("c", ttl=60) == 1

    async def test_forget_removes_several_keys(self):
        """forget() deletes every key passed."""
        cache = MemoryCache()
        await cache.set("a", "1", ttl=10)
        await cache.set("b", "2", ttl=10)

        await cache.forget("a", "b", "missing")

        assert await cache.get("a") is None
        assert await cache.get("b") is None


class TestRemember:
    """Tests for the cache-aside helper."""

    async def test_computes_once_then_hits(self):
        """The second call is served from the cache."""
        cache = MemoryCache()
        calls = []

        async def compute():
            calls.append(1)
            return {"city": "Surat"}

        first  = await cache.remember("geo", 60, compute)
        second = await cache.remember("geo", 60, compute)

        assert first == second == {"city": "Surat"}
        assert len(calls) == 1

    async def test_should_cache_false_is_not_stored(self):
        """Rejected values are recomputed on every call."""
        cache = MemoryCache()
        calls = []

        async def compute():
            calls.append(1)
            return None

        await cache.remember("rdap", 60, compute, should_cache=lambda value: value is not None)
        await cache.remember("rdap", 60, compute, should_cache=lambda value: value is not None)

        assert len(calls) == 2

    async def test_unavailable_cache_computes_directly(self):
        """A failing backend never blocks the computation."""
        cache = BrokenCache()

        async def compute():
            return {"city": "Pune"}

        assert await cache.remember("geo", 60, compute) == {"city": "Pune"}

    async def test_corrupt_value_is_recomputed(self):
        """Non-JSON cached values are discarded."""
        cache = MemoryCache()
        await cache.set("geo", "{not json", ttl=60)

        async def compute():
            return {"city": "Agra"}

        assert await cache.remember("geo", 60, compute) == {"city": "Agra"}
        assert await cache.get("geo") == '{"city": "Agra"}'
