"""
Tests for the closed/open circuit breaker over a key-value cache.
"""

import pytest

from app.core.exceptions import CacheUnavailableException, InvalidConfigurationException
from app.infrastructure.cache.memory_cache import MemoryCache
from app.services.circuit_breaker import CircuitBreaker, CircuitStatus


class FakeClock:

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class UnavailableCache(MemoryCache):

    async def get(self, key):
        raise CacheUnavailableException("down")

    async def increment(self, key, ttl=None):
        raise CacheUnavailableException("down")


class TestCircuitTransitions:
    """Tests for CLOSED → OPEN → CLOSED."""

    async def test_starts_closed(self):
        """A fresh breaker lets calls through."""
        breaker = CircuitBreaker(MemoryCache(), failure_threshold=3, ttl_seconds=60)

        assert await breaker.is_open() is False
        assert (await breaker.snapshot()).status is CircuitStatus.CLOSED

    async def test_opens_at_threshold(self):
        """The breaker opens on exactly the threshold-th failure."""
        breaker = CircuitBreaker(MemoryCache(), failure_threshold=3, ttl_seconds=60)

        await breaker.record_failure()
        await breaker.record_failure()
        assert await breaker.is_open() is False

        state = await breaker.record_failure()
        assert state.failure_count == 3
        assert state.status is CircuitStatus.OPEN
        assert await breaker.is_open() is True

    async def test_closes_after_ttl(self):
        """An open circuit closes by itself once its TTL elapses."""
        clock   = FakeClock()
        cache   = MemoryCache(clock=clock)
        breaker = CircuitBreaker(cache, failure_threshold=1, ttl_seconds=60, clock=clock)

        await breaker.record_failure()
        assert await breaker.is_open() is True

        clock.now += 61
        assert await breaker.is_open() is False

    async def test_success_resets_counter(self):
        """Any success clears the failure count."""
        breaker = CircuitBreaker(MemoryCache(), failure_threshold=3, ttl_seconds=60)

        await breaker.record_failure()
        await breaker.record_failure()
        await breaker.record_success()
        await breaker.record_failure()

        assert (await breaker.snapshot()).failure_count == 1
        assert await breaker.is_open() is False

    async def test_breakers_with_different_names_are_independent(self):
        """State is keyed by breaker name."""
        cache = MemoryCache()
        ensemble = CircuitBreaker(cache, name="ensemble", failure_threshold=1, ttl_seconds=60)
        rdap     = CircuitBreaker(cache, name="rdap", failure_threshold=1, ttl_seconds=60)

        await ensemble.record_failure()

        assert await ensemble.is_open() is True
        assert await rdap.is_open() is False


class TestCircuitDegradation:
    """Tests for cache failures and invalid configuration."""

    async def test_unavailable_cache_reads_as_closed(self):
        """Without a cache the providers are still called."""
        breaker = CircuitBreaker(UnavailableCache(), failure_threshold=1, ttl_seconds=60)

        assert await breaker.is_open() is False
        state = await breaker.record_failure()
        assert state.status is CircuitStatus.CLOSED

    def test_non_positive_threshold_rejected(self):
        """A zero threshold is a configuration error."""
        with pytest.raises(InvalidConfigurationException):
            CircuitBreaker(MemoryCache(), failure_threshold=0, ttl_seconds=60)
