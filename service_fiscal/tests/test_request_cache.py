"""
Unit tests for the request cache.
"""

import asyncio

import pytest

from service_fiscal.app.caching import request_cache
from service_fiscal.app.caching.request_cache import RequestCache, build_cache_key, redact_key
from shared.metrics import MetricsCollector


def returning(value, calls=None):
    """Fetcher factory returning ``value`` and counting invocations."""
    async def fetcher():
        if calls is not None:
            calls.append(value)
        return value
    return fetcher


def failing(error):
    async def fetcher():
        raise error
    return fetcher


class TestFetchWithCache:
    """Freshness, forcing and failure handling."""

    @pytest.mark.asyncio
    async def test_first_fetch_populates_entry(self, cache):
        result = await cache.fetch_with_cache("k", returning([1, 2]))

        assert result == [1, 2]
        assert cache.get_cache_data("k") == [1, 2]
        assert cache.get_entry("k").pending is None

    @pytest.mark.asyncio
    async def test_fresh_entry_skips_fetcher(self, cache, clock):
        calls = []
        await cache.fetch_with_cache("k", returning("A", calls), ttl=60)

        clock.advance(60 - 0.001)
        result = await cache.fetch_with_cache("k", returning("B", calls), ttl=60)

        assert result == "A"
        assert calls == ["A"]

    @pytest.mark.asyncio
    async def test_stale_entry_is_refetched(self, cache, clock):
        calls = []
        await cache.fetch_with_cache("k", returning("A", calls), ttl=60)

        clock.advance(60 + 0.001)
        result = await cache.fetch_with_cache("k", returning("B", calls), ttl=60)

        assert result == "B"
        assert calls == ["A", "B"]

    @pytest.mark.asyncio
    async def test_force_bypasses_fresh_entry(self, cache):
        calls = []
        await cache.fetch_with_cache("k", returning("A", calls))

        result = await cache.fetch_with_cache("k", returning("B", calls), force=True)

        assert result == "B"
        assert calls == ["A", "B"]
        assert cache.get_cache_data("k") == "B"

    @pytest.mark.asyncio
    async def test_default_ttl_is_two_minutes(self, cache, clock):
        calls = []
        await cache.fetch_with_cache("k", returning("A", calls))

        clock.advance(119)
        assert await cache.fetch_with_cache("k", returning("B", calls)) == "A"

        clock.advance(2)
        assert await cache.fetch_with_cache("k", returning("B", calls)) == "B"

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_data(self, cache, clock):
        await cache.fetch_with_cache("k", returning("A"))
        stored_at = cache.get_entry("k").timestamp
        clock.advance(5)

        with pytest.raises(RuntimeError, match="boom"):
            await cache.fetch_with_cache("k", failing(RuntimeError("boom")), force=True)

        assert cache.get_cache_data("k", ttl=10_000) == "A"
        entry = cache.get_entry("k")
        assert entry.pending is None
        assert entry.timestamp == stored_at

    @pytest.mark.asyncio
    async def test_failed_first_fetch_leaves_no_placeholder(self, cache):
        with pytest.raises(ValueError):
            await cache.fetch_with_cache("k2", failing(ValueError("nope")))

        assert "k2" not in cache
        assert cache.get_cache_data("k2") is None

    @pytest.mark.asyncio
    async def test_error_is_reraised_unchanged(self, cache):
        error = KeyError("missing")

        with pytest.raises(KeyError) as exc_info:
            await cache.fetch_with_cache("k", failing(error))

        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_scenario_hit_then_expiry(self, cache, clock):
        calls = []

        assert await cache.fetch_with_cache("x", returning(1, calls), ttl=1.0) == 1
        assert await cache.fetch_with_cache("x", returning(2, calls)) == 1
        assert calls == [1]

        clock.advance(1.001)
        assert await cache.fetch_with_cache("x", returning(2, calls), ttl=1.0) == 2

    @pytest.mark.asyncio
    async def test_scenario_with_real_clock(self):
        cache = RequestCache()
        calls = []

        assert await cache.fetch_with_cache("x", returning(1, calls), ttl=0.05) == 1
        assert await cache.fetch_with_cache("x", returning(2, calls), ttl=0.05) == 1

        await asyncio.sleep(0.06)
        assert await cache.fetch_with_cache("x", returning(2, calls), ttl=0.05) == 2
        assert calls == [1, 2]


class TestCoalescing:
    """Concurrent callers share one in-flight fetch."""

    @staticmethod
    def gated(gate, calls, value="value", error=None):
        async def fetcher():
            calls.append(value)
            await gate.wait()
            if error is not None:
                raise error
            return value
        return fetcher

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, cache):
        gate = asyncio.Event()
        calls = []
        fetcher = self.gated(gate, calls)

        first = asyncio.create_task(cache.fetch_with_cache("k", fetcher))
        second = asyncio.create_task(cache.fetch_with_cache("k", fetcher))
        await asyncio.sleep(0)
        gate.set()

        assert await asyncio.gather(first, second) == ["value", "value"]
        assert calls == ["value"]
        assert cache.stats()["coalesced"] == 1

    @pytest.mark.asyncio
    async def test_force_joins_pending_fetch(self, cache):
        gate = asyncio.Event()
        calls = []

        first = asyncio.create_task(cache.fetch_with_cache("k", self.gated(gate, calls, "A")))
        await asyncio.sleep(0)
        second = asyncio.create_task(cache.fetch_with_cache("k", self.gated(gate, calls, "B"), force=True))
        await asyncio.sleep(0)
        gate.set()

        assert await asyncio.gather(first, second) == ["A", "A"]
        assert calls == ["A"]

    @pytest.mark.asyncio
    async def test_all_waiters_observe_the_same_failure(self, cache):
        gate = asyncio.Event()
        calls = []
        error = RuntimeError("backend down")
        fetcher = self.gated(gate, calls, error=error)

        waiters = [asyncio.create_task(cache.fetch_with_cache("k", fetcher)) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()

        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert results == [error, error, error]
        assert calls == ["value"]
        assert "k" not in cache

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_fetch(self, cache):
        gate = asyncio.Event()
        calls = []

        waiter = asyncio.create_task(cache.fetch_with_cache("k", self.gated(gate, calls)))
        await asyncio.sleep(0)
        pending = cache.get_entry("k").pending

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        gate.set()
        assert await pending == "value"
        assert cache.get_cache_data("k") == "value"

    @pytest.mark.asyncio
    async def test_pending_entry_of_new_key_reads_as_missing(self, cache):
        gate = asyncio.Event()
        calls = []

        waiter = asyncio.create_task(cache.fetch_with_cache("k", self.gated(gate, calls)))
        await asyncio.sleep(0)

        assert "k" in cache
        assert cache.get_cache_data("k") is None

        gate.set()
        await waiter

    @pytest.mark.asyncio
    async def test_pending_entry_exposes_previous_data(self, cache):
        await cache.fetch_with_cache("k", returning("A"))
        gate = asyncio.Event()
        calls = []

        waiter = asyncio.create_task(cache.fetch_with_cache("k", self.gated(gate, calls, "B"), force=True))
        await asyncio.sleep(0)

        assert cache.get_cache_data("k") == "A"

        gate.set()
        assert await waiter == "B"

    @pytest.mark.asyncio
    async def test_stale_read_does_not_evict_pending_entry(self, cache, clock):
        await cache.fetch_with_cache("k", returning("A"), ttl=10)
        clock.advance(20)
        gate = asyncio.Event()
        calls = []

        first = asyncio.create_task(cache.fetch_with_cache("k", self.gated(gate, calls, "B"), ttl=10))
        await asyncio.sleep(0)

        assert cache.get_cache_data("k", ttl=10) is None
        assert "k" in cache

        second = asyncio.create_task(cache.fetch_with_cache("k", self.gated(gate, calls, "C"), ttl=10))
        await asyncio.sleep(0)
        gate.set()

        assert await asyncio.gather(first, second) == ["B", "B"]
        assert calls == ["B"]

    @pytest.mark.asyncio
    async def test_write_during_flight_survives_failure(self, cache):
        gate = asyncio.Event()
        calls = []

        waiter = asyncio.create_task(
            cache.fetch_with_cache("k", self.gated(gate, calls, error=RuntimeError("late failure")))
        )
        await asyncio.sleep(0)
        cache.set_cache_data("k", "local")
        gate.set()

        with pytest.raises(RuntimeError):
            await waiter

        assert cache.get_cache_data("k") == "local"


class TestManualOperations:
    """set, invalidate, read and clear."""

    def test_set_then_invalidate(self, cache):
        cache.set_cache_data("k", "B")
        assert cache.get_cache_data("k") == "B"

        cache.invalidate_cache("k")
        assert cache.get_cache_data("k") is None
        assert "k" not in cache

    def test_invalidate_unknown_key_is_noop(self, cache):
        cache.invalidate_cache("missing")
        assert len(cache) == 0

    def test_read_evicts_stale_entry(self, cache, clock):
        cache.set_cache_data("k", "B")
        clock.advance(30)

        assert cache.get_cache_data("k", ttl=10) is None
        assert "k" not in cache

    def test_read_with_larger_ttl_keeps_entry(self, cache, clock):
        cache.set_cache_data("k", "B")
        clock.advance(30)

        assert cache.get_cache_data("k", ttl=60) == "B"

    @pytest.mark.asyncio
    async def test_set_cache_data_refreshes_timestamp(self, cache, clock):
        calls = []
        await cache.fetch_with_cache("k", returning("A", calls), ttl=10)
        clock.advance(8)
        cache.set_cache_data("k", "patched")
        clock.advance(8)

        assert await cache.fetch_with_cache("k", returning("B", calls), ttl=10) == "patched"
        assert calls == ["A"]

    def test_clear_and_stats(self, cache):
        cache.set_cache_data("a", 1)
        cache.set_cache_data("b", 2)

        assert sorted(cache.keys()) == ["a", "b"]
        assert cache.stats()["entries"] == 2

        cache.clear()
        assert len(cache) == 0
        assert cache.stats()["pending"] == 0

    def test_independent_instances_do_not_interfere(self, clock):
        first = RequestCache(clock=clock)
        second = RequestCache(clock=clock)

        first.set_cache_data("k", "first")

        assert second.get_cache_data("k") is None


class TestKeysAndMetrics:
    """Key helpers and metrics integration."""

    def test_build_cache_key(self):
        assert build_cache_key("http://api.test", "activities", "tok") == "http://api.test::activities::tok"
        assert build_cache_key(None, "employees", "tok") == "::employees::tok"

    def test_redact_key_hides_token(self):
        assert redact_key("http://api.test::activities::secret") == "http://api.test::activities::***"
        assert redact_key("plain") == "plain"

    @pytest.mark.asyncio
    async def test_lookups_and_fetches_are_recorded(self, clock):
        metrics = MetricsCollector("fiscal-test")
        cache = RequestCache(clock=clock, metrics=metrics)
        key = build_cache_key("http://api.test", "activities", "tok")

        await cache.fetch_with_cache(key, returning("A"))
        await cache.fetch_with_cache(key, returning("B"))
        with pytest.raises(RuntimeError):
            await cache.fetch_with_cache(key, failing(RuntimeError("x")), force=True)

        lookups = "cache_lookups_total"
        assert metrics.get_sample_value(lookups, {"resource": "activities", "result": "miss"}) == 1
        assert metrics.get_sample_value(lookups, {"resource": "activities", "result": "hit"}) == 1
        assert metrics.get_sample_value(lookups, {"resource": "activities", "result": "forced"}) == 1
        fetches = "cache_fetches_total"
        assert metrics.get_sample_value(fetches, {"resource": "activities", "outcome": "success"}) == 1
        assert metrics.get_sample_value(fetches, {"resource": "activities", "outcome": "error"}) == 1
        assert metrics.get_sample_value("cache_entries") == 1


class TestDefaultCache:
    """Module-level helpers delegate to the process-wide cache."""

    @pytest.mark.asyncio
    async def test_module_functions_share_default_instance(self):
        key = "test::module-default::tok"
        try:
            assert await request_cache.fetch_with_cache(key, returning("A")) == "A"
            assert request_cache.get_cache_data(key) == "A"
            assert request_cache.get_default_cache().get_cache_data(key) == "A"

            request_cache.set_cache_data(key, "B")
            assert request_cache.get_cache_data(key) == "B"
        finally:
            request_cache.invalidate_cache(key)

        assert request_cache.get_cache_data(key) is None
