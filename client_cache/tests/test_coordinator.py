"""
Unit tests for the stale-while-revalidate coordinator.
"""

import asyncio

import pytest

from client_cache.caching import CacheStore, ResourcesCache
from client_cache.monitoring import PerformanceMonitor
from client_cache.resources import (
    CacheBinding,
    ResourceState,
    SessionResourceBinding,
    StaleWhileRevalidateCoordinator,
)
from client_cache.storage import MemoryBackend, MemoryStore
from shared.config import CacheSettings
from shared.retry import RetryConfig
from shared.test_helpers import FakeClock, ScriptedFetcher


class GatedFetcher:
    """Fetcher that blocks until released."""

    def __init__(self, value):
        self.value = value
        self.calls = 0
        self.release = asyncio.Event()

    async def __call__(self):
        self.calls += 1
        await self.release.wait()
        return self.value


class TestStaleWhileRevalidate:
    """Test cases for StaleWhileRevalidateCoordinator and CachedResource."""

    @pytest.fixture
    def session(self):
        """Tab session substrate."""
        return MemoryStore(MemoryBackend(), "session")

    @pytest.fixture
    def monitor(self):
        """Fresh monitor per test."""
        return PerformanceMonitor()

    @pytest.fixture
    def coordinator(self, session, monitor):
        """Create coordinator with instant backoff."""
        return StaleWhileRevalidateCoordinator(
            CacheStore(session, "session_resources", monitor=monitor),
            monitor=monitor,
            settings=CacheSettings(_env_file=None),
            retry_config=RetryConfig(max_attempts=3, base_delay=0.0),
        )

    def _seed(self, coordinator, key, value):
        SessionResourceBinding(coordinator.session_cache, key).write(value)

    @pytest.mark.asyncio
    async def test_first_paint_from_cache_then_revalidate(self, coordinator):
        """Test that a cached value is shown synchronously while a fetch refreshes it."""
        self._seed(coordinator, "notices", ["old"])
        fetcher = ScriptedFetcher(["new"])

        resource = coordinator.use_cached_resource("notices", fetcher)

        first_paint = resource.snapshot()
        assert first_paint.data == ["old"]
        assert first_paint.loading is False
        assert first_paint.error is None

        await coordinator.in_flight("notices")

        assert resource.data == ["new"]
        assert resource.state == ResourceState.READY
        assert coordinator.session_cache.get("session_cache_v1:notices") == ["new"]

    @pytest.mark.asyncio
    async def test_failed_revalidation_keeps_stale_value(self, coordinator):
        """Test that a failed background fetch surfaces an error but keeps the data."""
        self._seed(coordinator, "notices", ["old"])
        fetcher = ScriptedFetcher(RuntimeError("server unavailable"))

        resource = coordinator.use_cached_resource("notices", fetcher)
        await coordinator.in_flight("notices")

        assert resource.data == ["old"]
        assert resource.error == "server unavailable"
        assert resource.loading is False
        assert resource.state == ResourceState.ERROR
        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_empty_cache_fetches_in_foreground_with_retry(self, coordinator):
        """Test that nothing to show means a spinner and backoff."""
        fetcher = ScriptedFetcher(RuntimeError("flaky"), RuntimeError("flaky"), {"rows": 3})

        resource = coordinator.use_cached_resource("report", fetcher)

        assert resource.loading is True
        assert resource.state == ResourceState.LOADING

        await coordinator.in_flight("report")

        assert resource.data == {"rows": 3}
        assert resource.loading is False
        assert fetcher.calls == 3

    @pytest.mark.asyncio
    async def test_foreground_failure_after_all_attempts(self, coordinator):
        """Test the error state when every attempt fails."""
        fetcher = ScriptedFetcher(RuntimeError(""))

        resource = coordinator.use_cached_resource("report", fetcher)
        await coordinator.in_flight("report")

        assert resource.data is None
        assert resource.error == "Failed to load"
        assert resource.state == ResourceState.ERROR
        assert fetcher.calls == 3

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, coordinator):
        """Test the per-key in-flight map."""
        fetcher = GatedFetcher(["value"])

        first = coordinator.use_cached_resource("shared", fetcher)
        task = coordinator.in_flight("shared")
        second = coordinator.use_cached_resource("shared", fetcher)

        assert second is first
        assert coordinator.in_flight("shared") is task

        fetcher.release.set()
        await task

        assert fetcher.calls == 1
        assert first.data == ["value"]

    @pytest.mark.asyncio
    async def test_deps_change_refetches_with_new_fetcher(self, coordinator):
        """Test that new dependencies re-issue the fetch."""
        resource = coordinator.use_cached_resource("list", ScriptedFetcher(["page-1"]), deps=(1,))
        await coordinator.in_flight("list")

        coordinator.use_cached_resource("list", ScriptedFetcher(["page-2"]), deps=(2,))
        await coordinator.in_flight("list")

        assert resource.data == ["page-2"]
        assert resource.deps == (2,)

    @pytest.mark.asyncio
    async def test_refresh_purges_before_fetching(self, coordinator, session):
        """Test that refresh removes the persisted entry first."""
        self._seed(coordinator, "notices", ["old"])
        resource = coordinator.use_cached_resource("notices", ScriptedFetcher(["fresh"]))
        await coordinator.in_flight("notices")

        resource.fetcher = ScriptedFetcher(RuntimeError("down"))
        await resource.refresh()

        assert session.get_item("session_cache_v1:notices") is None
        assert resource.data == ["fresh"]
        assert resource.error == "down"
        assert resource.fetcher.calls == 3

    @pytest.mark.asyncio
    async def test_closed_resource_still_fills_cache(self, coordinator):
        """Test that closing stops state updates but not the cache write."""
        fetcher = GatedFetcher(["late"])
        resource = coordinator.use_cached_resource("slow", fetcher)
        task = coordinator.in_flight("slow")

        resource.close()
        fetcher.release.set()
        await task

        assert resource.data is None
        assert coordinator.get("slow") is None
        assert coordinator.session_cache.get("session_cache_v1:slow") == ["late"]

    @pytest.mark.asyncio
    async def test_remount_during_fetch_receives_result(self, coordinator):
        """Test that reopening a closed key joins the running fetch and gets its value."""
        fetcher = GatedFetcher({"rows": 7})
        first = coordinator.use_cached_resource("report", fetcher)
        task = coordinator.in_flight("report")
        first.close()

        second = coordinator.use_cached_resource("report", fetcher)

        assert second is not first
        assert coordinator.in_flight("report") is task
        assert second.loading is True
        assert second.state == ResourceState.LOADING

        fetcher.release.set()
        await task

        assert fetcher.calls == 1
        assert second.data == {"rows": 7}
        assert second.loading is False
        assert second.state == ResourceState.READY
        assert first.data is None

    @pytest.mark.asyncio
    async def test_observers_see_transitions(self, coordinator):
        """Test subscribe/unsubscribe."""
        seen = []
        resource = coordinator.use_cached_resource("obs", ScriptedFetcher(["v"]))
        unsubscribe = resource.subscribe(lambda snapshot: seen.append(snapshot.state))

        await coordinator.in_flight("obs")
        unsubscribe()
        await resource.revalidate()

        assert seen == [ResourceState.READY]

    @pytest.mark.asyncio
    async def test_focus_revalidates_everything(self, coordinator):
        """Test window focus handling."""
        first = ScriptedFetcher(["a"])
        second = ScriptedFetcher(["b"])
        coordinator.use_cached_resource("a", first)
        coordinator.use_cached_resource("b", second)
        await asyncio.gather(coordinator.in_flight("a"), coordinator.in_flight("b"))

        await asyncio.gather(*coordinator.handle_focus())

        assert first.calls == 2
        assert second.calls == 2

    @pytest.mark.asyncio
    async def test_visibility_revalidates_expired_ttl_entries_only(self, session, monitor):
        """Test that only TTL-bearing resources whose entry has gone are refetched."""
        clock = FakeClock()
        coordinator = StaleWhileRevalidateCoordinator(
            CacheStore(session, clock=clock),
            monitor=monitor,
            settings=CacheSettings(_env_file=None),
        )
        expiring = ScriptedFetcher(["e"])
        durable = ScriptedFetcher(["d"])
        coordinator.use_cached_resource(
            "expiring", expiring,
            binding=SessionResourceBinding(coordinator.session_cache, "expiring", ttl=60),
        )
        coordinator.use_cached_resource("durable", durable)
        await asyncio.gather(coordinator.in_flight("expiring"), coordinator.in_flight("durable"))

        assert coordinator.handle_visibility_change(True) == []

        clock.advance(61)
        assert coordinator.handle_visibility_change(False) == []
        tasks = coordinator.handle_visibility_change(True)
        await asyncio.gather(*tasks)

        assert len(tasks) == 1
        assert expiring.calls == 2
        assert durable.calls == 1

    @pytest.mark.asyncio
    async def test_storage_events_update_without_fetch(self, coordinator):
        """Test adopting a value another tab wrote under the same storage key."""
        backend = MemoryBackend()
        mine = ResourcesCache(CacheStore(MemoryStore(backend, "a")))
        theirs = ResourcesCache(CacheStore(MemoryStore(backend, "b")))
        context = ("notes", "DS", "CSE", 2024, 1)
        fetcher = ScriptedFetcher([{"id": "R1"}])

        coordinator.watch_store(mine.cache.store)
        resource = coordinator.use_cached_resource(
            "resources:notes", fetcher, binding=CacheBinding.for_context(mine, context)
        )
        await coordinator.in_flight("resources:notes")

        theirs.set(context, [{"id": "R1"}, {"id": "R2"}])

        assert resource.data == [{"id": "R1"}, {"id": "R2"}]
        assert fetcher.calls == 1

        theirs.clear_for_context(context)
        assert resource.data == [{"id": "R1"}, {"id": "R2"}]

    @pytest.mark.asyncio
    async def test_fetches_are_timed_and_counted(self, coordinator, monitor):
        """Test monitor integration."""
        coordinator.use_cached_resource("timed", ScriptedFetcher(["v"]))
        await coordinator.in_flight("timed")

        snapshot = monitor.get_snapshot()
        assert snapshot.total_api_calls == 1
        assert snapshot.recent_operations[0].name == "fetch:timed"

    @pytest.mark.asyncio
    async def test_close_releases_everything(self, coordinator, session):
        """Test coordinator shutdown."""
        coordinator.watch_store(session)
        resource = coordinator.use_cached_resource("x", ScriptedFetcher(["v"]))
        await coordinator.in_flight("x")

        coordinator.close()

        assert resource.closed
        assert coordinator.get("x") is None
