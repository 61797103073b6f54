"""
Stale-while-revalidate coordination.

A consumer asks for a key and immediately gets whatever the cache holds; a
fetch then runs in the background and replaces it. Failed fetches surface an
error message but never take away data that was already shown.

There is no locking: a forced refresh can race a background revalidation of
the same key, and the last write wins. Cached values are advisory.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from shared.config import CacheSettings, get_settings
from shared.errors import FetchError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, call_with_retry
from ..caching import CacheStore
from ..monitoring import PerformanceMonitor
from ..storage import StorageEvent, WatchableStore
from .bindings import ResourceBinding, SessionResourceBinding

Fetcher = Callable[[], Awaitable[Any]]
Observer = Callable[["ResourceSnapshot"], None]


class ResourceState(str, Enum):
    """Lifecycle of one coordinated key."""
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class ResourceSnapshot:
    """What a consumer renders."""
    data: Any
    loading: bool
    error: Optional[str]
    state: ResourceState


class CachedResource:
    """Observable state for one key, shared by every consumer of that key."""

    def __init__(self,
                 coordinator: "StaleWhileRevalidateCoordinator",
                 key: str,
                 fetcher: Fetcher,
                 binding: ResourceBinding,
                 deps: Sequence[Any] = ()):
        self.coordinator = coordinator
        self.key = key
        self.fetcher = fetcher
        self.binding = binding
        self.deps = tuple(deps)
        self.closed = False
        self._observers: List[Observer] = []
        self._data: Any = None
        self._error: Optional[str] = None
        self._loading = False
        self._state = ResourceState.EMPTY
        self.logger = coordinator.logger.bind(resource=key)

    def hydrate(self) -> None:
        """Synchronously seed state from the cache."""
        cached = self.binding.read()
        if cached is not None:
            self._data = cached
            self._state = ResourceState.READY

    def snapshot(self) -> ResourceSnapshot:
        return ResourceSnapshot(self._data, self._loading, self._error, self._state)

    @property
    def data(self) -> Any:
        return self._data

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def state(self) -> ResourceState:
        return self._state

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Call observer on every state change until unsubscribed."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _emit(self) -> None:
        snapshot = self.snapshot()
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception as exc:
                self.logger.warning("Resource observer failed", error=str(exc))

    def _begin(self, show_loading: bool) -> None:
        if self.closed:
            return
        self._loading = show_loading
        self._state = ResourceState.LOADING
        self._emit()

    def _succeed(self, value: Any) -> None:
        if self.closed:
            return
        self._data = value
        self._error = None
        self._loading = False
        self._state = ResourceState.READY
        self._emit()

    def _fail(self, message: str) -> None:
        if self.closed:
            return
        self._error = message
        self._loading = False
        self._state = ResourceState.ERROR
        self._emit()

    def _adopt(self, value: Any) -> None:
        """Take a value another tab wrote, without fetching."""
        if self.closed:
            return
        self._data = value
        self._error = None
        if not self._loading:
            self._state = ResourceState.READY
        self._emit()

    async def revalidate(self) -> Any:
        """Fetch in the background, sharing any fetch already in flight."""
        return await self.coordinator.schedule(self)

    async def refresh(self) -> Any:
        """Forget the persisted entry and fetch again regardless of state."""
        self.binding.purge()
        return await self.coordinator.schedule(self, replace=True, foreground=True)

    def close(self) -> None:
        """Stop applying results; an in-flight fetch still fills the cache."""
        self.closed = True
        self._observers.clear()
        self.coordinator.release(self)


class StaleWhileRevalidateCoordinator:
    """Registry of coordinated resources with one in-flight fetch per key."""

    def __init__(self,
                 session_cache: CacheStore,
                 *,
                 monitor: Optional[PerformanceMonitor] = None,
                 settings: Optional[CacheSettings] = None,
                 retry_config: Optional[RetryConfig] = None):
        self.session_cache = session_cache
        self.monitor = monitor
        self.settings = settings or get_settings()
        self.retry_config = retry_config or RetryConfig(
            max_attempts=self.settings.fetch_retry_attempts,
            base_delay=self.settings.fetch_retry_base_delay,
        )
        self.logger = get_logger("client_cache.resources.coordinator")
        self._resources: Dict[str, CachedResource] = {}
        self._in_flight: Dict[str, "asyncio.Task[Any]"] = {}
        self._unwatch: List[Callable[[], None]] = []

    def use_cached_resource(self,
                            key: str,
                            fetcher: Fetcher,
                            deps: Sequence[Any] = (),
                            binding: Optional[ResourceBinding] = None) -> CachedResource:
        """Return the resource for key, seeded from cache, with a fetch under way.

        Must be called from a running event loop.
        """
        resource = self._resources.get(key)
        if resource is not None:
            resource.fetcher = fetcher
            if tuple(deps) != resource.deps:
                resource.deps = tuple(deps)
                self.schedule(resource, replace=True)
            else:
                self.schedule(resource)
            return resource

        if binding is None:
            binding = SessionResourceBinding(
                self.session_cache, key, prefix=self.settings.session_resource_prefix
            )
        resource = CachedResource(self, key, fetcher, binding, deps)
        resource.hydrate()
        self._resources[key] = resource
        self.schedule(resource)
        return resource

    def get(self, key: str) -> Optional[CachedResource]:
        return self._resources.get(key)

    def in_flight(self, key: str) -> Optional["asyncio.Task[Any]"]:
        task = self._in_flight.get(key)
        return task if task is not None and not task.done() else None

    def schedule(self,
                 resource: CachedResource,
                 replace: bool = False,
                 foreground: Optional[bool] = None) -> "asyncio.Task[Any]":
        """Start (or join) the fetch for a resource's key.

        Foreground fetches show loading and retry with backoff; by default a
        fetch is foreground only when there is nothing on screen yet.
        """
        if foreground is None:
            foreground = resource.data is None

        current = self.in_flight(resource.key)
        if current is not None and not replace:
            # A remounted resource joins the running fetch; show it as pending.
            if resource.state is not ResourceState.LOADING:
                resource._begin(foreground)
            return current

        resource._begin(foreground)
        task = asyncio.get_running_loop().create_task(self._run_fetch(resource, foreground))
        self._in_flight[resource.key] = task
        task.add_done_callback(lambda done, key=resource.key: self._forget(key, done))
        return task

    def _forget(self, key: str, task: "asyncio.Task[Any]") -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _run_fetch(self, resource: CachedResource, foreground: bool) -> Any:
        config = self.retry_config if foreground else RetryConfig.single_attempt()
        fetcher = resource.fetcher
        stop = self.monitor.start_operation(f"fetch:{resource.key}") if self.monitor else None

        try:
            value = await call_with_retry(fetcher, config, name=f"fetch:{resource.key}")
        except RetryError as exc:
            error = FetchError(resource.key, str(exc.last_exception) or "Failed to load")
            self.logger.warning(
                "Resource fetch failed",
                resource=resource.key,
                attempts=exc.attempts,
                foreground=foreground,
                error=error.message,
            )
            self._live(resource)._fail(error.message)
            return None
        finally:
            if self.monitor:
                stop()
                self.monitor.increment_api_calls(1)

        resource.binding.write(value)
        self._live(resource)._succeed(value)
        return value

    def _live(self, resource: CachedResource) -> CachedResource:
        """The resource currently open for this key, which may have been remounted."""
        return self._resources.get(resource.key) or resource

    def handle_focus(self) -> List["asyncio.Task[Any]"]:
        """Window regained focus: revalidate every open resource."""
        return [self.schedule(resource) for resource in list(self._resources.values())]

    def handle_visibility_change(self, visible: bool) -> List["asyncio.Task[Any]"]:
        """Tab became visible: revalidate TTL-bound resources whose entry is gone."""
        if not visible:
            return []
        return [
            self.schedule(resource)
            for resource in list(self._resources.values())
            if resource.binding.has_ttl and resource.binding.read() is None
        ]

    def watch_store(self, store: WatchableStore) -> None:
        """Adopt values other tabs write under a resource's storage key."""
        self._unwatch.append(store.watch(self._on_storage_event))

    def _on_storage_event(self, event: StorageEvent) -> None:
        if event.key is None or event.new_value is None:
            return
        for resource in list(self._resources.values()):
            if resource.binding.storage_key != event.key:
                continue
            value = resource.binding.read()
            if value is not None:
                resource._adopt(value)

    def release(self, resource: CachedResource) -> None:
        if self._resources.get(resource.key) is resource:
            del self._resources[resource.key]

    def close(self) -> None:
        """Close every resource and stop watching stores."""
        for resource in list(self._resources.values()):
            resource.close()
        for unwatch in self._unwatch:
            unwatch()
        self._unwatch.clear()
