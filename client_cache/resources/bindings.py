"""
Bindings between a coordinated resource and the cache that persists it.
"""

from typing import Any, Callable, Optional, Protocol

from ..caching import CacheStore, ContextKeyedCache, SnapshotCache
from ..caching.context_keyed import Context


class ResourceBinding(Protocol):
    """Where a resource's last good value lives between fetches."""

    storage_key: Optional[str]
    has_ttl: bool

    def read(self) -> Any:
        ...

    def write(self, value: Any) -> None:
        ...

    def purge(self) -> None:
        ...


class SessionResourceBinding:
    """Per-key entry in the tab's session store."""

    def __init__(self, cache: CacheStore, key: str, prefix: str = "session_cache_v1", ttl: Optional[float] = None):
        self.cache = cache
        self.storage_key = f"{prefix}:{key}"
        self.ttl = ttl
        self.has_ttl = ttl is not None

    def read(self) -> Any:
        return self.cache.get(self.storage_key)

    def write(self, value: Any) -> None:
        self.cache.set(self.storage_key, value, ttl=self.ttl)

    def purge(self) -> None:
        self.cache.clear(self.storage_key)


class CacheBinding:
    """Adapter over any specialized cache's get/set/clear."""

    def __init__(self,
                 read: Callable[[], Any],
                 write: Callable[[Any], Any],
                 purge: Callable[[], None],
                 *,
                 has_ttl: bool = False,
                 storage_key: Optional[str] = None):
        self._read = read
        self._write = write
        self._purge = purge
        self.has_ttl = has_ttl
        self.storage_key = storage_key

    @classmethod
    def for_snapshot(cls, snapshot: SnapshotCache) -> "CacheBinding":
        return cls(snapshot.get, snapshot.set, snapshot.clear, has_ttl=True, storage_key=snapshot.key)

    @classmethod
    def for_context(cls, cache: ContextKeyedCache, context: Context) -> "CacheBinding":
        return cls(
            lambda: cache.get(context),
            lambda value: cache.set(context, value),
            lambda: cache.clear_for_context(context),
            has_ttl=cache.ttl is not None,
            storage_key=cache.key_for(context),
        )

    def read(self) -> Any:
        return self._read()

    def write(self, value: Any) -> None:
        self._write(value)

    def purge(self) -> None:
        self._purge()
