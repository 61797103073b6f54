"""
Single-key TTL snapshots: long-lived reference data and short-lived volatile data.
"""

from typing import Any, Optional

from .store import CacheStore, Validator


class SnapshotCache:
    """One entry under one key, always written with a TTL."""

    def __init__(self, cache: CacheStore, key: str, ttl: float):
        self.cache = cache
        self.key = key
        self.ttl = ttl

    def set(self, data: Any) -> bool:
        return self.cache.set(self.key, data, ttl=self.ttl)

    def get(self, validator: Optional[Validator] = None) -> Any:
        return self.cache.get(self.key, validator)

    def clear(self) -> None:
        self.cache.clear(self.key)


class ReferenceCache(SnapshotCache):
    """Catalog-like data that changes over weeks; lives in persistent storage."""

    def __init__(self, cache: CacheStore, key: str = "static_data_cache", ttl: float = 30 * 24 * 60 * 60):
        super().__init__(cache, key, ttl)


class VolatileCache(SnapshotCache):
    """Frequently-changing aggregates; lives in session storage for minutes."""

    def __init__(self, cache: CacheStore, key: str = "dynamic_data_cache", ttl: float = 10 * 60):
        super().__init__(cache, key, ttl)
