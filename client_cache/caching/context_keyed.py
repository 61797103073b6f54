"""
Collections keyed by an ordered context tuple (branch/year/semester, query
dimensions), with quota-aware eviction inside the namespace.
"""

import math
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

from shared.errors import CorruptEntryError
from .store import CacheStore

Context = Union[Sequence[Any], Mapping[str, Any]]


class ContextKeyedCache:
    """One persistent entry per context tuple under a shared key prefix.

    Every entry stores the tuple it was written for; a read under a different
    tuple that maps to the same key is treated as a miss and purged.
    """

    def __init__(self,
                 cache: CacheStore,
                 prefix: str,
                 dimensions: Sequence[str],
                 ttl: Optional[float] = None,
                 separator: str = "|",
                 sentinel: str = "_",
                 eviction_fractions: Sequence[float] = (0.25, 0.33)):
        self.cache = cache
        self.prefix = prefix
        self.dimensions = tuple(dimensions)
        self.ttl = ttl
        self.separator = separator
        self.sentinel = sentinel
        self.eviction_fractions = tuple(eviction_fractions)
        self.logger = cache.logger

    def normalize(self, context: Context) -> List[Any]:
        """Order a context by the namespace's dimensions."""
        if isinstance(context, Mapping):
            unknown = set(context) - set(self.dimensions)
            if unknown:
                raise ValueError(f"Unknown dimensions for {self.prefix!r}: {sorted(unknown)}")
            return [context.get(name) for name in self.dimensions]

        values = list(context)
        if len(values) > len(self.dimensions):
            raise ValueError(
                f"{self.prefix!r} takes {len(self.dimensions)} dimensions, got {len(values)}"
            )
        return values + [None] * (len(self.dimensions) - len(values))

    def _encode_dimension(self, value: Any) -> str:
        if value is None or value == "":
            return self.sentinel
        text = str(value).replace("\\", "\\\\").replace(self.separator, "\\" + self.separator)
        if text == self.sentinel:
            text = "\\" + text
        return text

    def key_for(self, context: Context) -> str:
        """Deterministic storage key for a context."""
        parts = [self._encode_dimension(value) for value in self.normalize(context)]
        return self.prefix + self.separator.join(parts)

    def set(self, context: Context, value: Any) -> bool:
        values = self.normalize(context)
        key = self.key_for(values)
        payload = self.cache.encode(value, self.ttl, meta={"context": values})
        if payload is None:
            return False
        rounds = [
            (lambda fraction=fraction: self.evict_oldest(fraction, self._growth(key)))
            for fraction in self.eviction_fractions
        ]
        return self.cache.write(key, payload, rounds)

    def _growth(self, key: str) -> int:
        # A new key adds an entry; evict one more so the namespace still shrinks.
        return 0 if key in self._namespace_keys() else 1

    def get(self, context: Context) -> Any:
        values = self.normalize(context)
        key = self.key_for(values)
        entry = self.cache.get_entry(key)
        value = None

        if entry is not None:
            if entry.meta.get("context") == values:
                value = entry.value
            else:
                self.logger.info("Context mismatch; discarding entry", key=key)
                self.cache.clear(key)

        if self.cache.monitor:
            self.cache.monitor.record_cache_check(value is not None, cache=self.cache.name)
        return value

    def clear_for_context(self, context: Context) -> None:
        self.cache.clear(self.key_for(context))

    def clear_all(self) -> None:
        for key in self._namespace_keys():
            self.cache.clear(key)

    def _namespace_keys(self) -> List[str]:
        try:
            return self.cache.store.keys(self.prefix)
        except Exception as exc:
            self.logger.debug("Storage enumeration failed", prefix=self.prefix, error=str(exc))
            return []

    def entries(self) -> List[Tuple[str, float]]:
        """(key, stored_at) for every entry in the namespace, oldest first.

        Unreadable entries sort first with stored_at of -inf.
        """
        found = []
        for key in self._namespace_keys():
            raw = self.cache.read_raw(key)
            if raw is None:
                continue
            try:
                stored_at = self.cache.decode(key, raw).stored_at
            except CorruptEntryError:
                stored_at = -math.inf
            found.append((key, stored_at))
        found.sort(key=lambda item: item[1])
        return found

    def evict_oldest(self, fraction: float, extra: int = 0) -> int:
        """Remove the oldest ceil(n * fraction) + extra entries; returns how many."""
        entries = self.entries()
        if not entries:
            return 0

        count = min(len(entries), max(1, math.ceil(len(entries) * fraction)) + extra)
        for key, _ in entries[:count]:
            self.cache.clear(key)

        self.logger.warning(
            "Evicted cache entries under quota pressure",
            namespace=self.prefix,
            evicted=count,
            remaining=len(entries) - count,
        )
        if self.cache.monitor:
            self.cache.monitor.record_evictions(self.prefix, count)
        return count


class SubjectsCache(ContextKeyedCache):
    """Subject catalog per branch/year/semester; invalidated explicitly."""

    DIMENSIONS = ("branch", "year", "semester")

    def __init__(self, cache: CacheStore, prefix: str = "subjects_", **kwargs):
        super().__init__(cache, prefix, self.DIMENSIONS, ttl=None, **kwargs)


class ResourcesCache(ContextKeyedCache):
    """Resource listings per query, expiring after a few days."""

    DIMENSIONS = ("category", "subject", "branch", "year", "semester")

    def __init__(self, cache: CacheStore, prefix: str = "resources_", ttl: float = 3 * 24 * 60 * 60, **kwargs):
        super().__init__(cache, prefix, self.DIMENSIONS, ttl=ttl, **kwargs)
