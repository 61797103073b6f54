"""
TTL-aware JSON entries over a KeyValueStore.

CacheStore is the fault boundary of the layer: parse failures, validator
failures, expiry, quota rejections and unusable storage all come out as a
miss or a dropped write, never as an exception.
"""

import time
from typing import Any, Callable, Dict, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_core import PydanticSerializationError

from shared.errors import CorruptEntryError, QuotaExceededError
from shared.logging import get_logger
from ..monitoring import PerformanceMonitor
from ..storage import KeyValueStore

Validator = Callable[[Any], bool]

_OK = "ok"
_QUOTA = "quota"
_FAILED = "failed"


class CacheEntry(BaseModel):
    """Persisted envelope around a cached value."""

    model_config = ConfigDict(extra="ignore")

    value: Any
    stored_at: float
    expires_at: Optional[float] = None
    meta: Dict[str, Any] = Field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


class CacheStore:
    """Generic get/set/clear with expiry, validation and quota handling."""

    def __init__(self,
                 store: KeyValueStore,
                 name: str = "cache",
                 *,
                 require_expiry: bool = False,
                 clock: Callable[[], float] = time.time,
                 monitor: Optional[PerformanceMonitor] = None):
        self.store = store
        self.name = name
        self.require_expiry = require_expiry
        self.clock = clock
        self.monitor = monitor
        self.logger = get_logger(f"client_cache.caching.{name}")

    def _fault(self, fault: str) -> None:
        if self.monitor:
            self.monitor.record_storage_fault(fault)

    def read_raw(self, key: str) -> Optional[str]:
        """Read the raw persisted string, treating any fault as absent."""
        try:
            return self.store.get_item(key)
        except Exception as exc:
            self.logger.debug("Storage read failed", key=key, error=str(exc))
            self._fault("read")
            return None

    def decode(self, key: str, raw: str) -> CacheEntry:
        """Parse a persisted string into an entry."""
        try:
            return CacheEntry.model_validate_json(raw)
        except ValidationError as exc:
            raise CorruptEntryError(key, details={"errors": exc.error_count()}) from exc

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry under key, purging corrupt or expired ones."""
        raw = self.read_raw(key)
        if raw is None:
            return None

        try:
            entry = self.decode(key, raw)
        except CorruptEntryError as exc:
            self.logger.warning("Discarding corrupt cache entry", key=key, error=exc.message)
            self._fault("corrupt")
            self.clear(key)
            return None

        if entry.is_expired(self.clock()) or (self.require_expiry and entry.expires_at is None):
            self.logger.debug("Cache entry expired", key=key)
            self.clear(key)
            return None

        return entry

    def get(self, key: str, validator: Optional[Validator] = None) -> Any:
        """Return the cached value or None."""
        entry = self.get_entry(key)
        value = entry.value if entry is not None else None

        if value is not None and validator is not None and not self._passes(validator, value):
            self.logger.warning("Cached value failed validation", key=key)
            self._fault("corrupt")
            self.clear(key)
            value = None

        if self.monitor:
            self.monitor.record_cache_check(value is not None, cache=self.name)
        return value

    @staticmethod
    def _passes(validator: Validator, value: Any) -> bool:
        try:
            return bool(validator(value))
        except Exception:
            return False

    def encode(self,
               value: Any,
               ttl: Optional[float] = None,
               meta: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """Serialize a value into a fresh entry; None if it is not JSON-safe."""
        now = self.clock()
        entry = CacheEntry(
            value=value,
            stored_at=now,
            expires_at=now + ttl if ttl is not None else None,
            meta=meta or {},
        )
        try:
            return entry.model_dump_json()
        except (PydanticSerializationError, TypeError, ValueError) as exc:
            self.logger.warning("Value is not serializable; skipping cache write", error=str(exc))
            return None

    def set(self,
            key: str,
            value: Any,
            ttl: Optional[float] = None,
            meta: Optional[Dict[str, Any]] = None) -> bool:
        """Write value under key; on quota pressure drop our own entry and retry once."""
        payload = self.encode(value, ttl, meta)
        if payload is None:
            return False
        return self.write(key, payload, [lambda: self.clear(key)])

    def write(self, key: str, payload: str, eviction_rounds: Iterable[Callable[[], Any]] = ()) -> bool:
        """Write a serialized entry, running one eviction round per quota failure."""
        rounds = iter(eviction_rounds)
        attempt = 1
        while True:
            outcome = self._attempt(key, payload)
            if outcome != _QUOTA:
                return outcome == _OK

            evict = next(rounds, None)
            if evict is None:
                self.logger.warning(
                    "Storage quota exceeded; skipping cache write",
                    key=key,
                    attempts=attempt,
                )
                return False

            evict()
            attempt += 1

    def _attempt(self, key: str, payload: str) -> str:
        try:
            self.store.set_item(key, payload)
            return _OK
        except QuotaExceededError:
            self._fault("quota")
            return _QUOTA
        except Exception as exc:
            self.logger.warning("Failed to write cache entry", key=key, error=str(exc))
            self._fault("write")
            return _FAILED

    def clear(self, key: str) -> None:
        try:
            self.store.remove_item(key)
        except Exception as exc:
            self.logger.debug("Storage remove failed", key=key, error=str(exc))
            self._fault("remove")
