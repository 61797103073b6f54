"""
In-memory key/value substrate.

A MemoryBackend is the shared storage area (one per "origin" for persistent
data, one per tab for session data). Each tab talks to it through its own
MemoryStore view; a write through one view fires StorageEvents on every other
view, never on the writer.
"""

from typing import Callable, Dict, List, Optional, Tuple

from shared.errors import QuotaExceededError
from shared.logging import get_logger
from .base import StorageEvent, StorageListener


class MemoryBackend:
    """Shared storage area with an optional size quota.

    Size is counted as len(key) + len(value) over all entries, which is how
    browsers account their per-origin limit.
    """

    def __init__(self, quota: Optional[int] = None):
        self.quota = quota
        self._data: Dict[str, str] = {}
        self._listeners: List[Tuple["MemoryStore", StorageListener]] = []

    @property
    def used(self) -> int:
        return sum(len(k) + len(v) for k, v in self._data.items())

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, value: str, origin: "MemoryStore") -> None:
        old_value = self._data.get(key)
        if self.quota is not None:
            current = len(key) + len(old_value) if old_value is not None else 0
            if self.used - current + len(key) + len(value) > self.quota:
                raise QuotaExceededError(details={"key": key, "quota": self.quota})
        self._data[key] = value
        if old_value != value:
            self._notify(StorageEvent(key, old_value, value), origin)

    def delete(self, key: str, origin: "MemoryStore") -> None:
        old_value = self._data.pop(key, None)
        if old_value is not None:
            self._notify(StorageEvent(key, old_value, None), origin)

    def keys(self) -> List[str]:
        return list(self._data)

    def add_listener(self, view: "MemoryStore", listener: StorageListener) -> Callable[[], None]:
        entry = (view, listener)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _notify(self, event: StorageEvent, origin: "MemoryStore") -> None:
        for view, listener in list(self._listeners):
            if view is origin:
                continue
            try:
                listener(event)
            except Exception as exc:
                view.logger.warning("Storage listener failed", key=event.key, error=str(exc))


class MemoryStore:
    """One tab's view of a MemoryBackend."""

    def __init__(self, backend: Optional[MemoryBackend] = None, name: str = "memory"):
        self.backend = backend if backend is not None else MemoryBackend()
        self.name = name
        self.logger = get_logger(f"client_cache.storage.{name}")

    def get_item(self, key: str) -> Optional[str]:
        return self.backend.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.backend.put(key, value, self)

    def remove_item(self, key: str) -> None:
        self.backend.delete(key, self)

    def keys(self, prefix: str = "") -> List[str]:
        return [key for key in self.backend.keys() if key.startswith(prefix)]

    def watch(self, listener: StorageListener) -> Callable[[], None]:
        """Receive StorageEvents caused by other views of the backend."""
        return self.backend.add_listener(self, listener)
