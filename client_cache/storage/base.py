"""
Capability interfaces for the key/value substrate.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, runtime_checkable

from shared.errors import StorageUnavailableError


@dataclass(frozen=True)
class StorageEvent:
    """Change notification delivered to other views of a shared store."""
    key: Optional[str]
    old_value: Optional[str]
    new_value: Optional[str]


StorageListener = Callable[[StorageEvent], None]


@runtime_checkable
class KeyValueStore(Protocol):
    """Synchronous string key/value store.

    Implementations raise QuotaExceededError when a write is rejected for
    size, and StorageUnavailableError when the substrate cannot be used.
    """

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...

    def keys(self, prefix: str = "") -> List[str]:
        ...


@runtime_checkable
class WatchableStore(KeyValueStore, Protocol):
    """Store that notifies other views of the same backend about changes."""

    def watch(self, listener: StorageListener) -> Callable[[], None]:
        ...


class NullStore:
    """Store for contexts without storage: every operation is unavailable."""

    def get_item(self, key: str) -> Optional[str]:
        raise StorageUnavailableError()

    def set_item(self, key: str, value: str) -> None:
        raise StorageUnavailableError()

    def remove_item(self, key: str) -> None:
        raise StorageUnavailableError()

    def keys(self, prefix: str = "") -> List[str]:
        raise StorageUnavailableError()
