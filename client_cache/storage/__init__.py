"""
Storage substrates.

All cache logic depends only on the KeyValueStore interface. MemoryStore is
the in-process implementation used by tests and non-browser hosts; RedisStore
is the shared persistent one.
"""

from .base import KeyValueStore, NullStore, StorageEvent, StorageListener, WatchableStore
from .memory import MemoryBackend, MemoryStore
from .redis_store import RedisStore

__all__ = [
    "KeyValueStore",
    "WatchableStore",
    "StorageEvent",
    "StorageListener",
    "NullStore",
    "MemoryBackend",
    "MemoryStore",
    "RedisStore",
]
