"""
Caching package.

CacheStore is the generic fault-absorbing entry store; the specialized caches
each own one storage key (or one key prefix) and never share a namespace.
Prefer explicit invalidation over waiting for a TTL when the owning context
changes.
"""

from .context_keyed import ContextKeyedCache, ResourcesCache, SubjectsCache
from .factory import CacheSuite, build_caches
from .profile import PROFILE_FIELDS, ProfileCache, ProfileDisplayCache, whitelist_profile
from .snapshots import ReferenceCache, SnapshotCache, VolatileCache
from .store import CacheEntry, CacheStore

__all__ = [
    "CacheEntry",
    "CacheStore",
    "ProfileCache",
    "ProfileDisplayCache",
    "PROFILE_FIELDS",
    "whitelist_profile",
    "SnapshotCache",
    "ReferenceCache",
    "VolatileCache",
    "ContextKeyedCache",
    "SubjectsCache",
    "ResourcesCache",
    "CacheSuite",
    "build_caches",
]
