"""
Wiring of every specialized cache for one tab.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from shared.config import CacheSettings, get_settings
from ..monitoring import PerformanceMonitor
from ..storage import KeyValueStore
from .context_keyed import ResourcesCache, SubjectsCache
from .profile import ProfileCache, ProfileDisplayCache
from .snapshots import ReferenceCache, VolatileCache
from .store import CacheStore


@dataclass
class CacheSuite:
    """The specialized caches of one tab."""
    profile: ProfileCache
    profile_display: ProfileDisplayCache
    reference: ReferenceCache
    volatile: VolatileCache
    subjects: SubjectsCache
    resources: ResourcesCache

    def clear_identity_bound(self) -> None:
        """Drop everything tied to the signed-in user; reference data stays."""
        self.profile.clear()
        self.profile_display.clear()
        self.volatile.clear()
        self.subjects.clear_all()
        self.resources.clear_all()


def build_caches(session_store: KeyValueStore,
                 persistent_store: KeyValueStore,
                 *,
                 settings: Optional[CacheSettings] = None,
                 monitor: Optional[PerformanceMonitor] = None,
                 clock: Callable[[], float] = time.time) -> CacheSuite:
    """Build a tab's caches over its session and persistent stores."""
    settings = settings or get_settings()
    context_options = dict(
        separator=settings.context_separator,
        sentinel=settings.context_sentinel,
        eviction_fractions=(settings.eviction_first_fraction, settings.eviction_second_fraction),
    )

    def store(kv: KeyValueStore, name: str, require_expiry: bool = False) -> CacheStore:
        return CacheStore(kv, name, require_expiry=require_expiry, clock=clock, monitor=monitor)

    return CacheSuite(
        profile=ProfileCache(store(session_store, "profile"), settings.profile_key),
        profile_display=ProfileDisplayCache(
            store(persistent_store, "profile_display"), settings.profile_display_key
        ),
        reference=ReferenceCache(
            store(persistent_store, "static", require_expiry=True),
            settings.static_key,
            settings.static_ttl,
        ),
        volatile=VolatileCache(
            store(session_store, "dynamic", require_expiry=True),
            settings.dynamic_key,
            settings.dynamic_ttl,
        ),
        subjects=SubjectsCache(
            store(persistent_store, "subjects"), settings.subjects_prefix, **context_options
        ),
        resources=ResourcesCache(
            store(persistent_store, "resources"),
            settings.resources_prefix,
            settings.resources_ttl,
            **context_options,
        ),
    )
