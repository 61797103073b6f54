"""
Identity-bound profile caches.
"""

from typing import Any, Dict, Mapping, Optional

from shared.errors import IdentityMismatchError
from .store import CacheEntry, CacheStore

PROFILE_FIELDS = (
    "id",
    "name",
    "email",
    "roll_number",
    "branch",
    "year",
    "semester",
    "section",
    "role",
)


def whitelist_profile(profile: Any) -> Optional[Dict[str, Any]]:
    """Project a profile onto the fields that are safe to persist."""
    if not isinstance(profile, Mapping):
        return None
    return {name: profile.get(name) for name in PROFILE_FIELDS}


class ProfileCache:
    """Single-entry cache of the signed-in user's profile projection.

    The entry records the identity it was written for; reading it back under
    any other identity purges it.
    """

    def __init__(self, cache: CacheStore, key: str = "profile_cache"):
        self.cache = cache
        self.key = key
        self.logger = cache.logger

    def set(self, owner_key: str, profile: Any) -> bool:
        projection = whitelist_profile(profile)
        if projection is None:
            # Unusable payload: don't leave a stale entry behind.
            self.clear()
            return False
        return self.cache.set(self.key, projection, meta={"owner_key": owner_key})

    def get(self, owner_key: str) -> Optional[Dict[str, Any]]:
        entry = self.cache.get_entry(self.key)
        profile: Optional[Dict[str, Any]] = None

        if entry is not None:
            try:
                self._check_owner(entry, owner_key)
                if isinstance(entry.value, dict):
                    profile = entry.value
                else:
                    self.logger.warning("Profile entry has the wrong shape; discarding", key=self.key)
                    self.clear()
            except IdentityMismatchError as exc:
                self.logger.info(exc.message, key=self.key)
                self.clear()

        if self.cache.monitor:
            self.cache.monitor.record_cache_check(profile is not None, cache=self.cache.name)
        return profile

    def _check_owner(self, entry: CacheEntry, owner_key: str) -> None:
        cached_owner = entry.meta.get("owner_key")
        if not cached_owner or cached_owner != owner_key:
            raise IdentityMismatchError()

    def clear(self) -> None:
        self.cache.clear(self.key)


class ProfileDisplayCache(ProfileCache):
    """Persistent copy of the profile projection used for instant header render."""

    def __init__(self, cache: CacheStore, key: str = "profile_display_cache"):
        super().__init__(cache, key)
