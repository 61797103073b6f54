"""
Bulk profile session for one tab.

Hydrates the signed-in user's profile, reference data, volatile data and
subjects from cache, fetches the bulk payload when the cache cannot cover the
screen, writes every piece back through its cache and shares it with sibling
tabs. Signing out tears down every identity-bound cache.
"""

import asyncio
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError

from shared.config import CacheSettings, get_settings
from shared.errors import FetchError
from shared.logging import clear_context, get_logger, set_owner_context
from shared.retry import RetryConfig, RetryError, call_with_retry
from ..broadcast import BroadcastMessage, BulkCachePayload, CrossTabBroadcaster, SubjectsContext
from ..caching import CacheSuite, whitelist_profile
from ..monitoring import BULK_FETCH_OPERATION, PerformanceMonitor

BulkFetcher = Callable[[], Awaitable[Mapping[str, Any]]]


def _is_mapping(value: Any) -> bool:
    return isinstance(value, Mapping)


@dataclass(frozen=True)
class ProfileState:
    """Everything the profile-aware screens render."""
    owner_key: Optional[str] = None
    profile: Optional[Dict[str, Any]] = None
    subjects: List[Dict[str, Any]] = field(default_factory=list)
    static_data: Optional[Dict[str, Any]] = None
    dynamic_data: Optional[Dict[str, Any]] = None
    loading: bool = False
    error: Optional[str] = None
    warnings: Optional[List[str]] = None


class ProfileSession:
    """Cache-first bulk data for the signed-in user of one tab."""

    def __init__(self,
                 caches: CacheSuite,
                 broadcaster: CrossTabBroadcaster,
                 bulk_fetcher: BulkFetcher,
                 *,
                 monitor: Optional[PerformanceMonitor] = None,
                 settings: Optional[CacheSettings] = None,
                 retry_config: Optional[RetryConfig] = None):
        self.caches = caches
        self.broadcaster = broadcaster
        self.bulk_fetcher = bulk_fetcher
        self.monitor = monitor
        settings = settings or get_settings()
        self.retry_config = retry_config or RetryConfig(
            max_attempts=settings.fetch_retry_attempts,
            base_delay=settings.fetch_retry_base_delay,
        )
        self.logger = get_logger("client_cache.session.profile")
        self.state = ProfileState()
        self._observers: List[Callable[[ProfileState], None]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._in_flight: Optional["asyncio.Task[Any]"] = None

    @property
    def owner_key(self) -> Optional[str]:
        return self.state.owner_key

    def subscribe(self, observer: Callable[[ProfileState], None]) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _update(self, **changes: Any) -> None:
        self.state = replace(self.state, **changes)
        for observer in list(self._observers):
            try:
                observer(self.state)
            except Exception as exc:
                self.logger.warning("Profile observer failed", error=str(exc))

    def start(self, owner_key: Optional[str]) -> Optional["asyncio.Task[Any]"]:
        """Apply the identity signal; returns the fetch task if one was started.

        Must be called from a running event loop.
        """
        if owner_key is None:
            self.teardown()
            return None

        if self.owner_key is not None and owner_key != self.owner_key:
            self.teardown()

        set_owner_context(owner_key)
        self._update(owner_key=owner_key)
        if self._unsubscribe is None:
            self._unsubscribe = self.broadcaster.subscribe(self._on_broadcast)

        if self.hydrate():
            self._update(loading=False)
            # Cached screen is complete unless the short-lived data expired.
            if self.state.dynamic_data is None:
                return self._schedule(foreground=False)
            return None

        return self._schedule(foreground=True)

    def hydrate(self) -> bool:
        """Seed state from every cache; True if anything was found."""
        owner_key = self.owner_key
        if owner_key is None:
            return False

        profile = self.caches.profile.get(owner_key)
        static_data = self.caches.reference.get(_is_mapping)
        dynamic_data = self.caches.volatile.get(_is_mapping)
        changes: Dict[str, Any] = {}

        if profile is not None:
            changes["profile"] = profile
            self.caches.profile_display.set(owner_key, profile)
            context = self._subjects_context(profile)
            if context is not None:
                subjects = self.caches.subjects.get(context)
                if isinstance(subjects, list):
                    changes["subjects"] = subjects
        if static_data is not None:
            changes["static_data"] = static_data
        if dynamic_data is not None:
            changes["dynamic_data"] = dynamic_data

        if changes:
            self._update(**changes)
        return any(value is not None for value in (profile, static_data, dynamic_data))

    @staticmethod
    def _subjects_context(profile: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
        if not profile:
            return None
        branch, year, semester = profile.get("branch"), profile.get("year"), profile.get("semester")
        if not branch or not isinstance(year, int) or year <= 0 or not semester:
            return None
        return {"branch": branch, "year": year, "semester": semester}

    def _schedule(self, foreground: bool) -> "asyncio.Task[Any]":
        if self._in_flight is not None and not self._in_flight.done() and not foreground:
            return self._in_flight
        if foreground:
            self._update(loading=True, error=None)
        task = asyncio.get_running_loop().create_task(self.fetch_bulk(foreground))
        self._in_flight = task
        return task

    async def fetch_bulk(self, foreground: bool = True) -> Optional[Mapping[str, Any]]:
        """Fetch the bulk payload and write it through every cache.

        Only foreground fetches (someone is looking at a spinner) retry.
        """
        owner_key = self.owner_key
        if owner_key is None:
            return None

        changes: Dict[str, Any] = {"error": None}
        if foreground:
            changes["loading"] = True
        self._update(**changes)

        config = self.retry_config if foreground else RetryConfig.single_attempt()
        stop = self.monitor.start_operation(BULK_FETCH_OPERATION) if self.monitor else None
        try:
            data = await call_with_retry(self.bulk_fetcher, config, name="bulk_fetch")
        except RetryError as exc:
            error = FetchError("bulk", str(exc.last_exception) or "Failed to load data")
            self.logger.error("Bulk fetch failed", foreground=foreground, error=error.message)
            if owner_key == self.owner_key:
                self._update(error=error.message, loading=False)
            return None
        finally:
            if self.monitor:
                stop()
                self.monitor.increment_api_calls(1)

        if owner_key != self.owner_key:
            self.logger.info("Identity changed during bulk fetch; dropping result")
            return None

        if not isinstance(data, Mapping):
            self.logger.warning("Bulk response is not an object", received=type(data).__name__)
            self._update(error="Failed to load data", loading=False)
            return None

        self._apply_bulk(owner_key, data)
        return data

    def _apply_bulk(self, owner_key: str, data: Mapping[str, Any]) -> None:
        profile = whitelist_profile(data.get("profile"))
        subjects = data.get("subjects") if isinstance(data.get("subjects"), list) else []
        static_data = data.get("static") if _is_mapping(data.get("static")) else None
        dynamic_data = data.get("dynamic") if _is_mapping(data.get("dynamic")) else None
        warnings = data.get("contextWarnings")

        self._update(
            profile=profile,
            subjects=subjects,
            static_data=static_data,
            dynamic_data=dynamic_data,
            warnings=list(warnings) if isinstance(warnings, list) else None,
            loading=False,
        )

        self.caches.profile.set(owner_key, profile)
        self.caches.profile_display.set(owner_key, profile)
        if static_data is not None:
            self.caches.reference.set(static_data)
        if dynamic_data is not None:
            self.caches.volatile.set(dynamic_data)

        context = self._subjects_context(profile)
        if context is not None:
            self.caches.subjects.set(context, subjects)

        self._broadcast(owner_key, profile, static_data, dynamic_data, subjects, context)

    def _broadcast(self, owner_key, profile, static_data, dynamic_data, subjects, context) -> None:
        try:
            payload = BulkCachePayload(
                profile=profile,
                static=static_data,
                dynamic=dynamic_data,
                subjects=subjects or None,
                subjects_context=SubjectsContext(**context) if context else None,
            )
        except ValidationError as exc:
            self.logger.warning("Bulk payload not broadcastable", errors=exc.error_count())
            return
        self.broadcaster.broadcast(owner_key, payload.to_wire())

    def _on_broadcast(self, message: BroadcastMessage) -> None:
        owner_key = self.owner_key
        if owner_key is None or message.owner_key != owner_key:
            return
        try:
            payload = BulkCachePayload.model_validate(message.payload)
        except ValidationError:
            self.logger.debug("Ignoring broadcast with unusable payload")
            return

        changes: Dict[str, Any] = {}
        if payload.profile:
            self.caches.profile.set(owner_key, payload.profile)
            changes["profile"] = whitelist_profile(payload.profile)
        if payload.static:
            self.caches.reference.set(payload.static)
            changes["static_data"] = payload.static
        if payload.dynamic:
            self.caches.volatile.set(payload.dynamic)
            changes["dynamic_data"] = payload.dynamic
        if payload.subjects is not None and payload.subjects_context is not None:
            self.caches.subjects.set(payload.subjects_context.model_dump(), payload.subjects)
            changes["subjects"] = payload.subjects

        if changes:
            self.logger.debug("Hydrated from sibling tab", fields=sorted(changes))
            self._update(**changes)

    async def refresh_profile(self) -> Optional[Mapping[str, Any]]:
        if self.owner_key is None:
            return None
        self.caches.profile.clear()
        self.caches.profile_display.clear()
        return await self.fetch_bulk(foreground=True)

    async def refresh_subjects(self) -> Optional[Mapping[str, Any]]:
        context = self._subjects_context(self.state.profile)
        if context is None:
            return None
        self.caches.subjects.clear_for_context(context)
        return await self.fetch_bulk(foreground=True)

    async def force_refresh(self) -> Optional[Mapping[str, Any]]:
        """Drop every cache this session reads, then fetch with a spinner."""
        self.caches.profile.clear()
        self.caches.profile_display.clear()
        self.caches.reference.clear()
        self.caches.volatile.clear()
        context = self._subjects_context(self.state.profile)
        if context is not None:
            self.caches.subjects.clear_for_context(context)
        return await self.fetch_bulk(foreground=True)

    async def invalidate_on_profile_update(self) -> Optional[Mapping[str, Any]]:
        return await self.refresh_profile()

    async def invalidate_on_semester_change(self) -> Optional[Mapping[str, Any]]:
        # Subjects of the old semester are useless once the context moves.
        if self._subjects_context(self.state.profile) is not None:
            self.caches.subjects.clear_all()
        return await self.refresh_profile()

    def handle_visibility_change(self, visible: bool) -> Optional["asyncio.Task[Any]"]:
        """Tab became visible: refetch only if the volatile entry has expired."""
        if not visible or self.state.profile is None:
            return None
        if self.caches.volatile.get(_is_mapping) is not None:
            return None
        return self._schedule(foreground=False)

    def teardown(self) -> None:
        """Identity went away: purge identity-bound caches and reset state."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.caches.clear_identity_bound()
        self.logger.info("Profile session torn down")
        clear_context()
        self._update(
            owner_key=None,
            profile=None,
            subjects=[],
            static_data=None,
            dynamic_data=None,
            loading=False,
            error=None,
            warnings=None,
        )
