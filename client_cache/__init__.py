"""
Client-resident caching and cross-tab consistency layer.

Caches every piece of user-facing data a tab shows (identity-bound profile,
long-lived reference data, short-lived aggregates, context-scoped catalogs)
in a key/value substrate, serves it stale-while-revalidate, and keeps sibling
tabs of the same signed-in user in step without extra fetches.

Typical wiring::

    tab = ClientCacheTab(session_store, persistent_store, native_transport)
    session = tab.profile_session(fetch_bulk)
    session.start(owner_key)
    resource = tab.coordinator.use_cached_resource("notices", fetch_notices)
"""

from .runtime import ClientCacheTab, connect_redis_tab

__all__ = ["ClientCacheTab", "connect_redis_tab"]
