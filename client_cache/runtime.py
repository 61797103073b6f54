"""
Per-tab runtime: wires storage, caches, broadcast, resources and monitoring.
"""

import time
from typing import Callable, Optional

from shared.config import CacheSettings, get_settings
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig
from .broadcast import BroadcastTransport, CrossTabBroadcaster, RedisChannelTransport, TabIdentity, select_transport
from .caching import CacheStore, build_caches
from .monitoring import PerformanceMonitor
from .resources import StaleWhileRevalidateCoordinator
from .session import BulkFetcher, ProfileSession
from .storage import KeyValueStore, MemoryStore, RedisStore, WatchableStore


class ClientCacheTab:
    """Everything one tab needs, built over its session and persistent stores."""

    def __init__(self,
                 session_store: KeyValueStore,
                 persistent_store: KeyValueStore,
                 native_transport: Optional[BroadcastTransport] = None,
                 *,
                 settings: Optional[CacheSettings] = None,
                 monitor: Optional[PerformanceMonitor] = None,
                 retry_config: Optional[RetryConfig] = None,
                 clock: Callable[[], float] = time.time):
        self.settings = settings or get_settings()
        self.session_store = session_store
        self.persistent_store = persistent_store
        self.retry_config = retry_config
        self.monitor = monitor or PerformanceMonitor(MetricsCollector("client_cache"))

        self.tab_id = TabIdentity.resolve(session_store, self.settings.tab_id_key)
        self.logger = get_logger("client_cache.runtime").bind(tab_id=self.tab_id)

        self.transport = select_transport(
            native_transport, persistent_store, self.settings.broadcast_relay_key
        )
        if self.transport is None:
            self.logger.info("No broadcast transport available; tab runs isolated")

        self.caches = build_caches(
            session_store,
            persistent_store,
            settings=self.settings,
            monitor=self.monitor,
            clock=clock,
        )
        self.broadcaster = CrossTabBroadcaster(self.transport, self.tab_id, self.monitor, clock)
        self.coordinator = StaleWhileRevalidateCoordinator(
            CacheStore(session_store, "session_resources", clock=clock, monitor=self.monitor),
            monitor=self.monitor,
            settings=self.settings,
            retry_config=retry_config,
        )
        if isinstance(persistent_store, WatchableStore):
            self.coordinator.watch_store(persistent_store)

    def profile_session(self, bulk_fetcher: BulkFetcher) -> ProfileSession:
        """Create the bulk profile session for this tab."""
        return ProfileSession(
            self.caches,
            self.broadcaster,
            bulk_fetcher,
            monitor=self.monitor,
            settings=self.settings,
            retry_config=self.retry_config,
        )

    def close(self) -> None:
        """Close resources and the broadcast transport; caches stay on disk."""
        self.coordinator.close()
        if self.transport is not None:
            self.transport.close()
        self.logger.info("Tab closed")

    async def aclose(self) -> None:
        """Close the tab and release any connections it holds."""
        self.coordinator.close()
        if isinstance(self.transport, RedisChannelTransport):
            await self.transport.stop()
        elif self.transport is not None:
            self.transport.close()
        if isinstance(self.persistent_store, RedisStore):
            self.persistent_store.close()
        self.logger.info("Tab closed")


async def connect_redis_tab(settings: Optional[CacheSettings] = None,
                            session_store: Optional[KeyValueStore] = None) -> ClientCacheTab:
    """Build a tab whose persistent store and broadcast channel live in Redis.

    The session store defaults to a private in-memory store, since session
    data never outlives the tab.
    """
    settings = settings or get_settings()
    if not settings.redis_url:
        raise ValueError("CLIENT_CACHE_REDIS_URL is not configured")

    configure_logging("client_cache", settings.log_level)
    channel = RedisChannelTransport(settings.redis_url, settings.broadcast_channel)
    await channel.start()

    return ClientCacheTab(
        session_store if session_store is not None else MemoryStore(name="session"),
        RedisStore.from_url(settings.redis_url),
        channel,
        settings=settings,
    )
