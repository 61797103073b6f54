"""
Cross-tab broadcaster.

When one tab fetches a fresh bulk payload it tells its siblings, which hydrate
their own caches instead of fetching again. Delivery is best effort: no
acknowledgement, no retry, arrival order only. A tab that is not open at
broadcast time simply catches up on its next fetch.
"""

import time
import uuid
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from shared.logging import get_logger
from ..monitoring import PerformanceMonitor
from ..storage import KeyValueStore, WatchableStore
from .messages import BULK_CACHE_UPDATE, BroadcastMessage
from .transports import BroadcastTransport, StorageRelayTransport

MessageHandler = Callable[[BroadcastMessage], None]


class TabIdentity:
    """Random per-tab sender id, persisted in the tab's session store."""

    @staticmethod
    def resolve(session_store: KeyValueStore, key: str = "tab_id") -> str:
        try:
            existing = session_store.get_item(key)
            if existing:
                return existing
            tab_id = str(uuid.uuid4())
            session_store.set_item(key, tab_id)
            return tab_id
        except Exception:
            # No session storage: the id lives only as long as this object graph.
            return str(uuid.uuid4())


def select_transport(native: Optional[BroadcastTransport],
                     fallback_store: Optional[KeyValueStore],
                     relay_key: str) -> Optional[BroadcastTransport]:
    """Prefer the native channel, else relay through a watchable store."""
    if native is not None:
        return native
    if fallback_store is not None and isinstance(fallback_store, WatchableStore):
        return StorageRelayTransport(fallback_store, relay_key)
    return None


class CrossTabBroadcaster:
    """Publishes bulk payloads to sibling tabs and filters what comes back."""

    def __init__(self,
                 transport: Optional[BroadcastTransport],
                 tab_id: str,
                 monitor: Optional[PerformanceMonitor] = None,
                 clock: Callable[[], float] = time.time):
        self.transport = transport
        self.tab_id = tab_id
        self.monitor = monitor
        self.clock = clock
        self.logger = get_logger("client_cache.broadcast.broadcaster").bind(tab_id=tab_id)

    def broadcast(self, owner_key: Optional[str], payload: Dict[str, Any]) -> bool:
        """Post a bulk update; returns False when it could not be handed off."""
        if self.transport is None:
            return False

        message = BroadcastMessage(
            type=BULK_CACHE_UPDATE,
            sender_id=self.tab_id,
            owner_key=owner_key,
            payload=payload,
            timestamp=self.clock(),
        )
        try:
            self.transport.post(message.to_wire())
        except Exception as exc:
            self.logger.warning("Broadcast failed", transport=self.transport.name, error=str(exc))
            return False

        if self.monitor:
            self.monitor.record_broadcast("sent")
        self.logger.debug("Broadcast posted", transport=self.transport.name)
        return True

    def parse(self, raw: Any) -> Optional[BroadcastMessage]:
        """Validate an incoming message; None for malformed or own messages."""
        if not isinstance(raw, dict):
            return None
        try:
            message = BroadcastMessage.model_validate(raw)
        except ValidationError:
            self.logger.debug("Discarding malformed broadcast")
            return None
        if message.sender_id == self.tab_id:
            return None
        return message

    def subscribe(self, on_message: MessageHandler) -> Callable[[], None]:
        """Receive sibling tabs' messages until the returned callable is invoked."""
        if self.transport is None:
            return lambda: None

        def handle(raw: Any) -> None:
            message = self.parse(raw)
            if message is None:
                return
            if self.monitor:
                self.monitor.record_broadcast("received")
            on_message(message)

        return self.transport.add_listener(handle)
