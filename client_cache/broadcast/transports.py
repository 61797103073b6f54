"""
Broadcast transports between tabs.

MemoryChannel and RedisChannelTransport are native channels: every other
subscriber on the channel name receives each post. StorageRelayTransport is the
fallback for hosts without one: it writes the message under a relay key of a
watchable store and removes it straight away, relying on the store's change
events reaching the other tabs.
"""

import asyncio
import copy
import json
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

import redis.asyncio as redis

from shared.logging import get_logger
from ..storage import StorageEvent, WatchableStore

Listener = Callable[[Any], None]


class BroadcastTransport(Protocol):
    """Fire-and-forget message transport; listeners get raw, untrusted data."""

    name: str

    def post(self, message: Dict[str, Any]) -> None:
        ...

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        ...

    def close(self) -> None:
        ...


class _ListenerSet:
    """Listener bookkeeping shared by the transports."""

    name = "transport"

    def __init__(self):
        self._listeners: List[Listener] = []
        self.logger = get_logger(f"client_cache.broadcast.{self.name}")

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _dispatch(self, data: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(data)
            except Exception as exc:
                self.logger.warning("Broadcast listener failed", error=str(exc))


class MemoryChannelHub:
    """In-process stand-in for the platform's named broadcast channels."""

    def __init__(self):
        self._channels: Dict[str, List["MemoryChannel"]] = {}

    def open(self, name: str) -> "MemoryChannel":
        channel = MemoryChannel(self, name)
        self._channels.setdefault(name, []).append(channel)
        return channel

    def _deliver(self, sender: "MemoryChannel", message: Dict[str, Any]) -> None:
        for channel in list(self._channels.get(sender.channel_name, [])):
            if channel is not sender:
                channel._dispatch(copy.deepcopy(message))

    def _detach(self, channel: "MemoryChannel") -> None:
        members = self._channels.get(channel.channel_name, [])
        if channel in members:
            members.remove(channel)


class MemoryChannel(_ListenerSet):
    """One tab's handle on a named in-memory channel; never hears its own posts."""

    name = "memory_channel"

    def __init__(self, hub: MemoryChannelHub, channel_name: str):
        super().__init__()
        self.hub = hub
        self.channel_name = channel_name
        self.closed = False

    def post(self, message: Dict[str, Any]) -> None:
        if self.closed:
            raise RuntimeError(f"Channel {self.channel_name!r} is closed")
        self.hub._deliver(self, message)

    def close(self) -> None:
        self.closed = True
        self._listeners.clear()
        self.hub._detach(self)


class StorageRelayTransport(_ListenerSet):
    """Relay through one well-known key of a watchable store."""

    name = "storage_relay"

    def __init__(self, store: WatchableStore, relay_key: str):
        super().__init__()
        self.store = store
        self.relay_key = relay_key
        self._unwatch: Optional[Callable[[], None]] = store.watch(self._on_storage_event)

    def post(self, message: Dict[str, Any]) -> None:
        self.store.set_item(self.relay_key, json.dumps(message))
        self.store.remove_item(self.relay_key)

    def _on_storage_event(self, event: StorageEvent) -> None:
        if event.key != self.relay_key or not event.new_value:
            return
        try:
            data = json.loads(event.new_value)
        except ValueError:
            self.logger.debug("Ignoring unparseable relay value")
            return
        self._dispatch(data)

    def close(self) -> None:
        if self._unwatch:
            self._unwatch()
            self._unwatch = None
        self._listeners.clear()


class RedisChannelTransport(_ListenerSet):
    """Redis pub/sub channel shared by every tab connected to the same server.

    Redis echoes a publisher's own messages back to it; the broadcaster's
    sender id check filters them.
    """

    name = "redis_channel"

    def __init__(self, redis_url: str, channel_name: str, client: Optional[redis.Redis] = None):
        super().__init__()
        self.redis_url = redis_url
        self.channel_name = channel_name
        self._client = client
        self._pubsub = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    async def start(self) -> None:
        """Connect and start reading the channel."""
        if self._client is None:
            self._client = redis.from_url(self.redis_url, decode_responses=True)
        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(self.channel_name)
        self._reader = asyncio.create_task(self._read_loop())
        self.logger.info("Redis broadcast channel started", channel=self.channel_name)

    async def _read_loop(self) -> None:
        try:
            async for item in self._pubsub.listen():
                if item.get("type") != "message":
                    continue
                try:
                    data = json.loads(item["data"])
                except (TypeError, ValueError):
                    self.logger.debug("Ignoring unparseable channel message")
                    continue
                self._dispatch(data)
        except redis.RedisError as exc:
            self.logger.warning("Redis broadcast channel stopped reading", error=str(exc))

    def post(self, message: Dict[str, Any]) -> None:
        if self._client is None:
            raise RuntimeError("Redis broadcast channel not started")
        task = asyncio.get_running_loop().create_task(self._publish(json.dumps(message)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish(self, data: str) -> None:
        try:
            await self._client.publish(self.channel_name, data)
        except redis.RedisError as exc:
            self.logger.warning("Failed to publish broadcast", channel=self.channel_name, error=str(exc))

    def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            self._reader = None
        self._listeners.clear()

    async def stop(self) -> None:
        """Close the reader, the subscription and the connection."""
        self.close()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self.channel_name)
            await self._pubsub.aclose()
            self._pubsub = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self.logger.info("Redis broadcast channel stopped", channel=self.channel_name)
