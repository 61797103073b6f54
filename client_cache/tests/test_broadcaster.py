"""
Unit tests for the cross-tab broadcaster and its transports.
"""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from client_cache.broadcast import (
    BroadcastMessage,
    BulkCachePayload,
    CrossTabBroadcaster,
    MemoryChannelHub,
    RedisChannelTransport,
    StorageRelayTransport,
    SubjectsContext,
    TabIdentity,
    select_transport,
)
from client_cache.monitoring import PerformanceMonitor
from client_cache.storage import MemoryBackend, MemoryStore, NullStore, RedisStore


class TestTabIdentity:
    """Test cases for TabIdentity."""

    def test_id_is_stable_for_the_tab(self):
        """Test that the id is generated once and reused."""
        session = MemoryStore(MemoryBackend())

        first = TabIdentity.resolve(session)

        assert TabIdentity.resolve(session) == first
        assert session.get_item("tab_id") == first

    def test_tabs_get_distinct_ids(self):
        """Test that separate session stores get separate ids."""
        assert TabIdentity.resolve(MemoryStore()) != TabIdentity.resolve(MemoryStore())

    def test_works_without_storage(self):
        """Test that an unavailable session store still yields an id."""
        assert TabIdentity.resolve(NullStore())


class TestSelectTransport:
    """Test cases for transport selection."""

    def test_native_channel_preferred(self):
        """Test that a native channel wins over the relay."""
        native = MemoryChannelHub().open("c")

        assert select_transport(native, MemoryStore(), "relay") is native

    def test_relay_over_watchable_store(self):
        """Test the storage relay fallback."""
        transport = select_transport(None, MemoryStore(), "relay")

        assert isinstance(transport, StorageRelayTransport)
        assert transport.relay_key == "relay"

    def test_nothing_available(self):
        """Test that a non-watchable store gives no transport."""
        assert select_transport(None, RedisStore(MagicMock()), "relay") is None
        assert select_transport(None, None, "relay") is None


class TestCrossTabBroadcaster:
    """Test cases for CrossTabBroadcaster."""

    @pytest.fixture
    def hub(self):
        """In-memory channel hub."""
        return MemoryChannelHub()

    @pytest.fixture
    def tab_a(self, hub):
        """First tab's broadcaster."""
        return CrossTabBroadcaster(hub.open("sync"), "tab-a", PerformanceMonitor())

    @pytest.fixture
    def tab_b(self, hub):
        """Second tab's broadcaster."""
        return CrossTabBroadcaster(hub.open("sync"), "tab-b", PerformanceMonitor())

    @pytest.fixture
    def payload(self):
        """Bulk payload on the wire."""
        return BulkCachePayload(
            profile={"email": "a@example.edu"},
            dynamic={"unread": 3},
            subjects=[{"id": "SUB100"}],
            subjects_context=SubjectsContext(branch="CSE", year=2024, semester=1),
        ).to_wire()

    def test_sibling_receives_and_sender_does_not(self, tab_a, tab_b, payload):
        """Test delivery to the other tab only."""
        received_a, received_b = [], []
        tab_a.subscribe(received_a.append)
        tab_b.subscribe(received_b.append)

        assert tab_a.broadcast("a@example.edu", payload) is True

        assert received_a == []
        assert len(received_b) == 1
        message = received_b[0]
        assert message.payload == payload
        assert message.owner_key == "a@example.edu"
        assert message.sender_id == "tab-a"
        assert message.sender_id != tab_b.tab_id

    def test_wire_format_is_camel_case(self, payload):
        """Test message and payload aliases."""
        message = BroadcastMessage(
            type="bulk-cache-update",
            sender_id="tab-a",
            owner_key="a@example.edu",
            payload=payload,
            timestamp=1.0,
        )
        wire = message.to_wire()

        assert set(wire) == {"type", "senderId", "ownerKey", "payload", "timestamp"}
        assert wire["payload"]["subjectsContext"] == {"branch": "CSE", "year": 2024, "semester": 1}
        assert "static" not in wire["payload"]

    def test_own_echo_is_dropped(self, tab_a, payload):
        """Test loop prevention when a transport echoes our own post."""
        echo = {
            "type": "bulk-cache-update",
            "senderId": "tab-a",
            "ownerKey": None,
            "payload": payload,
            "timestamp": 1.0,
        }

        assert tab_a.parse(echo) is None
        assert tab_a.parse(dict(echo, senderId="tab-b")).sender_id == "tab-b"

    @pytest.mark.parametrize("raw", [
        "not a dict",
        {"senderId": "x", "payload": {}, "timestamp": 1.0},
        {"type": "other", "senderId": "x", "payload": {}, "timestamp": 1.0},
        {"type": "bulk-cache-update", "senderId": 7, "payload": {}, "timestamp": 1.0},
        {"type": "bulk-cache-update", "senderId": "x", "payload": [], "timestamp": 1.0},
    ])
    def test_malformed_messages_are_discarded(self, tab_b, raw):
        """Test that anything not matching the envelope is ignored."""
        assert tab_b.parse(raw) is None

    def test_unsubscribe(self, tab_a, tab_b, payload):
        """Test that the returned callable stops delivery."""
        received = []
        unsubscribe = tab_b.subscribe(received.append)

        unsubscribe()
        tab_a.broadcast("a@example.edu", payload)

        assert received == []

    def test_no_transport(self, payload):
        """Test an isolated tab."""
        broadcaster = CrossTabBroadcaster(None, "tab-a")

        assert broadcaster.broadcast("a@example.edu", payload) is False
        broadcaster.subscribe(MagicMock())()

    def test_closed_channel_is_reported(self, hub, payload):
        """Test that a post failure becomes a False return."""
        channel = hub.open("sync")
        broadcaster = CrossTabBroadcaster(channel, "tab-a")
        channel.close()

        assert broadcaster.broadcast("a@example.edu", payload) is False

    def test_broadcasts_are_counted(self, tab_a, tab_b, payload):
        """Test sent/received accounting."""
        tab_b.subscribe(lambda message: None)

        tab_a.broadcast("a@example.edu", payload)

        assert tab_a.monitor.metrics.sample("broadcast_messages_total", direction="sent") == 1
        assert tab_b.monitor.metrics.sample("broadcast_messages_total", direction="received") == 1

    def test_listener_error_is_contained(self, tab_a, tab_b, payload):
        """Test that one failing handler does not block another."""
        received = []
        tab_b.subscribe(MagicMock(side_effect=RuntimeError("handler bug")))
        tab_b.subscribe(received.append)

        tab_a.broadcast("a@example.edu", payload)

        assert len(received) == 1


class TestStorageRelayTransport:
    """Test cases for the storage relay fallback."""

    def test_relay_between_views(self):
        """Test delivery through storage events with the relay key removed afterwards."""
        backend = MemoryBackend()
        tab_a = CrossTabBroadcaster(
            select_transport(None, MemoryStore(backend, "a"), "relay"), "tab-a"
        )
        tab_b = CrossTabBroadcaster(
            select_transport(None, MemoryStore(backend, "b"), "relay"), "tab-b"
        )
        received_a, received_b = [], []
        tab_a.subscribe(received_a.append)
        tab_b.subscribe(received_b.append)

        tab_a.broadcast("a@example.edu", {"dynamic": {"unread": 1}})

        assert received_a == []
        assert [message.payload for message in received_b] == [{"dynamic": {"unread": 1}}]
        assert backend.get("relay") is None

    def test_ignores_other_keys_and_garbage(self):
        """Test that unrelated storage events are not relayed."""
        backend = MemoryBackend()
        relay = StorageRelayTransport(MemoryStore(backend, "b"), "relay")
        received = []
        relay.add_listener(received.append)
        writer = MemoryStore(backend, "a")

        writer.set_item("profile_cache", "{}")
        writer.set_item("relay", "{not json")

        assert received == []

    def test_close_stops_watching(self):
        """Test that a closed relay hears nothing."""
        backend = MemoryBackend()
        relay = StorageRelayTransport(MemoryStore(backend, "b"), "relay")
        received = []
        relay.add_listener(received.append)

        relay.close()
        MemoryStore(backend, "a").set_item("relay", json.dumps({"x": 1}))

        assert received == []


class TestRedisChannelTransport:
    """Test cases for RedisChannelTransport."""

    @pytest.fixture
    def mock_client(self):
        """Mock asyncio redis client."""
        client = MagicMock()
        client.publish = AsyncMock()
        client.aclose = AsyncMock()
        return client

    def test_post_requires_start(self):
        """Test that posting before connecting is an error."""
        transport = RedisChannelTransport("redis://localhost:6379/0", "sync")

        with pytest.raises(RuntimeError):
            transport.post({"type": "bulk-cache-update"})

    @pytest.mark.asyncio
    async def test_post_publishes_json(self, mock_client):
        """Test that a post is published on the channel."""
        transport = RedisChannelTransport("redis://localhost:6379/0", "sync", client=mock_client)
        message = {"type": "bulk-cache-update", "senderId": "tab-a"}

        transport.post(message)
        await transport.stop()

        mock_client.publish.assert_awaited_once_with("sync", json.dumps(message))
        mock_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reader_dispatches_channel_messages(self, mock_client):
        """Test that subscribed messages reach listeners and garbage is skipped."""
        message = {"type": "bulk-cache-update", "senderId": "tab-b"}
        items = [
            {"type": "subscribe", "data": 1},
            {"type": "message", "data": "{not json"},
            {"type": "message", "data": json.dumps(message)},
        ]

        async def listen():
            for item in items:
                yield item

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        pubsub.listen = listen
        mock_client.pubsub.return_value = pubsub

        transport = RedisChannelTransport("redis://localhost:6379/0", "sync", client=mock_client)
        received = []
        transport.add_listener(received.append)

        await transport.start()
        for _ in range(5):
            await asyncio.sleep(0)
        await transport.stop()

        pubsub.subscribe.assert_awaited_once_with("sync")
        assert received == [message]
        pubsub.unsubscribe.assert_awaited_once_with("sync")
