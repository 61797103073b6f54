"""
Cross-tab broadcast.
"""

from .broadcaster import CrossTabBroadcaster, MessageHandler, TabIdentity, select_transport
from .messages import BULK_CACHE_UPDATE, BroadcastMessage, BulkCachePayload, SubjectsContext
from .transports import (
    BroadcastTransport,
    MemoryChannel,
    MemoryChannelHub,
    RedisChannelTransport,
    StorageRelayTransport,
)

__all__ = [
    "CrossTabBroadcaster",
    "MessageHandler",
    "TabIdentity",
    "select_transport",
    "BroadcastMessage",
    "BulkCachePayload",
    "SubjectsContext",
    "BULK_CACHE_UPDATE",
    "BroadcastTransport",
    "MemoryChannel",
    "MemoryChannelHub",
    "RedisChannelTransport",
    "StorageRelayTransport",
]
