"""
Stale-while-revalidate resources.
"""

from .bindings import CacheBinding, ResourceBinding, SessionResourceBinding
from .coordinator import (
    CachedResource,
    Fetcher,
    ResourceSnapshot,
    ResourceState,
    StaleWhileRevalidateCoordinator,
)

__all__ = [
    "CachedResource",
    "Fetcher",
    "ResourceSnapshot",
    "ResourceState",
    "StaleWhileRevalidateCoordinator",
    "ResourceBinding",
    "SessionResourceBinding",
    "CacheBinding",
]
