"""
Redis-backed key/value substrate.

The persistent store shared by every tab of the same origin when the host
has a Redis instance. Calls are synchronous: cache reads and writes never
suspend the event loop's caller.
"""

import re
from typing import Any, List, Optional

import redis

from shared.errors import QuotaExceededError, StorageUnavailableError
from shared.logging import get_logger

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


class RedisStore:
    """KeyValueStore over a redis-py client, scoped to a key namespace."""

    def __init__(self, client: Any, namespace: str = "client_cache"):
        self.client = client
        self.namespace = namespace
        self.logger = get_logger("client_cache.storage.redis")

    @classmethod
    def from_url(cls, redis_url: str, namespace: str = "client_cache") -> "RedisStore":
        """Build a store with a decoding client for the given URL."""
        client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        return cls(client, namespace)

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _translate(self, exc: redis.RedisError, key: Optional[str]) -> Exception:
        if isinstance(exc, redis.ResponseError) and str(exc).startswith("OOM"):
            return QuotaExceededError(str(exc), details={"key": key})
        return StorageUnavailableError(str(exc), details={"key": key})

    def get_item(self, key: str) -> Optional[str]:
        try:
            return self.client.get(self._full_key(key))
        except redis.RedisError as exc:
            raise self._translate(exc, key) from exc

    def set_item(self, key: str, value: str) -> None:
        try:
            self.client.set(self._full_key(key), value)
        except redis.RedisError as exc:
            raise self._translate(exc, key) from exc

    def remove_item(self, key: str) -> None:
        try:
            self.client.delete(self._full_key(key))
        except redis.RedisError as exc:
            raise self._translate(exc, key) from exc

    def keys(self, prefix: str = "") -> List[str]:
        pattern = self._full_key(_GLOB_SPECIAL.sub(r"\\\1", prefix)) + "*"
        offset = len(self.namespace) + 1
        try:
            return [key[offset:] for key in self.client.scan_iter(match=pattern)]
        except redis.RedisError as exc:
            raise self._translate(exc, None) from exc

    def close(self) -> None:
        """Release the client's connection pool."""
        self.client.close()
