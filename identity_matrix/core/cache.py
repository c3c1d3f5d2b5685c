"""
Cache store backends

Values are JSON-compatible structures. Both backends raise
TransientStoreError when the backend itself misbehaves, so callers can
decide between treating a failure as a miss or surfacing it.
"""

import json
import time
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from identity_matrix.core.exceptions import TransientStoreError

logger = structlog.get_logger(__name__)


def visitor_key(visitor_id: str) -> str:
    return f"visitor:{visitor_id}"


def last_seen_key(visitor_id: str) -> str:
    return f"visitor:{visitor_id}:lastSeen"


def identity_key(visitor_id: str) -> str:
    return f"identity:{visitor_id}"


class InMemoryCache:
    """Process-local cache with per-entry expiry"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return json.loads(payload)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        # Stored serialized so callers never share mutable state with the cache
        self._entries[key] = (json.dumps(value), self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)


class RedisCache:
    """Redis-backed cache using SETEX for TTL"""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(aioredis.Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[Any]:
        try:
            payload = await self.client.get(key)
        except RedisError as e:
            logger.error("Cache get failed", key=key, error=str(e))
            raise TransientStoreError("Cache unavailable", {"key": key}) from e
        if payload is None:
            return None
        return json.loads(payload)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self.client.setex(key, ttl_seconds, json.dumps(value))
        except RedisError as e:
            logger.error("Cache set failed", key=key, error=str(e))
            raise TransientStoreError("Cache unavailable", {"key": key}) from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            logger.error("Cache delete failed", key=key, error=str(e))
            raise TransientStoreError("Cache unavailable", {"key": key}) from e
