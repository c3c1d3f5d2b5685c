"""
Visitor snapshot caching on top of a cache store

Two snapshot entries exist per visitor: ``visitor:{id}`` is the general
read-through copy refreshed by every mutation, ``identity:{id}`` is the
identification result the identity service short-circuits on. Lifecycle
mutations evict the identification entry so it never outlives a newer
write.
"""

from datetime import datetime
from typing import Optional

import structlog
from pydantic import ValidationError as SchemaError

from identity_matrix.core.cache import identity_key, last_seen_key, visitor_key
from identity_matrix.core.exceptions import TransientStoreError
from identity_matrix.schemas.visitor import Visitor

logger = structlog.get_logger(__name__)


class VisitorCache:
    """Reads never fail because of the cache; writes are best effort"""

    def __init__(self, cache, ttl_seconds: int = 3600):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def _read(self, key: str) -> Optional[Visitor]:
        try:
            payload = await self.cache.get(key)
        except TransientStoreError:
            logger.warning("Cache read failed, treating as miss", key=key)
            return None
        if payload is None:
            return None
        try:
            return Visitor.model_validate(payload)
        except SchemaError:
            logger.warning("Discarding unreadable cache entry", key=key)
            return None

    async def _write(self, key: str, visitor: Visitor):
        try:
            await self.cache.set(key, visitor.model_dump(mode="json"), self.ttl_seconds)
        except TransientStoreError:
            # Entry stays stale until its TTL runs out
            logger.warning("Cache refresh failed", key=key)

    async def _delete(self, key: str):
        try:
            await self.cache.delete(key)
        except TransientStoreError:
            logger.warning("Cache eviction failed", key=key)

    async def get(self, visitor_id: str) -> Optional[Visitor]:
        return await self._read(visitor_key(visitor_id))

    async def put(self, visitor: Visitor):
        await self._write(visitor_key(visitor.id), visitor)

    async def get_identified(self, visitor_id: str) -> Optional[Visitor]:
        return await self._read(identity_key(visitor_id))

    async def put_identified(self, visitor: Visitor):
        await self._write(identity_key(visitor.id), visitor)
        await self._write(visitor_key(visitor.id), visitor)

    async def evict_identified(self, visitor_id: str):
        await self._delete(identity_key(visitor_id))

    async def touch_last_seen(self, visitor_id: str, seen_at: datetime):
        try:
            await self.cache.set(last_seen_key(visitor_id), seen_at.isoformat(), self.ttl_seconds)
        except TransientStoreError:
            logger.warning("Cache lastSeen update failed", visitor_id=visitor_id)

    async def last_seen(self, visitor_id: str) -> Optional[datetime]:
        try:
            value = await self.cache.get(last_seen_key(visitor_id))
        except TransientStoreError:
            return None
        return datetime.fromisoformat(value) if value else None

    async def evict(self, visitor_id: str):
        for key in (visitor_key(visitor_id), identity_key(visitor_id), last_seen_key(visitor_id)):
            await self._delete(key)
