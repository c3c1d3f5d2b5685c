"""
Change broadcast for visitor updates
"""

import json
from typing import Any, Awaitable, Callable, Dict, List

import structlog
from redis import asyncio as aioredis
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__)

BROADCAST_CHANNEL = "visitor_updates"

Listener = Callable[[str, Dict[str, Any]], Awaitable[None]]


class LocalBroadcaster:
    """Delivers events to in-process listeners"""

    def __init__(self):
        self.listeners: List[Listener] = []

    def subscribe(self, listener: Listener):
        self.listeners.append(listener)

    async def publish(self, event: str, payload: Dict[str, Any]) -> None:
        for listener in list(self.listeners):
            try:
                await listener(event, payload)
            except Exception as e:
                logger.error("Broadcast listener failed", event_name=event, error=str(e))


class RedisBroadcaster:
    """Publishes events on a Redis pub/sub channel"""

    def __init__(self, client: aioredis.Redis, channel: str = BROADCAST_CHANNEL):
        self.client = client
        self.channel = channel

    @classmethod
    def from_url(cls, url: str) -> "RedisBroadcaster":
        return cls(aioredis.Redis.from_url(url, decode_responses=True))

    async def publish(self, event: str, payload: Dict[str, Any]) -> None:
        try:
            await self.client.publish(self.channel, json.dumps({"event": event, **payload}))
        except RedisError as e:
            # Broadcast is advisory; the data is already durable
            logger.warning("Broadcast publish failed", event_name=event, error=str(e))
