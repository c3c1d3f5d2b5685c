"""
Fixed-window rate limiter
"""

import threading
import time
from typing import Callable, Dict, Tuple

import structlog
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from identity_matrix.core.exceptions import RateLimited, TransientStoreError

logger = structlog.get_logger(__name__)

RATE_LIMIT_PREFIX = "rate_limit:"


class InMemoryCounterBackend:
    """Increment-with-expiry counters held in process memory"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: Dict[str, Tuple[int, float]] = {}

    async def incr_with_expiry(self, key: str, window_seconds: int) -> int:
        with self._lock:
            now = self._clock()
            count, expires_at = self._counters.get(key, (0, 0.0))
            if now >= expires_at:
                # Window starts at the first hit, like INCR followed by EXPIRE
                count, expires_at = 0, now + window_seconds
            count += 1
            self._counters[key] = (count, expires_at)
            return count

    def reset(self):
        with self._lock:
            self._counters.clear()


class RedisCounterBackend:
    """Increment-with-expiry counters in Redis"""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterBackend":
        return cls(aioredis.Redis.from_url(url, decode_responses=True))

    async def incr_with_expiry(self, key: str, window_seconds: int) -> int:
        try:
            count = await self.client.incr(key)
            if count == 1:
                await self.client.expire(key, window_seconds)
            return count
        except RedisError as e:
            logger.error("Rate limit counter failed", key=key, error=str(e))
            raise TransientStoreError("Rate limit backend unavailable", {"key": key}) from e

    def reset(self):
        pass


class RateLimiter:
    """Per-key quota over a fixed window; only the threshold varies per call"""

    def __init__(self, backend, window_seconds: int = 60):
        self.backend = backend
        self.window_seconds = window_seconds

    async def check_limit(self, key: str, max_per_window: int) -> int:
        count = await self.backend.incr_with_expiry(f"{RATE_LIMIT_PREFIX}{key}", self.window_seconds)
        if count > max_per_window:
            logger.warning("Rate limit exceeded", key=key, count=count, limit=max_per_window)
            raise RateLimited(
                f"Rate limit exceeded for {key}",
                {"limit": max_per_window, "window_seconds": self.window_seconds},
            )
        return count

    def reset(self):
        self.backend.reset()
