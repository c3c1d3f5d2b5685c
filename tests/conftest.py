"""
Shared fixtures: in-memory SQLite store, in-memory cache, scripted providers.
"""

import pytest

from identity_matrix.core.cache import InMemoryCache
from identity_matrix.core.config import Settings
from identity_matrix.core.container import build_container, set_container
from identity_matrix.core.exceptions import TransientStoreError
from identity_matrix.core.rate_limiter import InMemoryCounterBackend
from identity_matrix.services.broadcaster import LocalBroadcaster


class SleepRecorder:
    """Stands in for asyncio.sleep and remembers requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(float(seconds))


class FakeProvider:
    """Provider double with scripted failures."""

    def __init__(self, name, response=None, priority=1, kind="generic", failures=0, always_fail=False):
        self.name = name
        self.kind = kind
        self.priority = priority
        self.response = response or {}
        self.failures = failures
        self.always_fail = always_fail
        self.calls = []

    async def fetch(self, email):
        self.calls.append(email)
        if self.always_fail or len(self.calls) <= self.failures:
            raise ConnectionError(f"{self.name} unavailable")
        return dict(self.response)


class FailingCache:
    """Cache backend that is always down."""

    async def get(self, key):
        raise TransientStoreError("down")

    async def set(self, key, value, ttl_seconds):
        raise TransientStoreError("down")

    async def delete(self, key):
        raise TransientStoreError("down")


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_settings(**overrides):
    values = {
        "DATABASE_URL": "sqlite://",
        "CACHE_BACKEND": "memory",
        "RATE_LIMIT_BACKEND": "memory",
        "BROADCAST_BACKEND": "local",
        "ACTIVITY_FLUSH_INTERVAL": 0.01,
        "ENRICHMENT_PROVIDERS": [],
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def providers():
    """Providers for the container; tests replace the list contents as needed."""
    return [FakeProvider("acme-data", {"company_name": "Acme", "job_title": "CTO"})]


@pytest.fixture
def container(providers, sleep_recorder):
    services = build_container(
        make_settings(),
        cache=InMemoryCache(),
        counter_backend=InMemoryCounterBackend(),
        providers=providers,
        broadcaster=LocalBroadcaster(),
        sleep=sleep_recorder,
    )
    set_container(services)
    yield services
    set_container(None)
