"""
SQLAlchemy-backed visitor store.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone

import pytest

from identity_matrix.core.database import init_db, is_single_connection, make_engine, make_session_factory
from identity_matrix.core.exceptions import NotFound
from identity_matrix.schemas.activity import Activity, ActivityType
from identity_matrix.schemas.visitor import EnrichedData, Visitor, VisitorMetadata, VisitorStatus
from identity_matrix.services.visitor_store import VisitorStore


@pytest.fixture
def store():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield VisitorStore(make_session_factory(engine), serialize=is_single_connection(engine))
    engine.dispose()


def make_visitor(visitor_id="v-1", retention_date=None, **overrides):
    now = datetime.now(timezone.utc)
    return Visitor(
        id=visitor_id,
        company_id="c-1",
        first_seen=now,
        last_seen=now,
        retention_date=retention_date,
        metadata=VisitorMetadata(ip_address="203.0.113.0", custom_params={"utm": "x"}),
        **overrides,
    )


def make_activity(activity_id, visitor_id="v-1", minute=0):
    return Activity(
        id=activity_id,
        visitor_id=visitor_id,
        type=ActivityType.PAGE_VIEW,
        timestamp=datetime(2026, 1, 1, 12, minute, tzinfo=timezone.utc),
        data={"url": f"/page/{activity_id}"},
    )


class TestVisitorStore:
    """CRUD and activity append"""

    def test_create_and_find(self, store):
        asyncio.run(store.create(make_visitor()))
        found = asyncio.run(store.find_by_id("v-1"))

        assert found.company_id == "c-1"
        assert found.status == VisitorStatus.ANONYMOUS
        assert found.metadata.ip_address == "203.0.113.0"
        assert found.metadata.custom_params == {"utm": "x"}
        assert found.enriched_data is None

    def test_find_missing_raises(self, store):
        with pytest.raises(NotFound):
            asyncio.run(store.find_by_id("missing"))

    def test_update_applies_changes(self, store):
        asyncio.run(store.create(make_visitor()))
        updated = asyncio.run(store.update("v-1", {
            "email": "a@b.com",
            "status": VisitorStatus.ENRICHED,
            "enriched_data": EnrichedData(company="Acme"),
        }))

        assert updated.email == "a@b.com"
        assert updated.status == VisitorStatus.ENRICHED
        assert updated.enriched_data.company == "Acme"
        assert asyncio.run(store.find_by_id("v-1")).enriched_data.company == "Acme"

    def test_update_missing_raises(self, store):
        with pytest.raises(NotFound):
            asyncio.run(store.update("missing", {"email": "a@b.com"}))

    def test_update_activities_is_idempotent(self, store):
        asyncio.run(store.create(make_visitor()))
        batch = [make_activity("a1", minute=1), make_activity("a2", minute=2)]

        asyncio.run(store.update_activities("v-1", batch))
        asyncio.run(store.update_activities("v-1", batch + [make_activity("a3", minute=3)]))

        stored = asyncio.run(store.list_activities("v-1"))
        assert [a.id for a in stored] == ["a1", "a2", "a3"]
        assert stored[0].type == ActivityType.PAGE_VIEW
        assert stored[0].data == {"url": "/page/a1"}

    def test_update_activities_for_missing_visitor(self, store):
        with pytest.raises(NotFound):
            asyncio.run(store.update_activities("missing", [make_activity("a1", visitor_id="missing")]))

    def test_delete_removes_visitor_and_activities(self, store):
        asyncio.run(store.create(make_visitor()))
        asyncio.run(store.update_activities("v-1", [make_activity("a1")]))

        assert asyncio.run(store.delete("v-1")) is True
        assert asyncio.run(store.delete("v-1")) is False
        assert asyncio.run(store.list_activities("v-1")) == []
        with pytest.raises(NotFound):
            asyncio.run(store.find_by_id("v-1"))

    def test_delete_expired(self, store):
        now = datetime.now(timezone.utc)
        asyncio.run(store.create(make_visitor("old", retention_date=now - timedelta(days=1))))
        asyncio.run(store.create(make_visitor("fresh", retention_date=now + timedelta(days=30))))
        asyncio.run(store.update_activities("old", [make_activity("a1", visitor_id="old")]))

        assert asyncio.run(store.delete_expired(now)) == ["old"]
        assert asyncio.run(store.find_by_id("fresh")).id == "fresh"
        assert asyncio.run(store.list_activities("old")) == []


class SlowSession:
    """Session double whose commit blocks like a slow database round trip"""

    def __init__(self, delay):
        self.delay = delay

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def get(self, model, key):
        return object()

    def merge(self, record):
        return record

    def commit(self):
        time.sleep(self.delay)


class TestSessionOffloading:
    """Session work runs off the event loop"""

    def test_concurrent_writes_overlap(self):
        store = VisitorStore(lambda: SlowSession(0.2))

        async def scenario():
            started = time.monotonic()
            await asyncio.gather(
                store.update_activities("v-1", [make_activity("a1")]),
                store.update_activities("v-2", [make_activity("a2", visitor_id="v-2")]),
            )
            return time.monotonic() - started

        assert asyncio.run(scenario()) < 0.35

    def test_loop_keeps_running_during_a_write(self):
        store = VisitorStore(lambda: SlowSession(0.2))
        ticks = []

        async def ticker():
            while True:
                ticks.append(time.monotonic())
                await asyncio.sleep(0.01)

        async def scenario():
            task = asyncio.create_task(ticker())
            await asyncio.sleep(0)
            await store.update_activities("v-1", [make_activity("a1")])
            task.cancel()

        asyncio.run(scenario())
        assert len(ticks) >= 5

    def test_shared_connection_writes_are_serialized(self):
        store = VisitorStore(lambda: SlowSession(0.1), serialize=True)

        async def scenario():
            started = time.monotonic()
            await asyncio.gather(
                store.update_activities("v-1", [make_activity("a1")]),
                store.update_activities("v-2", [make_activity("a2", visitor_id="v-2")]),
            )
            return time.monotonic() - started

        assert asyncio.run(scenario()) >= 0.2
