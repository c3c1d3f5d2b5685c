"""
Durable visitor store backed by SQLAlchemy

Sessions are synchronous, so each operation runs its session body on the
loop's default executor. When the engine holds a single shared connection
(in-memory SQLite) the bodies are serialized so two sessions never
interleave transactions on it.
"""

import asyncio
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, TypeVar

import structlog
from pydantic import BaseModel

from identity_matrix.core.exceptions import NotFound
from identity_matrix.models.activity import ActivityRecord
from identity_matrix.models.visitor import VisitorRecord
from identity_matrix.schemas.activity import Activity
from identity_matrix.schemas.visitor import Visitor

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Domain field name -> column attribute, where they differ
_COLUMN_FOR_FIELD = {"metadata": "visitor_metadata"}


def _to_column_value(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    return value


def _to_domain(record: VisitorRecord) -> Visitor:
    return Visitor(
        id=record.id,
        company_id=record.company_id,
        email=record.email,
        name=record.name,
        phone=record.phone,
        status=record.status,
        metadata=record.visitor_metadata or {},
        enriched_data=record.enriched_data,
        visits=record.visits,
        total_time_spent=record.total_time_spent,
        first_seen=record.first_seen,
        last_seen=record.last_seen,
        last_enriched=record.last_enriched,
        is_active=record.is_active,
        tags=record.tags or {},
        gdpr_consent=record.gdpr_consent,
        retention_date=record.retention_date,
    )


class VisitorStore:
    """CRUD and batch activity append on visitor records"""

    def __init__(self, session_factory, serialize: bool = False):
        self.session_factory = session_factory
        self._lock = threading.Lock() if serialize else None

    async def _run(self, work: Callable[[], T]) -> T:
        def call():
            if self._lock is None:
                return work()
            with self._lock:
                return work()

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, call)

    async def find_by_id(self, visitor_id: str) -> Visitor:
        def work():
            with self.session_factory() as db:
                record = db.get(VisitorRecord, visitor_id)
                if record is None:
                    raise NotFound(f"Visitor {visitor_id} not found")
                return _to_domain(record)

        return await self._run(work)

    async def create(self, visitor: Visitor) -> Visitor:
        def work():
            with self.session_factory() as db:
                record = VisitorRecord(id=visitor.id)
                for field, value in visitor:
                    setattr(record, _COLUMN_FOR_FIELD.get(field, field), _to_column_value(value))
                db.add(record)
                db.commit()
                db.refresh(record)
                return _to_domain(record)

        created = await self._run(work)
        logger.debug("Visitor stored", visitor_id=visitor.id)
        return created

    async def update(self, visitor_id: str, changes: Dict[str, Any]) -> Visitor:
        def work():
            with self.session_factory() as db:
                record = db.get(VisitorRecord, visitor_id)
                if record is None:
                    raise NotFound(f"Visitor {visitor_id} not found")
                for field, value in changes.items():
                    if field == "id":
                        continue
                    setattr(record, _COLUMN_FOR_FIELD.get(field, field), _to_column_value(value))
                db.commit()
                db.refresh(record)
                return _to_domain(record)

        return await self._run(work)

    async def update_activities(self, visitor_id: str, activities: List[Activity]) -> int:
        """Append activities; re-sending an already stored activity is a no-op"""
        def work():
            with self.session_factory() as db:
                if db.get(VisitorRecord, visitor_id) is None:
                    raise NotFound(f"Visitor {visitor_id} not found")
                for activity in activities:
                    db.merge(ActivityRecord(
                        id=activity.id,
                        visitor_id=visitor_id,
                        type=activity.type.value,
                        timestamp=activity.timestamp,
                        data=activity.data,
                        gdpr_compliant=activity.gdpr_compliant,
                    ))
                db.commit()
                return len(activities)

        return await self._run(work)

    async def list_activities(self, visitor_id: str) -> List[Activity]:
        def work():
            with self.session_factory() as db:
                records = (
                    db.query(ActivityRecord)
                    .filter(ActivityRecord.visitor_id == visitor_id)
                    .order_by(ActivityRecord.timestamp)
                    .all()
                )
                return [
                    Activity(
                        id=r.id,
                        visitor_id=r.visitor_id,
                        type=r.type,
                        timestamp=r.timestamp,
                        data=r.data or {},
                        gdpr_compliant=r.gdpr_compliant,
                    )
                    for r in records
                ]

        return await self._run(work)

    async def delete(self, visitor_id: str) -> bool:
        """Remove a visitor and all of its activities"""
        def work():
            with self.session_factory() as db:
                db.query(ActivityRecord).filter(ActivityRecord.visitor_id == visitor_id).delete()
                deleted = db.query(VisitorRecord).filter(VisitorRecord.id == visitor_id).delete()
                db.commit()
                return deleted > 0

        return await self._run(work)

    async def delete_expired(self, now: datetime) -> List[str]:
        """Remove visitors past their retention date, returning their ids"""
        def work():
            with self.session_factory() as db:
                expired = [
                    row.id for row in
                    db.query(VisitorRecord.id).filter(VisitorRecord.retention_date <= now).all()
                ]
                if expired:
                    db.query(ActivityRecord).filter(ActivityRecord.visitor_id.in_(expired)).delete(
                        synchronize_session=False
                    )
                    db.query(VisitorRecord).filter(VisitorRecord.id.in_(expired)).delete(
                        synchronize_session=False
                    )
                    db.commit()
                return expired

        expired = await self._run(work)
        if expired:
            logger.info("Expired visitors purged", count=len(expired))
        return expired
