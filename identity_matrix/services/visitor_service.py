"""
Visitor lifecycle: creation, direct identification, activity intake and erasure
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

import structlog

from identity_matrix.core.exceptions import ValidationError
from identity_matrix.schemas.activity import Activity, ActivityCreate, ActivityType
from identity_matrix.schemas.visitor import (
    EnrichedData,
    Visitor,
    VisitorMetadata,
    VisitorStatus,
    advance_status,
)

logger = structlog.get_logger(__name__)

SENSITIVE_PARAM_MARKERS = ("password", "token", "auth", "key")


def anonymize_ip(ip_address: Optional[str]) -> Optional[str]:
    """Zero the last octet of an IPv4 address"""
    if not ip_address:
        return ip_address
    parts = ip_address.split(".")
    if len(parts) != 4:
        # Not dotted IPv4; drop it rather than store it unmasked
        return None
    return ".".join(parts[:3] + ["0"])


def filter_sensitive_params(params: Dict[str, str]) -> Dict[str, str]:
    return {
        key: value for key, value in params.items()
        if not any(marker in key.lower() for marker in SENSITIVE_PARAM_MARKERS)
    }


def anonymize_metadata(metadata: VisitorMetadata) -> VisitorMetadata:
    return metadata.model_copy(update={
        "ip_address": anonymize_ip(metadata.ip_address),
        "custom_params": filter_sensitive_params(metadata.custom_params),
    })


class VisitorService:
    """Owns visitor creation and the activity intake path"""

    def __init__(self, store, visitor_cache, activity_processor, retention_days: int = 365):
        self.store = store
        self.visitor_cache = visitor_cache
        self.activity_processor = activity_processor
        self.retention_days = retention_days

    async def create_visitor(self, company_id: str, metadata: VisitorMetadata,
                             gdpr_consent: bool) -> Visitor:
        logger.debug("Creating visitor", company_id=company_id, gdpr_consent=gdpr_consent)

        processed = metadata if gdpr_consent else anonymize_metadata(metadata)
        now = datetime.now(timezone.utc)
        visitor = Visitor(
            id=str(uuid.uuid4()),
            company_id=company_id,
            status=VisitorStatus.ANONYMOUS,
            metadata=processed,
            enriched_data=None,
            visits=1,
            total_time_spent=0,
            first_seen=now,
            last_seen=now,
            last_enriched=None,
            is_active=True,
            tags={},
            gdpr_consent=gdpr_consent,
            retention_date=now + timedelta(days=self.retention_days),
        )

        created = await self.store.create(visitor)
        await self.visitor_cache.put(created)
        logger.info("Visitor created", visitor_id=created.id, company_id=company_id)
        return created

    async def get_visitor(self, visitor_id: str) -> Visitor:
        """Cache-or-store read; raises NotFound when the visitor does not exist"""
        cached = await self.visitor_cache.get(visitor_id)
        if cached is not None:
            return cached
        visitor = await self.store.find_by_id(visitor_id)
        await self.visitor_cache.put(visitor)
        return visitor

    async def identify_visitor(self, visitor_id: str, email: str,
                               enriched_data: Optional[Union[EnrichedData, Dict[str, Any]]] = None) -> Visitor:
        """Record contact identity, and enrichment results the caller already holds"""
        visitor = await self.get_visitor(visitor_id)

        changes: Dict[str, Any] = {
            "email": email,
            "status": advance_status(visitor.status, VisitorStatus.IDENTIFIED),
        }
        if enriched_data is not None:
            changes["enriched_data"] = EnrichedData.model_validate(enriched_data)
            changes["status"] = VisitorStatus.ENRICHED
            changes["last_enriched"] = datetime.now(timezone.utc)

        updated = await self.store.update(visitor_id, changes)
        await self.visitor_cache.put(updated)
        await self.visitor_cache.evict_identified(visitor_id)
        logger.info("Visitor identified", visitor_id=visitor_id, status=updated.status.value)
        return updated

    async def track_activity(self, visitor_id: str,
                             activity: Union[ActivityCreate, Dict[str, Any]]) -> Activity:
        """Queue an activity for the next batch write; durability is eventual"""
        activity = ActivityCreate.model_validate(activity)
        try:
            activity_type = ActivityType(activity.type)
        except ValueError:
            raise ValidationError(f"Unknown activity type: {activity.type}",
                                  {"visitor_id": visitor_id})

        queued = Activity(
            id=str(uuid.uuid4()),
            visitor_id=visitor_id,
            type=activity_type,
            timestamp=activity.timestamp or datetime.now(timezone.utc),
            data=activity.data,
            gdpr_compliant=activity.gdpr_compliant,
        )
        self.activity_processor.push(queued)
        await self.visitor_cache.touch_last_seen(visitor_id, queued.timestamp)
        return queued

    async def erase_visitor(self, visitor_id: str) -> bool:
        """Remove every trace of a visitor: queue, store and cache"""
        dropped = self.activity_processor.discard(visitor_id)
        deleted = await self.store.delete(visitor_id)
        await self.visitor_cache.evict(visitor_id)
        logger.info("Visitor erased", visitor_id=visitor_id, deleted=deleted,
                    dropped_activities=dropped)
        return deleted
