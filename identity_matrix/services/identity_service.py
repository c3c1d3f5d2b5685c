"""
Identity service: visitor identification and de-anonymization

Order of checks on identify: consent, format validation, rate limit, then
cache. Anything that fails before the store is touched leaves the visitor
unchanged. Enrichment is best effort and never fails an identification.
"""

import asyncio
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

import structlog

from identity_matrix.core.exceptions import ConsentRequired, ValidationError
from identity_matrix.core.retry import exponential_delay, retry_with_backoff
from identity_matrix.schemas.visitor import (
    IdentificationData,
    IdentificationOptions,
    Visitor,
    VisitorStatus,
    advance_status,
)

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r'[^\s@]+@[^\s@]+\.[^\s@]+')
PHONE_PATTERN = re.compile(r'\+?[\d\s-]{10,}')


def is_valid_email(email: str) -> bool:
    return EMAIL_PATTERN.fullmatch(email) is not None


def is_valid_phone(phone: str) -> bool:
    return PHONE_PATTERN.fullmatch(phone) is not None


class IdentityService:
    """Orchestrates consent checks, rate limiting, caching, storage and enrichment"""

    def __init__(self, store, visitor_cache, enrichment_service, rate_limiter,
                 rate_limits: Optional[Dict[str, int]] = None, max_retries: int = 3,
                 sleep=asyncio.sleep):
        self.store = store
        self.visitor_cache = visitor_cache
        self.enrichment_service = enrichment_service
        self.rate_limiter = rate_limiter
        self.rate_limits = rate_limits or {"high": 100, "normal": 50, "low": 20}
        self.max_retries = max_retries
        self.sleep = sleep
        logger.info("Identity service initialized", rate_limits=self.rate_limits)

    def get_rate_limit(self, priority: Optional[str]) -> int:
        return self.rate_limits.get(priority or "normal", self.rate_limits["normal"])

    @staticmethod
    def validate_identification_data(data: IdentificationData):
        if not data.gdpr_consent:
            raise ConsentRequired("GDPR consent is required for identification")
        if data.email and not is_valid_email(data.email):
            raise ValidationError("Invalid email format", {"field": "email"})
        if data.phone and not is_valid_phone(data.phone):
            raise ValidationError("Invalid phone format", {"field": "phone"})

    async def identify_visitor(
        self,
        visitor_id: str,
        identification_data: Union[IdentificationData, Dict[str, Any]],
        options: Optional[Union[IdentificationOptions, Dict[str, Any]]] = None,
    ) -> Visitor:
        data = IdentificationData.model_validate(identification_data)
        options = IdentificationOptions.model_validate(options or {})

        try:
            self.validate_identification_data(data)
            await self.rate_limiter.check_limit(visitor_id, self.get_rate_limit(options.priority))

            if not options.force_cache_refresh:
                cached = await self.visitor_cache.get_identified(visitor_id)
                if cached is not None:
                    # Returned as cached; the new identification data is not applied
                    logger.debug("Cache hit for visitor", visitor_id=visitor_id)
                    return cached

            visitor = await self.store.find_by_id(visitor_id)
            visitor = await self._apply_identification(visitor, data)
            await self.visitor_cache.put_identified(visitor)

            if not options.skip_enrichment and visitor.email:
                visitor = await self._enrich_with_retry(visitor)

            logger.debug("Visitor identified", visitor_id=visitor_id, status=visitor.status.value)
            return visitor

        except Exception as e:
            logger.error("Error identifying visitor", visitor_id=visitor_id, error=str(e))
            raise

    async def enrich_visitor(self, visitor_id: str) -> Visitor:
        """Enrich a stored visitor once and persist the result"""
        visitor = await self.visitor_cache.get(visitor_id)
        if visitor is None:
            visitor = await self.store.find_by_id(visitor_id)
        enriched = await self.enrichment_service.enrich_visitor_data(visitor)
        stored = await self._persist_enrichment(enriched)
        await self.visitor_cache.put(stored)
        await self.visitor_cache.evict_identified(visitor_id)
        return stored

    async def _apply_identification(self, visitor: Visitor, data: IdentificationData) -> Visitor:
        changes = {
            "email": data.email or visitor.email,
            "name": data.name or visitor.name,
            "phone": data.phone or visitor.phone,
            "status": advance_status(visitor.status, VisitorStatus.IDENTIFIED),
            "last_seen": datetime.now(timezone.utc),
        }
        return await self.store.update(visitor.id, changes)

    async def _enrich_with_retry(self, visitor: Visitor) -> Visitor:
        try:
            enriched = await retry_with_backoff(
                lambda: self.enrichment_service.enrich_visitor_data(visitor),
                attempts=self.max_retries,
                delay=exponential_delay,
                sleep=self.sleep,
                label=f"enrich:{visitor.id}",
            )
        except Exception as e:
            logger.warning("Enrichment failed, returning identified visitor",
                           visitor_id=visitor.id, error=str(e))
            return visitor
        stored = await self._persist_enrichment(enriched)
        await self.visitor_cache.put_identified(stored)
        return stored

    async def _persist_enrichment(self, enriched: Visitor) -> Visitor:
        return await self.store.update(enriched.id, {
            "enriched_data": enriched.enriched_data,
            "status": enriched.status,
            "last_enriched": enriched.last_enriched,
        })
