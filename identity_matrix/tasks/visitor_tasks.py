"""
Visitor background tasks

Every task in a worker process runs its coroutine on the same event loop.
The container's Redis clients pool connections bound to the loop they were
first used on, so a loop per task would strand them.
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Optional, TypeVar

import structlog

from identity_matrix.core.celery_app import celery_app
from identity_matrix.core.container import get_container
from identity_matrix.core.exceptions import AllProvidersFailed, NotFound, ValidationError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_worker_loop: Optional[asyncio.AbstractEventLoop] = None


def get_worker_loop() -> asyncio.AbstractEventLoop:
    """Return the worker's event loop, creating it on first use after fork"""
    global _worker_loop
    if _worker_loop is None or _worker_loop.is_closed():
        _worker_loop = asyncio.new_event_loop()
    return _worker_loop


def run_async(coro: Awaitable[T]) -> T:
    return get_worker_loop().run_until_complete(coro)


@celery_app.task(bind=True)
def enrich_visitor(self, visitor_id: str):
    """Enrich a stored visitor out of band"""
    try:
        logger.info("Starting visitor enrichment", visitor_id=visitor_id)

        container = get_container()
        visitor = run_async(container.identity_service.enrich_visitor(visitor_id))

        logger.info("Visitor enrichment completed", visitor_id=visitor_id,
                    status=visitor.status.value)
        return {"success": True, "visitor_id": visitor_id, "status": visitor.status.value}

    except (NotFound, ValidationError) as e:
        # Retrying cannot fix a missing visitor or a visitor without email
        logger.warning("Visitor enrichment skipped", visitor_id=visitor_id, error=str(e))
        return {"success": False, "visitor_id": visitor_id, "error": str(e)}

    except AllProvidersFailed as e:
        logger.error("Visitor enrichment failed", visitor_id=visitor_id, error=str(e))
        raise self.retry(exc=e, countdown=60, max_retries=3)


@celery_app.task
def purge_expired_visitors():
    """Erase visitors whose retention date has passed"""
    container = get_container()

    async def purge():
        # Activities still queued in the web process for these visitors are
        # dropped there when their write comes back NotFound
        expired = await container.store.delete_expired(datetime.now(timezone.utc))
        for visitor_id in expired:
            await container.visitor_cache.evict(visitor_id)
        return expired

    expired = run_async(purge())
    logger.info("Retention purge completed", purged=len(expired))
    return {"purged": len(expired)}
