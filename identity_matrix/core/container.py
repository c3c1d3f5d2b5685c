"""
Process-wide service wiring
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import structlog

from identity_matrix.core.cache import InMemoryCache, RedisCache
from identity_matrix.core.config import Settings, settings as default_settings
from identity_matrix.core.database import init_db, is_single_connection, make_engine, make_session_factory
from identity_matrix.core.rate_limiter import InMemoryCounterBackend, RateLimiter, RedisCounterBackend
from identity_matrix.services.activity_processor import ActivityBatchProcessor
from identity_matrix.services.broadcaster import LocalBroadcaster, RedisBroadcaster
from identity_matrix.services.enrichment_service import EnrichmentService
from identity_matrix.services.identity_service import IdentityService
from identity_matrix.services.provider_client import ProviderClient
from identity_matrix.services.visitor_cache import VisitorCache
from identity_matrix.services.visitor_service import VisitorService
from identity_matrix.services.visitor_store import VisitorStore

logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    engine: Any
    store: VisitorStore
    cache: Any
    visitor_cache: VisitorCache
    rate_limiter: RateLimiter
    broadcaster: Any
    enrichment_service: EnrichmentService
    identity_service: IdentityService
    activity_processor: ActivityBatchProcessor
    visitor_service: VisitorService


def build_container(
    settings: Settings,
    *,
    cache=None,
    counter_backend=None,
    providers: Optional[Sequence] = None,
    broadcaster=None,
    sleep=asyncio.sleep,
) -> ServiceContainer:
    """Build every service once; keyword overrides replace the settings-derived pieces"""
    engine = make_engine(settings.DATABASE_URL)
    init_db(engine)
    store = VisitorStore(make_session_factory(engine), serialize=is_single_connection(engine))

    if cache is None:
        cache = RedisCache.from_url(settings.REDIS_URL) if settings.CACHE_BACKEND == "redis" else InMemoryCache()
    if counter_backend is None:
        counter_backend = (RedisCounterBackend.from_url(settings.REDIS_URL)
                           if settings.RATE_LIMIT_BACKEND == "redis" else InMemoryCounterBackend())
    if broadcaster is None:
        broadcaster = RedisBroadcaster.from_url(settings.REDIS_URL) if settings.BROADCAST_BACKEND == "redis" else LocalBroadcaster()
    if providers is None:
        providers = [ProviderClient(config) for config in settings.ENRICHMENT_PROVIDERS]

    visitor_cache = VisitorCache(cache, settings.VISITOR_CACHE_TTL)
    rate_limiter = RateLimiter(counter_backend, settings.RATE_LIMIT_WINDOW_SECONDS)
    enrichment_service = EnrichmentService(
        providers,
        max_retries=settings.PROVIDER_MAX_RETRIES,
        retry_delay=settings.PROVIDER_RETRY_DELAY,
        sleep=sleep,
    )
    identity_service = IdentityService(
        store,
        visitor_cache,
        enrichment_service,
        rate_limiter,
        rate_limits={
            "high": settings.RATE_LIMIT_HIGH,
            "normal": settings.RATE_LIMIT_NORMAL,
            "low": settings.RATE_LIMIT_LOW,
        },
        max_retries=settings.IDENTIFY_MAX_RETRIES,
        sleep=sleep,
    )
    activity_processor = ActivityBatchProcessor(
        store,
        broadcaster,
        batch_size=settings.VISITOR_BATCH_SIZE,
        flush_interval=settings.ACTIVITY_FLUSH_INTERVAL,
    )
    visitor_service = VisitorService(
        store,
        visitor_cache,
        activity_processor,
        retention_days=settings.DATA_RETENTION_DAYS,
    )

    logger.info("Services initialized", cache_backend=type(cache).__name__,
                providers=len(providers))
    return ServiceContainer(
        settings=settings,
        engine=engine,
        store=store,
        cache=cache,
        visitor_cache=visitor_cache,
        rate_limiter=rate_limiter,
        broadcaster=broadcaster,
        enrichment_service=enrichment_service,
        identity_service=identity_service,
        activity_processor=activity_processor,
        visitor_service=visitor_service,
    )


_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """Return the process container, building it from settings on first use"""
    global _container
    if _container is None:
        _container = build_container(default_settings)
    return _container


def set_container(container: Optional[ServiceContainer]):
    """Install a container (tests) or clear it so the next call rebuilds"""
    global _container
    if _container is not None and _container is not container:
        _container.engine.dispose()
    _container = container
