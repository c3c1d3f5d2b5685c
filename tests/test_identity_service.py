"""
Identification flow: consent, validation, rate limiting, caching, enrichment.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from identity_matrix.core.exceptions import (
    AllProvidersFailed,
    ConsentRequired,
    NotFound,
    RateLimited,
    ValidationError,
)
from identity_matrix.schemas.visitor import VisitorMetadata, VisitorStatus
from identity_matrix.services.enrichment_service import EnrichmentService
from identity_matrix.services.identity_service import IdentityService, is_valid_email, is_valid_phone
from conftest import FakeProvider, SleepRecorder

CONSENTED = {"email": "jane@acme.com", "name": "Jane", "gdpr_consent": True}


def create(container):
    return asyncio.run(container.visitor_service.create_visitor("c-1", VisitorMetadata(), False))


def identify(container, visitor_id, data=None, options=None):
    return asyncio.run(container.identity_service.identify_visitor(
        visitor_id, data if data is not None else CONSENTED, options
    ))


class TestValidation:
    """Checks that run before anything is touched"""

    def test_email_and_phone_patterns(self):
        assert is_valid_email("a@b.com")
        assert not is_valid_email("not-an-email")
        assert not is_valid_email("a b@c.com")
        assert is_valid_phone("+1 555-123-4567")
        assert not is_valid_phone("12345")

    def test_consent_required(self, container):
        visitor = create(container)
        with pytest.raises(ConsentRequired):
            identify(container, visitor.id, {"email": "jane@acme.com", "gdpr_consent": False})
        assert asyncio.run(container.store.find_by_id(visitor.id)).email is None

    def test_consent_checked_before_format(self, container):
        with pytest.raises(ConsentRequired):
            identify(container, "v-1", {"email": "bad", "gdpr_consent": False})

    def test_invalid_email_rejected(self, container):
        visitor = create(container)
        with pytest.raises(ValidationError):
            identify(container, visitor.id, {"email": "not-an-email", "gdpr_consent": True})
        assert asyncio.run(container.store.find_by_id(visitor.id)).status == VisitorStatus.ANONYMOUS

    def test_trailing_newline_email_rejected(self, container):
        visitor = create(container)
        assert not is_valid_email("a@b.com\n")
        with pytest.raises(ValidationError):
            identify(container, visitor.id, {"email": "a@b.com\n", "gdpr_consent": True},
                     {"skip_enrichment": True})
        assert asyncio.run(container.store.find_by_id(visitor.id)).email is None

    def test_invalid_phone_rejected(self, container):
        with pytest.raises(ValidationError):
            identify(container, "v-1", {"phone": "123", "gdpr_consent": True})

    def test_unknown_visitor(self, container):
        with pytest.raises(NotFound):
            identify(container, "missing")


class TestRateLimiting:
    def test_quota_by_priority(self, container):
        visitor = create(container)
        options = {"priority": "low", "skip_enrichment": True, "force_cache_refresh": True}
        for _ in range(20):
            identify(container, visitor.id, options=options)
        with pytest.raises(RateLimited):
            identify(container, visitor.id, options=options)

    def test_unknown_priority_uses_normal_quota(self, container):
        assert container.identity_service.get_rate_limit("urgent") == 50
        assert container.identity_service.get_rate_limit(None) == 50
        assert container.identity_service.get_rate_limit("high") == 100


class TestIdentifyVisitor:
    """Store update, cache short-circuit and enrichment"""

    def test_identify_and_enrich(self, container, providers):
        visitor = create(container)
        result = identify(container, visitor.id)

        assert result.email == "jane@acme.com"
        assert result.name == "Jane"
        assert result.status == VisitorStatus.ENRICHED
        assert result.enriched_data.company == "Acme"
        assert result.enriched_data.title == "CTO"
        assert providers[0].calls == ["jane@acme.com"]

        stored = asyncio.run(container.store.find_by_id(visitor.id))
        assert stored.status == VisitorStatus.ENRICHED
        assert stored.enriched_data.company == "Acme"

    def test_cache_hit_returns_cached_without_enriching_again(self, container, providers):
        visitor = create(container)
        first = identify(container, visitor.id)
        second = identify(container, visitor.id, {"email": "other@acme.com", "gdpr_consent": True})

        assert second == first
        assert second.email == "jane@acme.com"
        assert len(providers[0].calls) == 1

    def test_force_cache_refresh_applies_new_data(self, container, providers):
        visitor = create(container)
        identify(container, visitor.id)
        refreshed = identify(container, visitor.id, {"email": "other@acme.com", "gdpr_consent": True},
                             {"force_cache_refresh": True})

        assert refreshed.email == "other@acme.com"
        assert refreshed.name == "Jane"
        assert len(providers[0].calls) == 2

    def test_skip_enrichment(self, container, providers):
        visitor = create(container)
        result = identify(container, visitor.id, options={"skip_enrichment": True})

        assert result.status == VisitorStatus.IDENTIFIED
        assert result.enriched_data is None
        assert providers[0].calls == []

    def test_no_email_skips_enrichment(self, container, providers):
        visitor = create(container)
        result = identify(container, visitor.id, {"name": "Jane", "gdpr_consent": True})

        assert result.status == VisitorStatus.IDENTIFIED
        assert providers[0].calls == []

    def test_status_never_regresses(self, container, providers):
        visitor = create(container)
        identify(container, visitor.id)
        again = identify(container, visitor.id, options={"skip_enrichment": True, "force_cache_refresh": True})

        assert again.status == VisitorStatus.ENRICHED
        assert again.enriched_data.company == "Acme"

    def test_enrichment_failure_returns_identified_visitor(self, container, providers, sleep_recorder):
        providers[:] = [FakeProvider("down", always_fail=True)]
        # One provider attempt per enrichment so only the outer backoff sleeps
        container.identity_service.enrichment_service = EnrichmentService(
            providers, max_retries=1, sleep=sleep_recorder
        )
        visitor = create(container)

        result = identify(container, visitor.id)
        assert result.status == VisitorStatus.IDENTIFIED
        assert result.email == "jane@acme.com"
        assert len(providers[0].calls) == 3
        assert sleep_recorder.delays == [2.0, 4.0]


class TestEnrichmentRetry:
    """Whole-enrichment retry on the identification path"""

    def make_service(self, container, enrichment_service, sleep):
        return IdentityService(
            container.store,
            container.visitor_cache,
            enrichment_service,
            container.rate_limiter,
            max_retries=3,
            sleep=sleep,
        )

    def test_exponential_backoff_then_identified(self, container):
        enrichment = AsyncMock()
        enrichment.enrich_visitor_data.side_effect = AllProvidersFailed("all down")
        sleep = SleepRecorder()
        service = self.make_service(container, enrichment, sleep)
        visitor = create(container)

        result = asyncio.run(service.identify_visitor(visitor.id, CONSENTED))
        assert result.status == VisitorStatus.IDENTIFIED
        assert enrichment.enrich_visitor_data.await_count == 3
        assert sleep.delays == [2.0, 4.0]
        assert asyncio.run(container.visitor_cache.get_identified(visitor.id)).status == VisitorStatus.IDENTIFIED

    def test_recovers_on_later_attempt(self, container):
        visitor = create(container)
        enriched = asyncio.run(container.enrichment_service.enrich_visitor_data(
            visitor.model_copy(update={"email": "jane@acme.com"})
        ))
        enrichment = AsyncMock()
        enrichment.enrich_visitor_data.side_effect = [AllProvidersFailed("all down"), enriched]
        sleep = SleepRecorder()
        service = self.make_service(container, enrichment, sleep)

        result = asyncio.run(service.identify_visitor(visitor.id, CONSENTED))
        assert result.status == VisitorStatus.ENRICHED
        assert sleep.delays == [2.0]
        cached = asyncio.run(container.visitor_cache.get_identified(visitor.id))
        assert cached.status == VisitorStatus.ENRICHED


class TestEnrichVisitor:
    """Single enrichment of a stored visitor"""

    def test_enriches_and_persists(self, container):
        visitor = create(container)
        asyncio.run(container.visitor_service.identify_visitor(visitor.id, "jane@acme.com"))

        enriched = asyncio.run(container.identity_service.enrich_visitor(visitor.id))
        assert enriched.status == VisitorStatus.ENRICHED
        assert asyncio.run(container.store.find_by_id(visitor.id)).enriched_data.company == "Acme"
        assert asyncio.run(container.visitor_cache.get(visitor.id)).status == VisitorStatus.ENRICHED

    def test_without_email(self, container):
        visitor = create(container)
        with pytest.raises(ValidationError):
            asyncio.run(container.identity_service.enrich_visitor(visitor.id))


class TestEndToEnd:
    def test_create_track_identify(self, container, providers):
        visitor = create(container)
        asyncio.run(container.visitor_service.track_activity(visitor.id, {"type": "PAGE_VIEW"}))
        asyncio.run(container.activity_processor.flush())

        result = identify(container, visitor.id, options={"skip_enrichment": True})
        assert result.status == VisitorStatus.IDENTIFIED
        assert len(asyncio.run(container.store.list_activities(visitor.id))) == 1

        enriched = identify(container, visitor.id, options={"force_cache_refresh": True})
        assert enriched.status == VisitorStatus.ENRICHED
        assert asyncio.run(container.visitor_service.get_visitor(visitor.id)).status == VisitorStatus.ENRICHED
