"""
Enrichment service: multi-provider fan-out and normalization
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import structlog

from identity_matrix.core.exceptions import AllProvidersFailed, ValidationError
from identity_matrix.core.retry import linear_delay, retry_with_backoff
from identity_matrix.schemas.visitor import EnrichedData, Visitor, VisitorStatus, advance_status

logger = structlog.get_logger(__name__)

# Canonical field -> raw keys accepted for it, first non-empty wins.
# "linkedin_company_url" is kept apart from the generic "*_url" social links.
FieldAliases = Dict[str, Tuple[str, ...]]

GENERIC_ALIASES: FieldAliases = {
    "company": ("company", "company_name", "organization"),
    "title": ("title", "job_title", "position"),
    "industry": ("industry",),
    "size": ("size", "company_size", "employees"),
    "revenue": ("revenue", "annual_revenue"),
    "website": ("website", "company_website", "domain"),
    "technologies": ("technologies",),
    "linkedin_company_url": ("linkedin_company_url",),
}

PROVIDER_ADAPTERS: Dict[str, FieldAliases] = {
    "generic": GENERIC_ALIASES,
    "clearbit": {
        "company": ("company_name", "company", "organization"),
        "title": ("employment_title", "title", "job_title"),
        "industry": ("company_industry", "industry"),
        "size": ("company_employees_range", "company_size", "employees"),
        "revenue": ("company_estimated_annual_revenue", "annual_revenue"),
        "website": ("company_domain", "company_website", "domain"),
        "technologies": ("company_tech", "technologies"),
        "linkedin_company_url": ("company_linkedin_url", "linkedin_company_url"),
    },
    "apollo": {
        "company": ("company_name", "organization", "company"),
        "title": ("title", "job_title"),
        "industry": ("industry",),
        "size": ("size", "estimated_num_employees"),
        "revenue": ("revenue", "annual_revenue"),
        "website": ("website", "website_url", "url"),
        "technologies": ("technologies",),
        # Apollo's organization payload puts the company page under linkedin_url
        "linkedin_company_url": ("linkedin_url",),
    },
    "hunter": {
        "company": ("organization", "company"),
        "title": ("position", "title"),
        "industry": ("industry",),
        "size": ("company_size", "headcount"),
        "revenue": ("annual_revenue",),
        "website": ("domain", "website"),
        "technologies": ("technologies",),
        "linkedin_company_url": ("linkedin_company_url",),
    },
}

_STRING_FIELDS = ("company", "title", "industry", "size", "revenue", "website")


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def to_canonical(kind: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    """Rename one provider response's keys to canonical field names"""
    try:
        aliases = PROVIDER_ADAPTERS[kind]
    except KeyError:
        raise ValueError(f"Unknown provider kind: {kind}")

    canonical: Dict[str, Any] = {}
    consumed = set()
    for field, keys in aliases.items():
        for key in keys:
            if key in raw and not _is_empty(raw[key]):
                canonical[field] = raw[key]
                break
        consumed.update(keys)

    for key, value in raw.items():
        if key not in consumed and key not in canonical:
            canonical[key] = value
    return canonical


def merge_responses(responses: Iterable[Tuple[str, Dict[str, Any]]]) -> Dict[str, Any]:
    """Overlay (kind, response) pairs in order; later responses win conflicts"""
    merged: Dict[str, Any] = {}
    for kind, raw in responses:
        merged.update(to_canonical(kind, raw))
    return merged


def build_enriched_data(merged: Dict[str, Any]) -> EnrichedData:
    """Extract canonical fields, fold ``*_url`` keys into social profiles, keep the rest"""
    remaining = dict(merged)
    fields = {}
    for field in _STRING_FIELDS:
        value = remaining.pop(field, "")
        fields[field] = "" if value is None else str(value)

    technologies = remaining.pop("technologies", [])
    fields["technologies"] = [str(t) for t in technologies] if isinstance(technologies, list) else []
    linkedin = remaining.pop("linkedin_company_url", "")
    fields["linkedin_url"] = linkedin if isinstance(linkedin, str) else ""

    social_profiles: Dict[str, str] = {}
    custom_fields: Dict[str, Any] = {}
    for key, value in remaining.items():
        if key.endswith("_url") and isinstance(value, str):
            social_profiles[key[:-len("_url")]] = value
        else:
            custom_fields[key] = value

    return EnrichedData(social_profiles=social_profiles, custom_fields=custom_fields, **fields)


class EnrichmentService:
    """Fans out to every configured provider and merges what comes back"""

    def __init__(self, providers: Sequence, max_retries: int = 3, retry_delay: float = 1.0,
                 sleep=asyncio.sleep):
        for provider in providers:
            if provider.kind not in PROVIDER_ADAPTERS:
                raise ValueError(f"Provider {provider.name} has unknown kind {provider.kind}")
        self.providers = sorted(providers, key=lambda p: p.priority)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sleep = sleep
        if not self.providers:
            logger.warning("No enrichment providers configured")
        else:
            logger.info("Enrichment service initialized",
                        providers=[p.name for p in self.providers])

    async def enrich_visitor_data(self, visitor: Visitor) -> Visitor:
        """Return an enriched copy of ``visitor``; the input is never modified"""
        if not visitor.email:
            raise ValidationError("Visitor email is required for enrichment",
                                  {"visitor_id": visitor.id})

        logger.debug("Starting enrichment", visitor_id=visitor.id)
        enriched_data = await self.query_providers(visitor.email)

        logger.info("Enrichment completed", visitor_id=visitor.id, company=enriched_data.company)
        return visitor.model_copy(update={
            "enriched_data": enriched_data,
            "status": advance_status(visitor.status, VisitorStatus.ENRICHED),
            "last_enriched": datetime.now(timezone.utc),
        })

    async def query_providers(self, email: str) -> EnrichedData:
        results = await asyncio.gather(
            *(self._query_with_retry(provider, email) for provider in self.providers),
            return_exceptions=True,
        )

        successes: List[Tuple[str, Dict[str, Any]]] = []
        for provider, result in zip(self.providers, results):
            if isinstance(result, BaseException):
                logger.warning("Provider failed", provider=provider.name, error=str(result))
            else:
                successes.append((provider.kind, result))

        if not successes:
            raise AllProvidersFailed("All enrichment providers failed",
                                     {"providers": [p.name for p in self.providers]})

        return build_enriched_data(merge_responses(successes))

    async def _query_with_retry(self, provider, email: str) -> Dict[str, Any]:
        return await retry_with_backoff(
            lambda: provider.fetch(email),
            attempts=self.max_retries,
            delay=linear_delay(self.retry_delay),
            sleep=self.sleep,
            label=f"provider:{provider.name}",
        )
