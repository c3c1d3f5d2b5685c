"""
Visitor Pydantic schemas
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class VisitorStatus(str, Enum):
    """Identification progress; only ever moves forward"""
    ANONYMOUS = "ANONYMOUS"
    IDENTIFIED = "IDENTIFIED"
    ENRICHED = "ENRICHED"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [VisitorStatus.ANONYMOUS, VisitorStatus.IDENTIFIED, VisitorStatus.ENRICHED]


def advance_status(current: VisitorStatus, target: VisitorStatus) -> VisitorStatus:
    """Return whichever of the two statuses is further along"""
    current = VisitorStatus(current)
    target = VisitorStatus(target)
    return target if target.rank > current.rank else current


class VisitorLocation(BaseModel):
    """Coarse geographical location"""
    country: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = None
    timezone: Optional[str] = None


class VisitorMetadata(BaseModel):
    """Technical and behavioral session metadata"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    current_page: Optional[str] = None
    previous_pages: List[str] = Field(default_factory=list)
    custom_params: Dict[str, str] = Field(default_factory=dict)
    location: Optional[VisitorLocation] = None
    device_type: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None


class EnrichedData(BaseModel):
    """Company and professional data assembled from enrichment providers"""
    company: str = ""
    title: str = ""
    industry: str = ""
    size: str = ""
    revenue: str = ""
    website: str = ""
    technologies: List[str] = Field(default_factory=list)
    linkedin_url: str = ""
    social_profiles: Dict[str, str] = Field(default_factory=dict)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


class Visitor(BaseModel):
    """Visitor snapshot as stored and cached"""
    id: str
    company_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    status: VisitorStatus = VisitorStatus.ANONYMOUS
    metadata: VisitorMetadata = Field(default_factory=VisitorMetadata)
    enriched_data: Optional[EnrichedData] = None
    visits: int = Field(default=1, ge=1)
    total_time_spent: int = Field(default=0, ge=0)
    first_seen: datetime
    last_seen: datetime
    last_enriched: Optional[datetime] = None
    is_active: bool = True
    tags: Dict[str, Any] = Field(default_factory=dict)
    gdpr_consent: bool = False
    retention_date: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def check_status_invariants(self) -> "Visitor":
        if self.enriched_data is not None and self.status != VisitorStatus.ENRICHED:
            raise ValueError("enriched_data requires status ENRICHED")
        if self.email is not None and self.status == VisitorStatus.ANONYMOUS:
            raise ValueError("a visitor with an email cannot be ANONYMOUS")
        return self


class IdentificationData(BaseModel):
    """Contact data offered for de-anonymization"""
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    gdpr_consent: bool = False
    custom_fields: Optional[Dict[str, Any]] = None


class IdentificationOptions(BaseModel):
    """Processing options for identification"""
    skip_enrichment: bool = False
    force_cache_refresh: bool = False
    priority: str = "normal"  # high|normal|low


class VisitorCreate(BaseModel):
    """Visitor creation schema"""
    company_id: str
    metadata: VisitorMetadata = Field(default_factory=VisitorMetadata)
    gdpr_consent: bool = False


class VisitorIdentify(IdentificationData):
    """Identification request schema"""
    options: IdentificationOptions = Field(default_factory=IdentificationOptions)
