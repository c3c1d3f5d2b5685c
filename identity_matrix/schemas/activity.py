"""
Activity Pydantic schemas
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ActivityType(str, Enum):
    """Trackable visitor activities"""
    PAGE_VIEW = "PAGE_VIEW"
    FORM_SUBMIT = "FORM_SUBMIT"
    BUTTON_CLICK = "BUTTON_CLICK"
    FILE_DOWNLOAD = "FILE_DOWNLOAD"


class ActivityCreate(BaseModel):
    """Activity intake schema"""
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None
    gdpr_compliant: bool = False


class Activity(BaseModel):
    """Queued or stored activity; immutable once created"""
    id: str
    visitor_id: str
    type: ActivityType
    timestamp: datetime
    data: Dict[str, Any] = Field(default_factory=dict)
    gdpr_compliant: bool = False

    model_config = ConfigDict(from_attributes=True, frozen=True)
