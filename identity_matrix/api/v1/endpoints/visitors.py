"""
Visitor management endpoints
"""

from fastapi import APIRouter, Depends, Response, status
import structlog

from identity_matrix.core.container import ServiceContainer, get_container
from identity_matrix.schemas.activity import Activity, ActivityCreate
from identity_matrix.schemas.visitor import Visitor, VisitorCreate, VisitorIdentify

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("/", response_model=Visitor, status_code=status.HTTP_201_CREATED)
async def create_visitor(
    visitor: VisitorCreate,
    services: ServiceContainer = Depends(get_container)
):
    """Create new visitor"""
    return await services.visitor_service.create_visitor(
        visitor.company_id, visitor.metadata, visitor.gdpr_consent
    )


@router.get("/{visitor_id}", response_model=Visitor)
async def get_visitor(
    visitor_id: str,
    services: ServiceContainer = Depends(get_container)
):
    """Get visitor by ID"""
    return await services.visitor_service.get_visitor(visitor_id)


@router.post("/{visitor_id}/identify", response_model=Visitor)
async def identify_visitor(
    visitor_id: str,
    request: VisitorIdentify,
    services: ServiceContainer = Depends(get_container)
):
    """Identify visitor and optionally enrich"""
    identification = request.model_dump(exclude={"options"})
    return await services.identity_service.identify_visitor(visitor_id, identification, request.options)


@router.post("/{visitor_id}/activities", response_model=Activity, status_code=status.HTTP_202_ACCEPTED)
async def track_activity(
    visitor_id: str,
    activity: ActivityCreate,
    services: ServiceContainer = Depends(get_container)
):
    """Queue visitor activity for batched storage"""
    return await services.visitor_service.track_activity(visitor_id, activity)


@router.post("/{visitor_id}/enrich", response_model=Visitor)
async def enrich_visitor(
    visitor_id: str,
    services: ServiceContainer = Depends(get_container)
):
    """Enrich visitor with third-party data"""
    return await services.identity_service.enrich_visitor(visitor_id)


@router.delete("/{visitor_id}", status_code=status.HTTP_204_NO_CONTENT)
async def erase_visitor(
    visitor_id: str,
    services: ServiceContainer = Depends(get_container)
):
    """Erase visitor data (GDPR)"""
    await services.visitor_service.erase_visitor(visitor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
