"""
API v1 router configuration
"""

from fastapi import APIRouter
from identity_matrix.api.v1.endpoints import visitors

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(visitors.router, prefix="/visitors", tags=["visitors"])
