"""
Identity Matrix - FastAPI Application
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from identity_matrix.api.v1.api import api_router
from identity_matrix.core.config import settings
from identity_matrix.core.container import get_container
from identity_matrix.core.exceptions import IdentityMatrixError
from identity_matrix.core.logging_config import configure_logging

configure_logging(settings.DEBUG)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting Identity Matrix", environment=settings.ENVIRONMENT)
    container = get_container()
    container.activity_processor.start()

    yield

    # Shutdown
    await container.activity_processor.stop()
    logger.info("Shutting down Identity Matrix")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Visitor identity resolution and enrichment",
    openapi_url="/api/v1/openapi.json",
    docs_url="/api/v1/docs",
    redoc_url="/api/v1/redoc",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    container = get_container()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "activity_processor": "running" if container.activity_processor.running else "stopped",
        "pending_activities": container.activity_processor.pending(),
    }


@app.exception_handler(IdentityMatrixError)
async def identity_matrix_exception_handler(request: Request, exc: IdentityMatrixError):
    """Pipeline error handler"""
    logger.warning("Request failed", path=request.url.path, error_type=exc.error_type,
                   status_code=exc.status_code, detail=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.error_type}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Global exception handler"""
    logger.error("Unhandled exception", err=str(exc), exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "identity_matrix.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info"
    )
