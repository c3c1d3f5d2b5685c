"""
Application configuration settings
"""

from pydantic import BaseModel
from pydantic_settings import BaseSettings
from typing import List


class ProviderConfig(BaseModel):
    """Enrichment provider configuration"""
    name: str
    kind: str = "generic"  # key into the provider adapter table
    base_url: str
    api_key: str
    priority: int = 1
    timeout: float = 5.0  # seconds


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Identity Matrix"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Storage
    DATABASE_URL: str = "sqlite:///./identity_matrix.db"
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_BACKEND: str = "memory"  # memory|redis
    RATE_LIMIT_BACKEND: str = "memory"  # memory|redis
    BROADCAST_BACKEND: str = "local"  # local|redis
    VISITOR_CACHE_TTL: int = 3600  # 1 hour

    # Rate limiting (per visitor, per window)
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_HIGH: int = 100
    RATE_LIMIT_NORMAL: int = 50
    RATE_LIMIT_LOW: int = 20

    # Enrichment
    IDENTIFY_MAX_RETRIES: int = 3
    PROVIDER_MAX_RETRIES: int = 3
    PROVIDER_RETRY_DELAY: float = 1.0  # seconds, multiplied by attempt number
    ENRICHMENT_PROVIDERS: List[ProviderConfig] = []

    # Activity batching
    ACTIVITY_FLUSH_INTERVAL: float = 5.0
    VISITOR_BATCH_SIZE: int = 100

    # GDPR
    DATA_RETENTION_DAYS: int = 365

    # Background tasks
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Create settings instance
settings = Settings()
