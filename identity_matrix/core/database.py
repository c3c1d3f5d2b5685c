"""
Database configuration and session management
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
import structlog

logger = structlog.get_logger(__name__)

# Create base class for models
Base = declarative_base()


def make_engine(database_url: str):
    """Create database engine"""
    if database_url.startswith("sqlite"):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # In-memory databases live on one connection shared by every thread
            return create_engine(
                database_url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True)


def is_single_connection(engine) -> bool:
    """True when every session shares one DBAPI connection"""
    return isinstance(engine.pool, StaticPool)


def make_session_factory(engine):
    """Create session factory"""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(engine):
    """Initialize database"""
    # Models register themselves on Base when imported
    from identity_matrix.models import activity, visitor  # noqa: F401

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error("Failed to initialize database", err=str(e))
        raise
