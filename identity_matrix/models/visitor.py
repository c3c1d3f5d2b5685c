"""
Visitor database model
"""

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String
from sqlalchemy.orm import relationship

from identity_matrix.core.database import Base


class VisitorRecord(Base):
    """Visitor model"""
    __tablename__ = "visitors"

    id = Column(String(36), primary_key=True, index=True)
    company_id = Column(String(36), nullable=False, index=True)
    email = Column(String(255), index=True)
    name = Column(String(255))
    phone = Column(String(50))
    status = Column(String(20), nullable=False, default="ANONYMOUS")
    # "metadata" is reserved on declarative classes
    visitor_metadata = Column("metadata", JSON, nullable=False, default=dict)
    enriched_data = Column(JSON)
    visits = Column(Integer, nullable=False, default=1)
    total_time_spent = Column(Integer, nullable=False, default=0)
    first_seen = Column(DateTime(timezone=True), nullable=False)
    last_seen = Column(DateTime(timezone=True), nullable=False)
    last_enriched = Column(DateTime(timezone=True))
    is_active = Column(Boolean, nullable=False, default=True)
    tags = Column(JSON, nullable=False, default=dict)
    gdpr_consent = Column(Boolean, nullable=False, default=False)
    retention_date = Column(DateTime(timezone=True), index=True)

    # Relationships
    activities = relationship(
        "ActivityRecord",
        back_populates="visitor",
        cascade="all, delete-orphan",
    )
