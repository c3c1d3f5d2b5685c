"""
Visitor activity database model
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, JSON, String
from sqlalchemy.orm import relationship

from identity_matrix.core.database import Base


class ActivityRecord(Base):
    """Activity model"""
    __tablename__ = "visitor_activities"

    id = Column(String(36), primary_key=True, index=True)
    visitor_id = Column(String(36), ForeignKey("visitors.id", ondelete="CASCADE"), index=True)
    type = Column(String(50), nullable=False)  # 'PAGE_VIEW', 'FORM_SUBMIT', etc.
    timestamp = Column(DateTime(timezone=True), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    gdpr_compliant = Column(Boolean, nullable=False, default=False)

    # Relationships
    visitor = relationship("VisitorRecord", back_populates="activities")
