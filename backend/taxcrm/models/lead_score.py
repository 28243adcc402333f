"""
Lead score history.

Every automatic or manual score change writes one row so the score on the
contact can be explained later.
"""

import uuid

from sqlalchemy import Column, String, Integer, Text, Uuid, JSON, ForeignKey

from ..core.database import Base, UTCDateTime, utcnow


class CRMLeadScore(Base):
    __tablename__ = "crm_lead_scores"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("crm_contacts.id"), nullable=False, index=True)
    score = Column(Integer, nullable=False)
    # Component scores; null for manual adjustments
    breakdown = Column(JSON, nullable=True)
    reason = Column(Text, nullable=True)
    changed_by = Column(String(64), nullable=False, default="system")
    created_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<CRMLeadScore(contact_id={self.contact_id}, score={self.score})>"
