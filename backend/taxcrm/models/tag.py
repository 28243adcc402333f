"""
Contact tags.
"""

import uuid

from sqlalchemy import Column, String, Uuid, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from ..core.database import Base, UTCDateTime, utcnow


class CRMTag(Base):
    __tablename__ = "crm_tags"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), unique=True, nullable=False)
    color = Column(String(20), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    contact_links = relationship("CRMContactTag", back_populates="tag")


class CRMContactTag(Base):
    __tablename__ = "crm_contact_tags"
    __table_args__ = (
        UniqueConstraint("contact_id", "tag_id", name="uq_crm_contact_tag"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("crm_contacts.id"), nullable=False, index=True)
    tag_id = Column(Uuid, ForeignKey("crm_tags.id"), nullable=False, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    contact = relationship("CRMContact", back_populates="tag_links")
    tag = relationship("CRMTag", back_populates="contact_links", lazy="joined")
