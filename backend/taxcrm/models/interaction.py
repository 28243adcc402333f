"""
CRM interaction and stage-history models.

Both tables are append-only logs tied to a contact: rows are written once
and never updated or deleted.
"""

import enum
import uuid

from sqlalchemy import Column, String, Integer, Text, Uuid, JSON, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship

from ..core.database import Base, UTCDateTime, utcnow
from .contact import PipelineStage


class InteractionType(str, enum.Enum):
    NOTE = "NOTE"
    EMAIL = "EMAIL"
    PHONE_CALL = "PHONE_CALL"
    MEETING = "MEETING"
    SMS = "SMS"
    OTHER = "OTHER"


class Direction(str, enum.Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class CRMInteraction(Base):
    """
    A logged communication with a contact.

    Written by staff (calls, notes, meetings) or by automated processes
    (form submissions, outbound email). Read newest first.
    """

    __tablename__ = "crm_interactions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    contact_id = Column(
        Uuid,
        ForeignKey("crm_contacts.id"),
        nullable=False,
        index=True,
    )

    type = Column(SQLEnum(InteractionType, name="interaction_type"), nullable=False)
    direction = Column(
        SQLEnum(Direction, name="interaction_direction"),
        nullable=False,
        default=Direction.OUTBOUND,
    )
    subject = Column(String(255), nullable=True)
    body = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    attachments = Column(JSON, nullable=True)

    # Actor who logged it (null for automated entries)
    user_id = Column(String(64), nullable=True)

    occurred_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    contact = relationship("CRMContact", back_populates="interactions")

    def __repr__(self) -> str:
        return f"<CRMInteraction(id={self.id}, contact_id={self.contact_id}, type={self.type.value})>"


class CRMStageHistory(Base):
    """One row per call to the stage-update operation, same-stage moves included."""

    __tablename__ = "crm_stage_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    contact_id = Column(
        Uuid,
        ForeignKey("crm_contacts.id"),
        nullable=False,
        index=True,
    )

    from_stage = Column(SQLEnum(PipelineStage, name="pipeline_stage"), nullable=True)
    to_stage = Column(SQLEnum(PipelineStage, name="pipeline_stage"), nullable=False)
    changed_by = Column(String(64), nullable=True)
    reason = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)

    contact = relationship("CRMContact", back_populates="stage_history")

    def __repr__(self) -> str:
        return (
            f"<CRMStageHistory(contact_id={self.contact_id}, "
            f"{self.from_stage} -> {self.to_stage})>"
        )
