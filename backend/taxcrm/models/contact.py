"""
CRM contact database model.

One row per person the business deals with: leads, clients, affiliates and
tax preparers. Email is the natural deduplication key.
"""

import enum
import uuid

from sqlalchemy import (
    Column,
    String,
    Integer,
    Numeric,
    Text,
    Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship

from ..core.database import Base, UTCDateTime, utcnow


# =============================================================================
# Enum Definitions
# =============================================================================

class ContactType(str, enum.Enum):
    LEAD = "LEAD"
    CLIENT = "CLIENT"
    AFFILIATE = "AFFILIATE"
    PREPARER = "PREPARER"


class PipelineStage(str, enum.Enum):
    """
    Pipeline stages in funnel order.

    Order is informational only: any stage may follow any other.
    """
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    DOCUMENTS = "DOCUMENTS"
    FILED = "FILED"
    COMPLETE = "COMPLETE"
    CLOSED = "CLOSED"
    LOST = "LOST"


INACTIVE_STAGES = (PipelineStage.CLOSED, PipelineStage.LOST)


# =============================================================================
# Contact Model
# =============================================================================

class CRMContact(Base):
    """
    CRM contact.

    Attributes:
        id: UUID primary key
        user_id: Optional link to an authenticated account
        external_user_id: Optional identity-provider user id
        contact_type: LEAD, CLIENT, AFFILIATE or PREPARER
        email: Unique, stored lower-cased
        stage: Current pipeline stage
        stage_entered_at: When the current stage was entered
        assigned_preparer_id: Preparer who owns this contact (row-level security)
        lead_score: 0-100 engagement score
        deleted_at: Soft-delete marker; deleted contacts are hidden from all reads
    """

    __tablename__ = "crm_contacts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Identity links
    user_id = Column(String(64), unique=True, nullable=True)
    external_user_id = Column(String(64), unique=True, nullable=True)

    contact_type = Column(
        SQLEnum(ContactType, name="contact_type"),
        nullable=False,
        index=True,
    )

    # Profile
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(40), nullable=True)
    company = Column(String(200), nullable=True)
    source = Column(String(50), nullable=True)

    # Tax profile
    filing_status = Column(String(50), nullable=True)
    dependents = Column(Integer, nullable=True)
    previous_year_agi = Column(Numeric(12, 2), nullable=True)
    tax_year = Column(Integer, nullable=True)

    # Pipeline
    stage = Column(
        SQLEnum(PipelineStage, name="pipeline_stage"),
        nullable=False,
        default=PipelineStage.NEW,
        index=True,
    )
    stage_entered_at = Column(UTCDateTime, nullable=False, default=utcnow)

    # Attribution
    referrer_username = Column(String(100), nullable=True)
    referrer_type = Column(String(50), nullable=True)
    attribution_method = Column(String(50), nullable=True)
    attribution_confidence = Column(Integer, nullable=True)
    commission_rate = Column(Numeric(5, 2), nullable=True)
    commission_rate_locked_at = Column(UTCDateTime, nullable=True)

    # Assignment
    assigned_preparer_id = Column(String(64), nullable=True, index=True)
    assigned_at = Column(UTCDateTime, nullable=True)

    # Bookkeeping
    last_contacted_at = Column(UTCDateTime, nullable=True)
    lead_score = Column(Integer, nullable=False, default=0)
    last_scored_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow, index=True)
    deleted_at = Column(UTCDateTime, nullable=True, index=True)

    notes = Column(Text, nullable=True)

    # Relationships (never cascade deletes: contacts are only soft-deleted)
    interactions = relationship("CRMInteraction", back_populates="contact", lazy="select")
    stage_history = relationship("CRMStageHistory", back_populates="contact", lazy="select")
    tag_links = relationship("CRMContactTag", back_populates="contact", lazy="select")
    tasks = relationship("CRMTask", back_populates="contact", lazy="select")
    email_activities = relationship("CRMEmailActivity", back_populates="contact", lazy="select")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return (
            f"<CRMContact(id={self.id}, type={self.contact_type.value}, "
            f"stage={self.stage.value})>"
        )
