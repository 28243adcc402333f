"""
Email campaign and per-contact email activity models.
"""

import enum
import uuid

from sqlalchemy import Column, String, Integer, Text, Uuid, JSON, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship

from ..core.database import Base, UTCDateTime, utcnow


class CampaignStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    SENDING = "SENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class EmailActivityStatus(str, enum.Enum):
    SENT = "SENT"
    OPENED = "OPENED"
    CLICKED = "CLICKED"
    BOUNCED = "BOUNCED"
    FAILED = "FAILED"


class CRMEmailCampaign(Base):
    """
    Bulk email campaign.

    ``segment_rules`` selects recipients, e.g.
    ``{"stages": ["NEW"], "contact_types": ["LEAD"], "lead_score_min": 40}``.
    """

    __tablename__ = "crm_email_campaigns"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    subject = Column(String(255), nullable=False)
    html_body = Column(Text, nullable=False)
    plain_text_body = Column(Text, nullable=True)
    from_name = Column(String(100), nullable=False)
    from_email = Column(String(255), nullable=False)
    reply_to = Column(String(255), nullable=True)
    segment_rules = Column(JSON, nullable=True)

    status = Column(
        SQLEnum(CampaignStatus, name="campaign_status"),
        nullable=False,
        default=CampaignStatus.DRAFT,
        index=True,
    )
    scheduled_at = Column(UTCDateTime, nullable=True, index=True)
    sent_at = Column(UTCDateTime, nullable=True)

    recipient_count = Column(Integer, nullable=False, default=0)
    sent_count = Column(Integer, nullable=False, default=0)
    opened_count = Column(Integer, nullable=False, default=0)
    clicked_count = Column(Integer, nullable=False, default=0)
    bounced_count = Column(Integer, nullable=False, default=0)

    created_by = Column(String(64), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    activities = relationship("CRMEmailActivity", back_populates="campaign")

    def __repr__(self) -> str:
        return f"<CRMEmailCampaign(id={self.id}, name={self.name!r}, status={self.status.value})>"


class CRMEmailActivity(Base):
    """One email sent to one contact, with open/click tracking."""

    __tablename__ = "crm_email_activities"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("crm_contacts.id"), nullable=False, index=True)
    campaign_id = Column(Uuid, ForeignKey("crm_email_campaigns.id"), nullable=True, index=True)

    subject = Column(String(255), nullable=False)
    # Provider message id; null when the send failed
    email_id = Column(String(255), unique=True, nullable=True)
    status = Column(
        SQLEnum(EmailActivityStatus, name="email_activity_status"),
        nullable=False,
        default=EmailActivityStatus.SENT,
    )

    sent_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)
    opened_at = Column(UTCDateTime, nullable=True)
    clicked_at = Column(UTCDateTime, nullable=True)
    clicked_urls = Column(JSON, nullable=True)

    contact = relationship("CRMContact", back_populates="email_activities")
    campaign = relationship("CRMEmailCampaign", back_populates="activities")
