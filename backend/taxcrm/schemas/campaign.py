"""
Email campaign and lead score schemas.
"""

from datetime import datetime
from typing import Optional, List, Literal
from uuid import UUID

from pydantic import BaseModel, Field, EmailStr

from ..models.contact import ContactType, PipelineStage
from ..models.email import CampaignStatus


# =============================================================================
# Campaigns
# =============================================================================

class SegmentRules(BaseModel):
    """Recipient selection. Empty rules target every active contact."""

    stages: Optional[List[PipelineStage]] = None
    contact_types: Optional[List[ContactType]] = None
    tags: Optional[List[UUID]] = None
    lead_score_min: Optional[int] = Field(default=None, ge=0, le=100)
    lead_score_max: Optional[int] = Field(default=None, ge=0, le=100)


class CampaignCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    subject: str = Field(..., min_length=1, max_length=255)
    html_body: str = Field(..., min_length=1)
    plain_text_body: Optional[str] = None
    from_name: Optional[str] = Field(default=None, max_length=100)
    from_email: Optional[EmailStr] = None
    reply_to: Optional[EmailStr] = None
    segment_rules: Optional[SegmentRules] = None
    created_by: Optional[str] = Field(default=None, max_length=64)


class CampaignSendRequest(BaseModel):
    schedule_at: Optional[datetime] = None
    test_email: Optional[EmailStr] = None


class CampaignResponse(BaseModel):
    id: UUID
    name: str
    subject: str
    from_name: str
    from_email: str
    reply_to: Optional[str] = None
    segment_rules: Optional[dict] = None
    status: CampaignStatus
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    recipient_count: int
    sent_count: int
    opened_count: int
    clicked_count: int
    bounced_count: int
    created_by: Optional[str] = None
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class CampaignListResponse(BaseModel):
    campaigns: List[CampaignResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class CampaignSendResult(BaseModel):
    success: bool = True
    queued: bool = False
    test_email_id: Optional[str] = None
    scheduled: bool = False
    scheduled_at: Optional[datetime] = None
    recipient_count: int = 0
    sent_count: int = 0


class CampaignStats(BaseModel):
    sent_count: int
    opened_count: int
    clicked_count: int
    bounced_count: int
    open_rate: float
    click_rate: float
    bounce_rate: float
    click_to_open_rate: float


class EmailEvent(BaseModel):
    """Open/click tracking event posted by the email provider."""

    type: Literal["opened", "clicked"]
    email_id: str = Field(..., min_length=1)
    url: Optional[str] = None


# =============================================================================
# Lead Scoring
# =============================================================================

class ScoreBreakdown(BaseModel):
    email_engagement: int
    interactions: int
    stage: int
    recency: int
    total: int


class ManualScoreRequest(BaseModel):
    score: int
    reason: str = Field(..., min_length=1, max_length=1000)


class LeadScoreResponse(BaseModel):
    id: UUID
    contact_id: UUID
    score: int
    breakdown: Optional[dict] = None
    reason: Optional[str] = None
    changed_by: str
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class ScoreInsights(BaseModel):
    average_score: int
    total: int
    hot_leads: int
    warm_leads: int
    cold_leads: int
    distribution: dict[str, int]
