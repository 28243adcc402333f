"""
Contact Pydantic schemas for request/response validation.

Stage and assignment are deliberately absent from ContactUpdate: they change
only through the stage-update and assign operations, which keep history.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field, EmailStr, field_validator

from ..models.contact import ContactType, PipelineStage
from .interaction import InteractionResponse, StageHistoryResponse, TagResponse
from .task import TaskResponse


# =============================================================================
# Input Schemas
# =============================================================================

class ContactCreate(BaseModel):
    """
    Schema for creating a contact from a form submission, lead conversion,
    manual entry or backfill.
    """

    contact_type: ContactType = Field(..., description="LEAD, CLIENT, AFFILIATE or PREPARER")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr = Field(..., description="Unique contact email")
    phone: Optional[str] = Field(default=None, max_length=40)
    company: Optional[str] = Field(default=None, max_length=200)
    source: Optional[str] = Field(default="manual", max_length=50)

    user_id: Optional[str] = Field(default=None, max_length=64)
    external_user_id: Optional[str] = Field(default=None, max_length=64)

    filing_status: Optional[str] = Field(default=None, max_length=50)
    dependents: Optional[int] = Field(default=None, ge=0, le=50)
    previous_year_agi: Optional[Decimal] = Field(default=None, ge=0)
    tax_year: Optional[int] = Field(default=None, ge=2000, le=2100)

    stage: PipelineStage = Field(default=PipelineStage.NEW)

    referrer_username: Optional[str] = Field(default=None, max_length=100)
    referrer_type: Optional[str] = Field(default=None, max_length=50)
    attribution_method: Optional[str] = Field(default=None, max_length=50)
    attribution_confidence: Optional[int] = Field(default=None, ge=0, le=100)
    commission_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)

    assigned_preparer_id: Optional[str] = Field(default=None, max_length=64)
    notes: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_names(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("phone")
    @classmethod
    def strip_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class ContactUpdate(BaseModel):
    """Partial update; only fields present in the request are written."""

    model_config = {
        "extra": "forbid"
    }

    contact_type: Optional[ContactType] = None
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=40)
    company: Optional[str] = Field(default=None, max_length=200)
    source: Optional[str] = Field(default=None, max_length=50)

    filing_status: Optional[str] = Field(default=None, max_length=50)
    dependents: Optional[int] = Field(default=None, ge=0, le=50)
    previous_year_agi: Optional[Decimal] = Field(default=None, ge=0)
    tax_year: Optional[int] = Field(default=None, ge=2000, le=2100)

    referrer_username: Optional[str] = Field(default=None, max_length=100)
    referrer_type: Optional[str] = Field(default=None, max_length=50)
    attribution_method: Optional[str] = Field(default=None, max_length=50)
    attribution_confidence: Optional[int] = Field(default=None, ge=0, le=100)
    commission_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)

    notes: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else v


class ContactFilters(BaseModel):
    stage: Optional[PipelineStage] = None
    contact_type: Optional[ContactType] = None
    search: Optional[str] = Field(default=None, max_length=200)
    assigned_preparer_id: Optional[str] = None


class StageUpdate(BaseModel):
    """
    Stage transition request.

    ``from_stage`` is optional; when given it must match the stored stage.
    """

    contact_id: UUID
    to_stage: PipelineStage
    from_stage: Optional[PipelineStage] = None
    reason: Optional[str] = Field(default=None, max_length=1000)


class StageChangeRequest(BaseModel):
    """HTTP body for POST /contacts/{id}/stage."""

    to_stage: PipelineStage
    from_stage: Optional[PipelineStage] = None
    reason: Optional[str] = Field(default=None, max_length=1000)


class AssignRequest(BaseModel):
    preparer_id: str = Field(..., min_length=1, max_length=64)


# =============================================================================
# Response Schemas
# =============================================================================

class ContactResponse(BaseModel):
    id: UUID
    contact_type: ContactType
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    company: Optional[str] = None
    source: Optional[str] = None
    user_id: Optional[str] = None
    external_user_id: Optional[str] = None

    filing_status: Optional[str] = None
    dependents: Optional[int] = None
    previous_year_agi: Optional[Decimal] = None
    tax_year: Optional[int] = None

    stage: PipelineStage
    stage_entered_at: datetime

    referrer_username: Optional[str] = None
    referrer_type: Optional[str] = None
    attribution_method: Optional[str] = None
    attribution_confidence: Optional[int] = None
    commission_rate: Optional[Decimal] = None
    commission_rate_locked_at: Optional[datetime] = None

    assigned_preparer_id: Optional[str] = None
    assigned_at: Optional[datetime] = None

    last_contacted_at: Optional[datetime] = None
    lead_score: int = 0
    last_scored_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    notes: Optional[str] = None

    model_config = {
        "from_attributes": True
    }


class ContactCounts(BaseModel):
    interactions: int = 0
    tasks: int = 0
    email_activities: int = 0


class EmailActivitySummary(BaseModel):
    id: UUID
    campaign_id: Optional[UUID] = None
    subject: str
    status: str
    sent_at: datetime
    opened_at: Optional[datetime] = None
    clicked_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }


class ContactDetailResponse(ContactResponse):
    """Contact with its recent activity, as shown on the contact page."""

    interactions: List[InteractionResponse] = []
    stage_history: List[StageHistoryResponse] = []
    tags: List[TagResponse] = []
    tasks: List[TaskResponse] = []
    email_activities: List[EmailActivitySummary] = []
    counts: ContactCounts = ContactCounts()


class ContactListResponse(BaseModel):
    contacts: List[ContactResponse]
    total: int
    page: int
    limit: int
    total_pages: int
