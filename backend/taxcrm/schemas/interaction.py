"""
Interaction, stage history and tag schemas.
"""

from datetime import datetime
from typing import Any, Optional, List
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.contact import PipelineStage
from ..models.interaction import InteractionType, Direction


class InteractionCreate(BaseModel):
    """
    Schema for logging an interaction.

    ``occurred_at`` defaults to now; ``user_id`` is the actor (None for
    automated entries).
    """

    contact_id: UUID
    type: InteractionType
    direction: Direction = Direction.OUTBOUND
    subject: Optional[str] = Field(default=None, max_length=255)
    body: Optional[str] = Field(default=None, max_length=20000)
    duration_minutes: Optional[int] = Field(default=None, ge=0, le=1440)
    occurred_at: Optional[datetime] = None
    attachments: Optional[List[dict[str, Any]]] = None
    user_id: Optional[str] = Field(default=None, max_length=64)


class InteractionRequest(BaseModel):
    """HTTP body for POST /contacts/{id}/interactions (contact and actor come from the request)."""

    type: InteractionType
    direction: Direction = Direction.OUTBOUND
    subject: Optional[str] = Field(default=None, max_length=255)
    body: Optional[str] = Field(default=None, max_length=20000)
    duration_minutes: Optional[int] = Field(default=None, ge=0, le=1440)
    occurred_at: Optional[datetime] = None
    attachments: Optional[List[dict[str, Any]]] = None


class InteractionResponse(BaseModel):
    id: UUID
    contact_id: UUID
    type: InteractionType
    direction: Direction
    subject: Optional[str] = None
    body: Optional[str] = None
    duration_minutes: Optional[int] = None
    attachments: Optional[List[dict[str, Any]]] = None
    user_id: Optional[str] = None
    occurred_at: datetime
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class StageHistoryResponse(BaseModel):
    id: UUID
    contact_id: UUID
    from_stage: Optional[PipelineStage] = None
    to_stage: PipelineStage
    changed_by: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class TagRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, max_length=20)


class TagResponse(BaseModel):
    id: UUID
    name: str
    color: Optional[str] = None

    model_config = {
        "from_attributes": True
    }
