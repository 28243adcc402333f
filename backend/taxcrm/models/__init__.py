"""
SQLAlchemy ORM models for the CRM.

Contains database table definitions and relationships.
"""

from .contact import CRMContact, ContactType, PipelineStage, INACTIVE_STAGES
from .interaction import CRMInteraction, CRMStageHistory, InteractionType, Direction
from .tag import CRMTag, CRMContactTag
from .task import CRMTask, TaskPriority, TaskStatus
from .email import CRMEmailCampaign, CRMEmailActivity, CampaignStatus, EmailActivityStatus
from .lead_score import CRMLeadScore

__all__ = [
    # Contact model and enums
    "CRMContact",
    "ContactType",
    "PipelineStage",
    "INACTIVE_STAGES",
    # Logs
    "CRMInteraction",
    "CRMStageHistory",
    "InteractionType",
    "Direction",
    # Tags
    "CRMTag",
    "CRMContactTag",
    # Tasks
    "CRMTask",
    "TaskPriority",
    "TaskStatus",
    # Email
    "CRMEmailCampaign",
    "CRMEmailActivity",
    "CampaignStatus",
    "EmailActivityStatus",
    # Scoring
    "CRMLeadScore",
]
