"""
CRM contact API endpoints.

Endpoints:
- POST   /contacts                       Create (or upsert) a contact
- GET    /contacts                       List with filters and pagination
- GET    /contacts/{id}                  Contact with recent activity
- PATCH  /contacts/{id}                  Partial profile update
- DELETE /contacts/{id}                  Soft delete (admin)
- POST   /contacts/{id}/restore          Undo soft delete (admin)
- POST   /contacts/{id}/assign           Assign to a preparer (admin)
- POST   /contacts/{id}/stage            Move pipeline stage
- GET    /contacts/{id}/stage-history    Stage transitions, newest first
- POST   /contacts/{id}/interactions     Log an interaction
- GET    /contacts/{id}/interactions     Interactions, newest first
- POST   /contacts/{id}/tags             Tag a contact
- DELETE /contacts/{id}/tags/{tag_id}    Remove a tag
- POST   /contacts/{id}/score/recalculate
- POST   /contacts/{id}/score            Manual score (admin)
- GET    /contacts/{id}/score-history
- GET    /scores/insights                Score distribution (admin)

Row-level access is enforced in the services; this layer only decides
which roles may call the CRM at all.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core.access import AccessContext, TaxPreparerAccess, require_admin
from ..models import ContactType, PipelineStage
from ..schemas.campaign import LeadScoreResponse, ManualScoreRequest, ScoreBreakdown, ScoreInsights
from ..schemas.common import PaginationParams, SuccessResponse
from ..schemas.contact import (
    AssignRequest,
    ContactCreate,
    ContactDetailResponse,
    ContactFilters,
    ContactListResponse,
    ContactResponse,
    ContactUpdate,
    StageChangeRequest,
    StageUpdate,
)
from ..schemas.interaction import (
    InteractionCreate,
    InteractionRequest,
    InteractionResponse,
    StageHistoryResponse,
    TagRequest,
    TagResponse,
)
from ..services.contact_service import CRMService
from ..services.lead_scoring import CRMLeadScoringService
from .dependencies import get_crm_service, get_scoring_service, require_crm_staff


logger = logging.getLogger(__name__)

router = APIRouter(tags=["Contacts"])


# =============================================================================
# Contacts
# =============================================================================

@router.post(
    "/contacts",
    response_model=ContactResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create contact",
)
def create_contact(
    data: ContactCreate,
    upsert: bool = Query(False, description="Update the existing contact with this email"),
    access: AccessContext = Depends(require_crm_staff),
    service: CRMService = Depends(get_crm_service),
):
    """Create a contact. Contacts created by a tax preparer are assigned to them."""
    if isinstance(access, TaxPreparerAccess):
        data = data.model_copy(update={"assigned_preparer_id": access.preparer_id})
    return service.create_contact(data, upsert=upsert, access=access)


@router.get(
    "/contacts",
    response_model=ContactListResponse,
    summary="List contacts",
)
def list_contacts(
    stage: Optional[PipelineStage] = Query(None),
    contact_type: Optional[ContactType] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    assigned_preparer_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    access: AccessContext = Depends(require_crm_staff),
    service: CRMService = Depends(get_crm_service),
):
    return service.list_contacts(
        ContactFilters(
            stage=stage,
            contact_type=contact_type,
            search=search,
            assigned_preparer_id=assigned_preparer_id,
        ),
        PaginationParams(page=page, limit=limit),
        access,
    )


@router.get(
    "/contacts/{contact_id}",
    response_model=ContactDetailResponse,
    summary="Get contact",
)
def get_contact(
    contact_id: UUID,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMService = Depends(get_crm_service),
):
    return service.get_contact_by_id(contact_id, access)


@router.patch(
    "/contacts/{contact_id}",
    response_model=ContactResponse,
    summary="Update contact",
)
def update_contact(
    contact_id: UUID,
    patch: ContactUpdate,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMService = Depends(get_crm_service),
):
    return service.update_contact(contact_id, patch, access)


@router.delete(
    "/contacts/{contact_id}",
    response_model=SuccessResponse,
    summary="Soft delete contact",
)
def delete_contact(
    contact_id: UUID,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMService = Depends(get_crm_service),
):
    service.delete_contact(contact_id, access)
    return SuccessResponse(message="Contact deleted")


@router.post(
    "/contacts/{contact_id}/restore",
    response_model=ContactResponse,
    summary="Restore deleted contact",
)
def restore_contact(
    contact_id: UUID,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMService = Depends(get_crm_service),
):
    return service.restore_contact(contact_id, access)


@router.post(
    "/contacts/{contact_id}/assign",
    response_model=ContactResponse,
    summary="Assign contact to preparer",
)
def assign_contact(
    contact_id: UUID,
    body: AssignRequest,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMService = Depends(get_crm_service),
):
    return service.assign_contact_to_preparer(contact_id, body.preparer_id, access)


# =============================================================================
# Pipeline Stage
# =============================================================================

@router.post(
    "/contacts/{contact_id}/stage",
    response_model=ContactResponse,
    summary="Change pipeline stage",
)
def change_stage(
    contact_id: UUID,
    body: StageChangeRequest,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMService = Depends(get_crm_service),
):
    update = StageUpdate(
        contact_id=contact_id,
        to_stage=body.to_stage,
        from_stage=body.from_stage,
        reason=body.reason,
    )
    return service.update_contact_stage(update, access)


@router.get(
    "/contacts/{contact_id}/stage-history",
    response_model=List[StageHistoryResponse],
    summary="Stage history",
)
def stage_history(
    contact_id: UUID,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMService = Depends(get_crm_service),
):
    return service.get_contact_stage_history(contact_id, access)


# =============================================================================
# Interactions
# =============================================================================

@router.post(
    "/contacts/{contact_id}/interactions",
    response_model=InteractionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Log interaction",
)
def log_interaction(
    contact_id: UUID,
    body: InteractionRequest,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMService = Depends(get_crm_service),
):
    data = InteractionCreate(contact_id=contact_id, user_id=access.user_id, **body.model_dump())
    return service.log_interaction(data, access)


@router.get(
    "/contacts/{contact_id}/interactions",
    response_model=List[InteractionResponse],
    summary="List interactions",
)
def list_interactions(
    contact_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    access: AccessContext = Depends(require_crm_staff),
    service: CRMService = Depends(get_crm_service),
):
    return service.get_contact_interactions(contact_id, access, limit=limit)


# =============================================================================
# Tags
# =============================================================================

@router.post(
    "/contacts/{contact_id}/tags",
    response_model=TagResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Tag contact",
)
def add_tag(
    contact_id: UUID,
    body: TagRequest,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMService = Depends(get_crm_service),
):
    return service.add_tag(contact_id, body.name, access, color=body.color)


@router.delete(
    "/contacts/{contact_id}/tags/{tag_id}",
    response_model=SuccessResponse,
    summary="Remove tag",
)
def remove_tag(
    contact_id: UUID,
    tag_id: UUID,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMService = Depends(get_crm_service),
):
    service.remove_tag(contact_id, tag_id, access)
    return SuccessResponse(message="Tag removed")


# =============================================================================
# Lead Score
# =============================================================================

@router.post(
    "/contacts/{contact_id}/score/recalculate",
    response_model=ScoreBreakdown,
    summary="Recalculate lead score",
)
def recalculate_score(
    contact_id: UUID,
    access: AccessContext = Depends(require_crm_staff),
    scoring: CRMLeadScoringService = Depends(get_scoring_service),
):
    return scoring.update_contact_score(contact_id, changed_by=access.user_id, access=access)


@router.post(
    "/contacts/{contact_id}/score",
    response_model=LeadScoreResponse,
    summary="Set lead score manually",
)
def set_score(
    contact_id: UUID,
    body: ManualScoreRequest,
    access: AccessContext = Depends(require_crm_staff),
    scoring: CRMLeadScoringService = Depends(get_scoring_service),
):
    require_admin(access, "adjust lead scores")
    return scoring.manual_score_adjustment(
        contact_id, body.score, body.reason, changed_by=access.user_id
    )


@router.get(
    "/contacts/{contact_id}/score-history",
    response_model=List[LeadScoreResponse],
    summary="Lead score history",
)
def score_history(
    contact_id: UUID,
    limit: int = Query(20, ge=1, le=100),
    access: AccessContext = Depends(require_crm_staff),
    scoring: CRMLeadScoringService = Depends(get_scoring_service),
):
    return scoring.get_score_history(contact_id, limit=limit, access=access)


@router.get(
    "/scores/insights",
    response_model=ScoreInsights,
    summary="Lead score distribution",
)
def score_insights(
    access: AccessContext = Depends(require_crm_staff),
    scoring: CRMLeadScoringService = Depends(get_scoring_service),
):
    require_admin(access, "view score insights")
    return scoring.get_score_insights()
