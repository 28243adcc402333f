"""
Email campaign API endpoints (admin) and the provider tracking webhook.

Full sends are queued to Celery; scheduling and test sends complete inline.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core.access import AccessContext
from ..core.exceptions import ValidationError
from ..models import CampaignStatus
from ..schemas.campaign import (
    CampaignCreate,
    CampaignListResponse,
    CampaignResponse,
    CampaignSendRequest,
    CampaignSendResult,
    CampaignStats,
    EmailEvent,
)
from ..schemas.common import SuccessResponse
from ..services.campaigns import CRMEmailService
from ..tasks.crm_tasks import send_campaign_task
from .dependencies import get_email_service, require_admin_role


logger = logging.getLogger(__name__)

router = APIRouter(tags=["Campaigns"])


@router.post(
    "/campaigns",
    response_model=CampaignResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create campaign",
)
def create_campaign(
    data: CampaignCreate,
    access: AccessContext = Depends(require_admin_role),
    service: CRMEmailService = Depends(get_email_service),
):
    if data.created_by is None:
        data = data.model_copy(update={"created_by": access.user_id})
    return service.create_campaign(data)


@router.get(
    "/campaigns",
    response_model=CampaignListResponse,
    summary="List campaigns",
)
def list_campaigns(
    status_filter: Optional[CampaignStatus] = Query(None, alias="status"),
    created_by: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    access: AccessContext = Depends(require_admin_role),
    service: CRMEmailService = Depends(get_email_service),
):
    return service.list_campaigns(status=status_filter, created_by=created_by, page=page, limit=limit)


@router.get(
    "/campaigns/{campaign_id}",
    response_model=CampaignResponse,
    summary="Get campaign",
)
def get_campaign(
    campaign_id: UUID,
    access: AccessContext = Depends(require_admin_role),
    service: CRMEmailService = Depends(get_email_service),
):
    return service.get_campaign(campaign_id)


@router.post(
    "/campaigns/{campaign_id}/send",
    response_model=CampaignSendResult,
    summary="Send, schedule or test a campaign",
)
def send_campaign(
    campaign_id: UUID,
    body: CampaignSendRequest,
    access: AccessContext = Depends(require_admin_role),
    service: CRMEmailService = Depends(get_email_service),
):
    if body.test_email or body.schedule_at:
        return service.send_campaign(
            campaign_id, schedule_at=body.schedule_at, test_email=body.test_email
        )

    campaign = service.get_campaign(campaign_id)
    if campaign.status not in (CampaignStatus.DRAFT, CampaignStatus.SCHEDULED):
        raise ValidationError.for_field(
            "status", f"Campaign is {campaign.status.value} and cannot be sent", "invalid_status"
        )

    recipients = service.get_campaign_recipients(campaign_id)
    send_campaign_task.delay(str(campaign_id))
    logger.info(f"Queued campaign {campaign_id} for {len(recipients)} recipients by {access.user_id}")

    return CampaignSendResult(queued=True, recipient_count=len(recipients))


@router.get(
    "/campaigns/{campaign_id}/stats",
    response_model=CampaignStats,
    summary="Campaign statistics",
)
def campaign_stats(
    campaign_id: UUID,
    access: AccessContext = Depends(require_admin_role),
    service: CRMEmailService = Depends(get_email_service),
):
    return service.get_campaign_stats(campaign_id)


@router.post(
    "/email-events",
    response_model=SuccessResponse,
    summary="Email open/click webhook",
)
def email_event(
    event: EmailEvent,
    service: CRMEmailService = Depends(get_email_service),
):
    """Provider webhook. Unknown email ids are acknowledged and ignored."""
    if event.type == "opened":
        service.track_email_open(event.email_id)
    else:
        service.track_email_click(event.email_id, event.url)
    return SuccessResponse(message="Event recorded")
