"""
Email campaign service.

Provides:
- Campaign drafting and listing
- Segment-based recipient selection
- Batched delivery with a pause between batches (provider rate limit)
- Per-recipient personalisation ({{firstName}}, {{lastName}}, {{fullName}})
- Open/click tracking and campaign statistics

Delivery runs in a Celery worker (see tasks.crm_tasks), never in a request.
"""

import logging
import time
from datetime import datetime
from typing import Callable, List, Optional, Union
from uuid import UUID

from jinja2 import TemplateError, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import NotFoundError, NotificationError, ValidationError, coerce_input
from ..core.transactions import transaction
from ..models import (
    CRMContact,
    CRMContactTag,
    CRMEmailActivity,
    CRMEmailCampaign,
    CampaignStatus,
    EmailActivityStatus,
)
from ..schemas.campaign import (
    CampaignCreate,
    CampaignListResponse,
    CampaignResponse,
    CampaignSendResult,
    CampaignStats,
    SegmentRules,
)
from ..schemas.common import total_pages
from .notifications import EmailProvider, build_email_provider


logger = logging.getLogger(__name__)

# Campaign bodies are authored in the dashboard, so they render sandboxed
_html_env = SandboxedEnvironment(autoescape=True)
_text_env = SandboxedEnvironment(autoescape=False)

_SENDABLE = (CampaignStatus.DRAFT, CampaignStatus.SCHEDULED)


def personalize(template: str, first_name: str, last_name: str, html: bool = True) -> str:
    """Render merge fields for one recipient."""
    env = _html_env if html else _text_env
    return env.from_string(template).render(
        firstName=first_name,
        lastName=last_name,
        fullName=f"{first_name} {last_name}".strip(),
    )


def _check_template(field: str, template: Optional[str]) -> None:
    if template is None:
        return
    try:
        _text_env.parse(template)
    except TemplateSyntaxError as e:
        raise ValidationError.for_field(
            field, f"Template error on line {e.lineno}: {e.message}", "invalid_template"
        ) from e


def _not_sendable(campaign: CRMEmailCampaign) -> ValidationError:
    return ValidationError.for_field(
        "status", f"Campaign is {campaign.status.value} and cannot be sent", "invalid_status"
    )


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole > 0 else 0.0


class CRMEmailService:
    """Campaign management and delivery."""

    def __init__(
        self,
        db: Session,
        provider: Optional[EmailProvider] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.provider = provider if provider is not None else build_email_provider()
        self._sleep = sleep

    # =========================================================================
    # Campaigns
    # =========================================================================

    def create_campaign(self, data: Union[CampaignCreate, dict]) -> CRMEmailCampaign:
        data = coerce_input(CampaignCreate, data)
        for field in ("subject", "html_body", "plain_text_body"):
            _check_template(field, getattr(data, field))

        campaign = CRMEmailCampaign(
            name=data.name,
            subject=data.subject,
            html_body=data.html_body,
            plain_text_body=data.plain_text_body,
            from_name=data.from_name or settings.from_name,
            from_email=data.from_email or settings.from_email,
            reply_to=data.reply_to,
            segment_rules=data.segment_rules.model_dump(mode="json", exclude_none=True)
            if data.segment_rules else None,
            status=CampaignStatus.DRAFT,
            created_by=data.created_by,
        )

        with transaction(self.db):
            self.db.add(campaign)

        logger.info(f"Created campaign {campaign.id} ({campaign.name})")
        return campaign

    def get_campaign(self, campaign_id: UUID) -> CRMEmailCampaign:
        campaign = self.db.query(CRMEmailCampaign).filter(CRMEmailCampaign.id == campaign_id).first()
        if campaign is None:
            raise NotFoundError("Campaign not found")
        return campaign

    def list_campaigns(
        self,
        status: Optional[CampaignStatus] = None,
        created_by: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> CampaignListResponse:
        if page < 1 or limit < 1 or limit > 100:
            raise ValidationError("page must be >= 1 and limit between 1 and 100")

        query = self.db.query(CRMEmailCampaign)
        if status:
            query = query.filter(CRMEmailCampaign.status == status)
        if created_by:
            query = query.filter(CRMEmailCampaign.created_by == created_by)

        total = query.count()
        campaigns = (
            query.order_by(CRMEmailCampaign.created_at.desc(), CRMEmailCampaign.id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return CampaignListResponse(
            campaigns=[CampaignResponse.model_validate(c) for c in campaigns],
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages(total, limit),
        )

    def get_campaign_recipients(self, campaign_id: UUID) -> List[CRMContact]:
        """Contacts matching the campaign's segment rules."""
        campaign = self.get_campaign(campaign_id)
        rules = SegmentRules.model_validate(campaign.segment_rules or {})

        query = self.db.query(CRMContact).filter(CRMContact.deleted_at.is_(None))
        if rules.stages:
            query = query.filter(CRMContact.stage.in_(rules.stages))
        if rules.contact_types:
            query = query.filter(CRMContact.contact_type.in_(rules.contact_types))
        if rules.tags:
            tagged = self.db.query(CRMContactTag.contact_id).filter(CRMContactTag.tag_id.in_(rules.tags))
            query = query.filter(CRMContact.id.in_(tagged))
        if rules.lead_score_min is not None:
            query = query.filter(CRMContact.lead_score >= rules.lead_score_min)
        if rules.lead_score_max is not None:
            query = query.filter(CRMContact.lead_score <= rules.lead_score_max)

        return query.order_by(CRMContact.created_at.asc(), CRMContact.id.asc()).all()

    # =========================================================================
    # Sending
    # =========================================================================

    def _from_address(self, campaign: CRMEmailCampaign) -> str:
        return f"{campaign.from_name} <{campaign.from_email}>"

    def _claim(self, campaign: CRMEmailCampaign, from_statuses) -> bool:
        """
        Move the campaign to SENDING if it is still in one of ``from_statuses``.

        The status check and the write are one conditional UPDATE, so of two
        senders racing for the same campaign only one gets the row.
        """
        with transaction(self.db):
            claimed = (
                self.db.query(CRMEmailCampaign)
                .filter(
                    CRMEmailCampaign.id == campaign.id,
                    CRMEmailCampaign.status.in_(from_statuses),
                )
                .update({CRMEmailCampaign.status: CampaignStatus.SENDING}, synchronize_session=False)
            )
        self.db.refresh(campaign)
        return claimed == 1

    def send_campaign(
        self,
        campaign_id: UUID,
        schedule_at: Optional[datetime] = None,
        test_email: Optional[str] = None,
    ) -> CampaignSendResult:
        """
        Send, schedule or test-send a campaign.

        A test send goes to one address and leaves the campaign untouched.

        Raises:
            NotFoundError: unknown campaign
            ValidationError: campaign already sent or being sent, bad schedule
        """
        campaign = self.get_campaign(campaign_id)

        if test_email:
            return self._test_send(campaign, test_email)

        if campaign.status not in _SENDABLE:
            raise _not_sendable(campaign)

        if schedule_at is not None:
            if schedule_at.tzinfo is None or schedule_at <= utcnow():
                raise ValidationError.for_field(
                    "schedule_at", "schedule_at must be a timezone-aware time in the future", "invalid_schedule"
                )
            recipients = self.get_campaign_recipients(campaign.id)
            with transaction(self.db):
                scheduled = (
                    self.db.query(CRMEmailCampaign)
                    .filter(
                        CRMEmailCampaign.id == campaign.id,
                        CRMEmailCampaign.status.in_(_SENDABLE),
                    )
                    .update(
                        {
                            CRMEmailCampaign.status: CampaignStatus.SCHEDULED,
                            CRMEmailCampaign.scheduled_at: schedule_at,
                            CRMEmailCampaign.recipient_count: len(recipients),
                        },
                        synchronize_session=False,
                    )
                )
            self.db.refresh(campaign)
            if not scheduled:
                raise _not_sendable(campaign)

            logger.info(f"Scheduled campaign {campaign.id} for {schedule_at.isoformat()}")
            return CampaignSendResult(
                scheduled=True,
                scheduled_at=schedule_at,
                recipient_count=len(recipients),
            )

        if not self._claim(campaign, _SENDABLE):
            logger.warning(f"Campaign {campaign.id} was claimed by another sender")
            raise _not_sendable(campaign)
        return self._deliver(campaign)

    def _test_send(self, campaign: CRMEmailCampaign, test_email: str) -> CampaignSendResult:
        try:
            subject = "[TEST] " + personalize(campaign.subject, "Test", "User", html=False)
            html = personalize(campaign.html_body, "Test", "User")
        except TemplateError as e:
            raise ValidationError.for_field(
                "html_body", f"Campaign template failed to render: {e}", "invalid_template"
            ) from e

        result = self.provider.send(self._from_address(campaign), test_email, subject, html)
        logger.info(f"Test send of campaign {campaign.id} accepted ({result.id})")
        return CampaignSendResult(test_email_id=result.id)

    def _deliver(self, campaign: CRMEmailCampaign) -> CampaignSendResult:
        """Send a claimed (SENDING) campaign to every recipient."""
        recipients = self.get_campaign_recipients(campaign.id)

        with transaction(self.db):
            campaign.recipient_count = len(recipients)

        batch_size = max(1, settings.campaign_batch_size)
        sent = 0

        try:
            for start in range(0, len(recipients), batch_size):
                for contact in recipients[start:start + batch_size]:
                    # Each activity row commits with its own send
                    with transaction(self.db):
                        if self._send_one(campaign, contact):
                            sent += 1
                        campaign.sent_count = sent

                if start + batch_size < len(recipients):
                    self._sleep(settings.campaign_batch_delay_seconds)
        except Exception:
            with transaction(self.db):
                campaign.status = CampaignStatus.FAILED
            logger.error(f"Campaign {campaign.id} failed after {sent} sends")
            raise

        with transaction(self.db):
            campaign.status = (
                CampaignStatus.FAILED if recipients and sent == 0 else CampaignStatus.SENT
            )
            campaign.sent_at = utcnow()
            campaign.sent_count = sent

        logger.info(
            f"Campaign {campaign.id} finished: {sent}/{len(recipients)} sent "
            f"({campaign.status.value})"
        )
        return CampaignSendResult(recipient_count=len(recipients), sent_count=sent)

    def _send_one(self, campaign: CRMEmailCampaign, contact: CRMContact) -> bool:
        """Send to one recipient and record the activity. Returns True on success."""
        subject = personalize(campaign.subject, contact.first_name, contact.last_name, html=False)
        html = personalize(campaign.html_body, contact.first_name, contact.last_name)

        try:
            result = self.provider.send(self._from_address(campaign), contact.email, subject, html)
        except NotificationError as e:
            logger.warning(f"Campaign {campaign.id} send to contact {contact.id} failed: {e}")
            self.db.add(
                CRMEmailActivity(
                    contact_id=contact.id,
                    campaign_id=campaign.id,
                    subject=subject,
                    status=EmailActivityStatus.FAILED,
                )
            )
            return False

        self.db.add(
            CRMEmailActivity(
                contact_id=contact.id,
                campaign_id=campaign.id,
                subject=subject,
                email_id=result.id,
                status=EmailActivityStatus.SENT,
            )
        )
        return True

    def send_due_campaigns(self, now: Optional[datetime] = None) -> int:
        """Deliver scheduled campaigns whose time has come."""
        now = now or utcnow()
        due = (
            self.db.query(CRMEmailCampaign)
            .filter(
                CRMEmailCampaign.status == CampaignStatus.SCHEDULED,
                CRMEmailCampaign.scheduled_at <= now,
            )
            .order_by(CRMEmailCampaign.scheduled_at.asc())
            .all()
        )

        delivered = 0
        for campaign in due:
            if not self._claim(campaign, (CampaignStatus.SCHEDULED,)):
                logger.info(f"Scheduled campaign {campaign.id} already claimed, skipping")
                continue
            try:
                self._deliver(campaign)
                delivered += 1
            except Exception as e:
                logger.error(f"Scheduled campaign {campaign.id} failed: {type(e).__name__}: {e}")
        return delivered

    # =========================================================================
    # Tracking
    # =========================================================================

    def _activity(self, email_id: str) -> Optional[CRMEmailActivity]:
        return self.db.query(CRMEmailActivity).filter(CRMEmailActivity.email_id == email_id).first()

    def track_email_open(self, email_id: str) -> bool:
        """Record the first open of an email. Returns False for unknown ids."""
        activity = self._activity(email_id)
        if activity is None:
            logger.warning(f"Open event for unknown email {email_id}")
            return False
        if activity.opened_at is not None:
            return True

        with transaction(self.db):
            activity.opened_at = utcnow()
            if activity.status == EmailActivityStatus.SENT:
                activity.status = EmailActivityStatus.OPENED
            if activity.campaign is not None:
                activity.campaign.opened_count += 1

        logger.info(f"Recorded open for email {email_id}")
        return True

    def track_email_click(self, email_id: str, url: Optional[str] = None) -> bool:
        """
        Record a click. The first click counts once per email; a click on an
        email never seen as opened also counts as its open.
        """
        activity = self._activity(email_id)
        if activity is None:
            logger.warning(f"Click event for unknown email {email_id}")
            return False

        with transaction(self.db):
            now = utcnow()
            campaign = activity.campaign
            if activity.opened_at is None:
                activity.opened_at = now
                if campaign is not None:
                    campaign.opened_count += 1
            if activity.clicked_at is None:
                activity.clicked_at = now
                if campaign is not None:
                    campaign.clicked_count += 1
            activity.status = EmailActivityStatus.CLICKED
            if url:
                activity.clicked_urls = [*(activity.clicked_urls or []), url]

        logger.info(f"Recorded click for email {email_id}")
        return True

    def get_campaign_stats(self, campaign_id: UUID) -> CampaignStats:
        campaign = self.get_campaign(campaign_id)
        return CampaignStats(
            sent_count=campaign.sent_count,
            opened_count=campaign.opened_count,
            clicked_count=campaign.clicked_count,
            bounced_count=campaign.bounced_count,
            open_rate=_rate(campaign.opened_count, campaign.sent_count),
            click_rate=_rate(campaign.clicked_count, campaign.sent_count),
            bounce_rate=_rate(campaign.bounced_count, campaign.sent_count),
            click_to_open_rate=_rate(campaign.clicked_count, campaign.opened_count),
        )

