"""
Lead Scoring Service.

Scores contacts 0-100 from four signals:
- Email engagement (0-25): open and click rates over recent email activity
- Interactions (0-25): volume of logged interactions plus recent activity
- Pipeline stage (0-30): how far the contact has progressed
- Recency (0-20): days since the contact was last reached

Scores are recalculated on demand and hourly by a Celery beat task. Every
change writes a CRMLeadScore row so the current score can be explained.
"""

import logging
from datetime import timedelta
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..core.access import AccessContext, check_contact_access
from ..core.database import utcnow
from ..core.exceptions import NotFoundError, ValidationError
from ..core.transactions import transaction
from ..models import (
    CRMContact,
    CRMEmailActivity,
    CRMInteraction,
    CRMLeadScore,
    EmailActivityStatus,
    PipelineStage,
    INACTIVE_STAGES,
)
from ..schemas.campaign import ScoreBreakdown, ScoreInsights


logger = logging.getLogger(__name__)


# =============================================================================
# Scoring Configuration
# =============================================================================

EMAIL_ACTIVITY_WINDOW = 50
INTERACTION_WINDOW = 20

STAGE_SCORES: Dict[PipelineStage, int] = {
    PipelineStage.NEW: 5,
    PipelineStage.CONTACTED: 10,
    PipelineStage.QUALIFIED: 20,
    PipelineStage.DOCUMENTS: 25,
    PipelineStage.FILED: 30,
    PipelineStage.COMPLETE: 30,
    PipelineStage.CLOSED: 15,
    PipelineStage.LOST: 0,
}

# (max days since last contact, points)
RECENCY_SCORES = [(7, 20), (14, 15), (30, 10), (60, 5)]

# (min interactions, base points), checked top down
INTERACTION_TIERS = [(11, 20), (7, 15), (4, 12), (1, 8)]

HOT_THRESHOLD = 70
WARM_THRESHOLD = 40

RESCORE_AFTER = timedelta(hours=1)

_OPENED = (EmailActivityStatus.OPENED, EmailActivityStatus.CLICKED)


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


class CRMLeadScoringService:
    """Calculates, stores and summarises contact lead scores."""

    def __init__(self, db: Session):
        self.db = db

    def _load_contact(self, contact_id: UUID, access: Optional[AccessContext] = None) -> CRMContact:
        contact = (
            self.db.query(CRMContact)
            .filter(CRMContact.id == contact_id, CRMContact.deleted_at.is_(None))
            .first()
        )
        if contact is None:
            raise NotFoundError("Contact not found")
        if access is not None:
            check_contact_access(contact, access)
        return contact

    # =========================================================================
    # Components
    # =========================================================================

    def _email_engagement_score(self, contact_id: UUID) -> int:
        activities = (
            self.db.query(CRMEmailActivity)
            .filter(CRMEmailActivity.contact_id == contact_id)
            .order_by(CRMEmailActivity.sent_at.desc())
            .limit(EMAIL_ACTIVITY_WINDOW)
            .all()
        )
        if not activities:
            return 0

        opened = sum(1 for a in activities if a.opened_at is not None or a.status in _OPENED)
        clicked = sum(
            1 for a in activities
            if a.clicked_at is not None or a.status == EmailActivityStatus.CLICKED
        )
        open_rate = opened / len(activities)
        click_rate = clicked / len(activities)

        return _round_half_up(min(15, open_rate * 25) + min(10, click_rate * 50))

    def _interaction_score(self, contact_id: UUID) -> int:
        interactions = (
            self.db.query(CRMInteraction.occurred_at)
            .filter(CRMInteraction.contact_id == contact_id)
            .order_by(CRMInteraction.occurred_at.desc())
            .limit(INTERACTION_WINDOW)
            .all()
        )
        count = len(interactions)
        base = next((points for minimum, points in INTERACTION_TIERS if count >= minimum), 0)

        cutoff = utcnow() - timedelta(days=30)
        recent = sum(1 for (occurred_at,) in interactions if occurred_at >= cutoff)

        return _round_half_up(min(25, base + min(5, recent * 1.5)))

    def _recency_score(self, contact: CRMContact) -> int:
        if contact.last_contacted_at is None:
            return 0
        days = (utcnow() - contact.last_contacted_at).days
        return next((points for max_days, points in RECENCY_SCORES if days <= max_days), 0)

    # =========================================================================
    # Public API
    # =========================================================================

    def calculate_lead_score(self, contact_id: UUID, access: Optional[AccessContext] = None) -> ScoreBreakdown:
        """Compute the score without storing it."""
        contact = self._load_contact(contact_id, access)

        email_engagement = self._email_engagement_score(contact.id)
        interactions = self._interaction_score(contact.id)
        stage = STAGE_SCORES.get(contact.stage, 0)
        recency = self._recency_score(contact)

        return ScoreBreakdown(
            email_engagement=email_engagement,
            interactions=interactions,
            stage=stage,
            recency=recency,
            total=min(100, email_engagement + interactions + stage + recency),
        )

    def update_contact_score(
        self,
        contact_id: UUID,
        changed_by: str = "system",
        access: Optional[AccessContext] = None,
    ) -> ScoreBreakdown:
        """Recalculate and store the score plus a history row."""
        breakdown = self.calculate_lead_score(contact_id, access)
        contact = self._load_contact(contact_id)

        with transaction(self.db):
            contact.lead_score = breakdown.total
            contact.last_scored_at = utcnow()
            self.db.add(
                CRMLeadScore(
                    contact_id=contact.id,
                    score=breakdown.total,
                    breakdown=breakdown.model_dump(),
                    reason="Automatic recalculation",
                    changed_by=changed_by,
                )
            )

        logger.info(f"Lead score for contact {contact.id} is now {breakdown.total}")
        return breakdown

    def manual_score_adjustment(
        self,
        contact_id: UUID,
        score: int,
        reason: str,
        changed_by: str,
        access: Optional[AccessContext] = None,
    ) -> CRMLeadScore:
        if score < 0 or score > 100:
            raise ValidationError.for_field("score", "Score must be between 0 and 100", "out_of_range")
        if not reason or not reason.strip():
            raise ValidationError.for_field("reason", "A reason is required", "required")

        contact = self._load_contact(contact_id, access)
        entry = CRMLeadScore(
            contact_id=contact.id,
            score=score,
            reason=reason.strip(),
            changed_by=changed_by,
        )

        with transaction(self.db):
            contact.lead_score = score
            contact.last_scored_at = utcnow()
            self.db.add(entry)

        logger.info(f"Lead score for contact {contact.id} manually set to {score} by {changed_by}")
        return entry

    def batch_update_scores(self, limit: int = 100) -> Dict[str, int]:
        """
        Rescore active contacts that were never scored or are stale.

        A failure on one contact is logged and counted; the batch continues.
        """
        stale_before = utcnow() - RESCORE_AFTER
        contact_ids = [
            contact_id
            for (contact_id,) in self.db.query(CRMContact.id)
            .filter(
                CRMContact.deleted_at.is_(None),
                CRMContact.stage.notin_(INACTIVE_STAGES),
                or_(CRMContact.last_scored_at.is_(None), CRMContact.last_scored_at < stale_before),
            )
            .order_by(CRMContact.last_scored_at.isnot(None), CRMContact.last_scored_at.asc())
            .limit(limit)
            .all()
        ]

        updated = 0
        failed = 0
        for contact_id in contact_ids:
            try:
                self.update_contact_score(contact_id)
                updated += 1
            except Exception as e:
                failed += 1
                logger.error(f"Failed to rescore contact {contact_id}: {type(e).__name__}: {e}")

        logger.info(f"Batch rescoring finished: {updated} updated, {failed} failed")
        return {"processed": len(contact_ids), "updated": updated, "failed": failed}

    def get_score_history(
        self,
        contact_id: UUID,
        limit: int = 20,
        access: Optional[AccessContext] = None,
    ) -> List[CRMLeadScore]:
        contact = self._load_contact(contact_id, access)
        return (
            self.db.query(CRMLeadScore)
            .filter(CRMLeadScore.contact_id == contact.id)
            .order_by(CRMLeadScore.created_at.desc())
            .limit(limit)
            .all()
        )

    def get_score_insights(self) -> ScoreInsights:
        """Score distribution across active contacts."""
        active = self.db.query(CRMContact).filter(
            CRMContact.deleted_at.is_(None),
            CRMContact.stage.notin_(INACTIVE_STAGES),
        )

        total = active.count()
        average = active.with_entities(func.avg(CRMContact.lead_score)).scalar() or 0
        hot = active.filter(CRMContact.lead_score >= HOT_THRESHOLD).count()
        warm = active.filter(
            CRMContact.lead_score >= WARM_THRESHOLD,
            CRMContact.lead_score < HOT_THRESHOLD,
        ).count()
        cold = total - hot - warm

        def pct(n: int) -> int:
            return _round_half_up(n / total * 100) if total else 0

        return ScoreInsights(
            average_score=_round_half_up(float(average)),
            total=total,
            hot_leads=hot,
            warm_leads=warm,
            cold_leads=cold,
            distribution={"hot": pct(hot), "warm": pct(warm), "cold": pct(cold)},
        )
