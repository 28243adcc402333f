"""
Celery tasks for CRM background work.

Provides:
- Campaign delivery (on demand and for scheduled campaigns)
- Hourly lead score refresh

None of these tasks auto-retry: a retried campaign send would email
recipients twice. Delivery claims the campaign with a conditional status
update first, so a second task for the same campaign stops with a
ValidationError instead of sending again.
"""

import logging
from typing import Any, Dict
from uuid import UUID

from celery import shared_task
from sqlalchemy.orm import Session

from ..core.database import SessionLocal, get_engine
from ..services.campaigns import CRMEmailService
from ..services.lead_scoring import CRMLeadScoringService


logger = logging.getLogger(__name__)


def get_db_session() -> Session:
    """Create a new database session for task execution."""
    get_engine()
    return SessionLocal()


@shared_task(acks_late=False)
def send_campaign_task(campaign_id: str) -> Dict[str, Any]:
    """Deliver a campaign to all of its recipients."""
    db = get_db_session()
    try:
        result = CRMEmailService(db).send_campaign(UUID(campaign_id))
        return {
            "status": "success",
            "campaign_id": campaign_id,
            "recipient_count": result.recipient_count,
            "sent_count": result.sent_count,
        }
    except Exception as e:
        logger.error(f"Error sending campaign {campaign_id}: {e}")
        db.rollback()
        raise
    finally:
        db.close()


@shared_task
def send_due_campaigns_task() -> Dict[str, Any]:
    """Periodic task: deliver scheduled campaigns whose time has come."""
    db = get_db_session()
    try:
        delivered = CRMEmailService(db).send_due_campaigns()
        if delivered:
            logger.info(f"Delivered {delivered} scheduled campaign(s)")
        return {"status": "success", "delivered": delivered}
    finally:
        db.close()


@shared_task
def batch_update_scores_task(limit: int = 100) -> Dict[str, Any]:
    """Periodic task: refresh stale lead scores."""
    db = get_db_session()
    try:
        stats = CRMLeadScoringService(db).batch_update_scores(limit=limit)
        return {"status": "success", **stats}
    finally:
        db.close()
