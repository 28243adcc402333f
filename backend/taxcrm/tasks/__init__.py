"""
Celery tasks package for CRM background work.

Provides background task infrastructure for:
- Campaign delivery
- Scheduled campaign dispatch
- Lead score refresh
"""

from .celery_app import celery_app
from .crm_tasks import (
    send_campaign_task,
    send_due_campaigns_task,
    batch_update_scores_task,
)

__all__ = [
    "celery_app",
    "send_campaign_task",
    "send_due_campaigns_task",
    "batch_update_scores_task",
]
