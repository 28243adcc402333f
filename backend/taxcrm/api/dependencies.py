"""
Service factories for route handlers.

Tests override ``get_email_provider`` to capture outgoing email.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ..core.access import UserRole
from ..core.auth import require_role
from ..core.database import get_db
from ..services.campaigns import CRMEmailService
from ..services.contact_service import CRMService
from ..services.lead_scoring import CRMLeadScoringService
from ..services.notifications import EmailProvider, NotificationDispatcher, build_email_provider
from ..services.task_service import CRMTaskService


# Roles that work inside the CRM (super_admin is implied by admin)
require_crm_staff = require_role(UserRole.ADMIN.value, UserRole.TAX_PREPARER.value)
require_admin_role = require_role(UserRole.ADMIN.value)


def get_email_provider() -> EmailProvider:
    return build_email_provider()


def get_dispatcher(provider: EmailProvider = Depends(get_email_provider)) -> NotificationDispatcher:
    return NotificationDispatcher(provider=provider)


def get_crm_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> CRMService:
    return CRMService(db, dispatcher)


def get_task_service(db: Session = Depends(get_db)) -> CRMTaskService:
    return CRMTaskService(db)


def get_scoring_service(db: Session = Depends(get_db)) -> CRMLeadScoringService:
    return CRMLeadScoringService(db)


def get_email_service(
    db: Session = Depends(get_db),
    provider: EmailProvider = Depends(get_email_provider),
) -> CRMEmailService:
    return CRMEmailService(db, provider)
