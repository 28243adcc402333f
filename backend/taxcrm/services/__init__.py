"""
Business logic services for the CRM.

Contains all business logic separated from the API layer. Services take a
SQLAlchemy session (and, where they send email, a provider or dispatcher)
in their constructor.
"""

from .contact_service import CRMService
from .task_service import CRMTaskService
from .lead_scoring import CRMLeadScoringService
from .campaigns import CRMEmailService
from .notifications import (
    NotificationDispatcher,
    ResendEmailProvider,
    SMTPEmailProvider,
    SendResult,
    build_email_provider,
)

__all__ = [
    "CRMService",
    "CRMTaskService",
    "CRMLeadScoringService",
    "CRMEmailService",
    "NotificationDispatcher",
    "ResendEmailProvider",
    "SMTPEmailProvider",
    "SendResult",
    "build_email_provider",
]
