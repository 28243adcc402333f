"""
API route controllers for the CRM.

Contains FastAPI routers for different endpoints.
Routes handle HTTP requests and delegate to services for business logic.
"""

from .health import router as health_router
from .contacts import router as contacts_router
from .tasks import router as tasks_router
from .campaigns import router as campaigns_router

__all__ = [
    "health_router",
    "contacts_router",
    "tasks_router",
    "campaigns_router",
]
