"""
CRM task API endpoints.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core.access import AccessContext
from ..models import TaskPriority, TaskStatus
from ..schemas.common import SuccessResponse
from ..schemas.task import TaskCreate, TaskFilters, TaskListResponse, TaskResponse, TaskStats, TaskUpdate
from ..services.task_service import CRMTaskService
from .dependencies import get_task_service, require_crm_staff


router = APIRouter(tags=["Tasks"])


@router.post(
    "/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create task",
)
def create_task(
    data: TaskCreate,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMTaskService = Depends(get_task_service),
):
    if data.created_by is None:
        data = data.model_copy(update={"created_by": access.user_id})
    return service.create_task(data, access)


@router.get(
    "/tasks",
    response_model=TaskListResponse,
    summary="List tasks",
)
def list_tasks(
    contact_id: Optional[UUID] = Query(None),
    assigned_to: Optional[str] = Query(None),
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
    priority: Optional[TaskPriority] = Query(None),
    overdue: bool = Query(False),
    due_before: Optional[datetime] = Query(None),
    due_after: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    access: AccessContext = Depends(require_crm_staff),
    service: CRMTaskService = Depends(get_task_service),
):
    filters = TaskFilters(
        contact_id=contact_id,
        assigned_to=assigned_to,
        status=status_filter,
        priority=priority,
        overdue=overdue,
        due_before=due_before,
        due_after=due_after,
    )
    return service.list_tasks(filters, page=page, limit=limit, access=access)


@router.get(
    "/tasks/stats",
    response_model=TaskStats,
    summary="Task counts",
)
def task_stats(
    assigned_to: Optional[str] = Query(None, description="Defaults to the caller"),
    access: AccessContext = Depends(require_crm_staff),
    service: CRMTaskService = Depends(get_task_service),
):
    return service.get_task_stats(assigned_to or access.user_id, access=access)


@router.get(
    "/tasks/{task_id}",
    response_model=TaskResponse,
    summary="Get task",
)
def get_task(
    task_id: UUID,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMTaskService = Depends(get_task_service),
):
    return service.get_task(task_id, access)


@router.patch(
    "/tasks/{task_id}",
    response_model=TaskResponse,
    summary="Update task",
)
def update_task(
    task_id: UUID,
    patch: TaskUpdate,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMTaskService = Depends(get_task_service),
):
    return service.update_task(task_id, patch, updated_by=access.user_id, access=access)


@router.delete(
    "/tasks/{task_id}",
    response_model=SuccessResponse,
    summary="Delete task",
)
def delete_task(
    task_id: UUID,
    access: AccessContext = Depends(require_crm_staff),
    service: CRMTaskService = Depends(get_task_service),
):
    service.delete_task(task_id, access)
    return SuccessResponse(message="Task deleted")
