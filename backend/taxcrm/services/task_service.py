"""
Task and reminder management for CRM contacts.
"""

import logging
from datetime import timedelta
from typing import List, Optional, Union
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..core.access import AccessContext, TaxPreparerAccess, check_contact_access
from ..core.database import utcnow
from ..core.exceptions import NotFoundError, ValidationError, coerce_input
from ..core.transactions import transaction
from ..models import CRMContact, CRMTask, TaskStatus
from ..models.task import CLOSED_TASK_STATUSES, PRIORITY_RANK
from ..schemas.common import PaginationParams, total_pages
from ..schemas.task import TaskCreate, TaskFilters, TaskListResponse, TaskResponse, TaskStats, TaskUpdate


logger = logging.getLogger(__name__)

_priority_rank = case(
    *[(CRMTask.priority == priority, rank) for priority, rank in PRIORITY_RANK.items()],
    else_=0,
)


class CRMTaskService:
    """
    Create, list and complete tasks attached to contacts.

    When an access context is passed, tax preparers are limited to tasks on
    contacts assigned to them.
    """

    def __init__(self, db: Session):
        self.db = db

    def _ordered(self, query):
        # Due date ascending with undated tasks last, then most urgent first
        return query.order_by(
            CRMTask.due_date.is_(None),
            CRMTask.due_date.asc(),
            _priority_rank.desc(),
            CRMTask.created_at.desc(),
        )

    def _open(self, query):
        return query.filter(CRMTask.status.notin_(CLOSED_TASK_STATUSES))

    def _scoped(self, query, access: Optional[AccessContext]):
        if isinstance(access, TaxPreparerAccess):
            query = query.join(CRMContact, CRMContact.id == CRMTask.contact_id).filter(
                CRMContact.assigned_preparer_id == access.preparer_id
            )
        return query

    def create_task(self, data: Union[TaskCreate, dict], access: AccessContext) -> CRMTask:
        data = coerce_input(TaskCreate, data)

        contact = (
            self.db.query(CRMContact)
            .filter(CRMContact.id == data.contact_id, CRMContact.deleted_at.is_(None))
            .first()
        )
        if contact is None:
            raise NotFoundError("Contact not found")
        check_contact_access(contact, access)

        task = CRMTask(
            contact_id=contact.id,
            title=data.title.strip(),
            description=data.description,
            due_date=data.due_date,
            priority=data.priority,
            status=TaskStatus.TODO,
            assigned_to=data.assigned_to,
            created_by=data.created_by or access.user_id,
        )

        with transaction(self.db):
            self.db.add(task)

        logger.info(f"Created task {task.id} for contact {contact.id}")
        return task

    def get_task(self, task_id: UUID, access: Optional[AccessContext] = None) -> CRMTask:
        task = self.db.query(CRMTask).filter(CRMTask.id == task_id).first()
        if task is None:
            raise NotFoundError("Task not found")
        if access is not None:
            check_contact_access(task.contact, access)
        return task

    def list_tasks(
        self,
        filters: Union[TaskFilters, dict, None] = None,
        page: int = 1,
        limit: int = 50,
        access: Optional[AccessContext] = None,
    ) -> TaskListResponse:
        filters = coerce_input(TaskFilters, filters or {})
        pagination = coerce_input(PaginationParams, {"page": page, "limit": limit})

        query = self._scoped(self.db.query(CRMTask), access)

        if filters.contact_id:
            query = query.filter(CRMTask.contact_id == filters.contact_id)
        if filters.assigned_to:
            query = query.filter(CRMTask.assigned_to == filters.assigned_to)
        if filters.status:
            query = query.filter(CRMTask.status == filters.status)
        if filters.priority:
            query = query.filter(CRMTask.priority == filters.priority)
        if filters.overdue:
            query = self._open(query).filter(CRMTask.due_date < utcnow())
        if filters.due_before:
            query = query.filter(CRMTask.due_date <= filters.due_before)
        if filters.due_after:
            query = query.filter(CRMTask.due_date >= filters.due_after)

        total = query.count()
        tasks = self._ordered(query).offset(pagination.offset).limit(pagination.limit).all()

        return TaskListResponse(
            tasks=[TaskResponse.model_validate(t) for t in tasks],
            total=total,
            page=pagination.page,
            limit=pagination.limit,
            total_pages=total_pages(total, pagination.limit),
        )

    def update_task(
        self,
        task_id: UUID,
        patch: Union[TaskUpdate, dict],
        updated_by: str,
        access: Optional[AccessContext] = None,
    ) -> CRMTask:
        """
        Partial update. Completing a task stamps completed_at/completed_by;
        reopening clears them.
        """
        task = self.get_task(task_id, access)
        changes = coerce_input(TaskUpdate, patch).model_dump(exclude_unset=True)

        for field in ("title", "priority", "status"):
            if field in changes and changes[field] is None:
                raise ValidationError.for_field(field, f"{field} cannot be null", "required")

        with transaction(self.db):
            new_status = changes.pop("status", None)
            for field, value in changes.items():
                setattr(task, field, value)

            if new_status is not None and new_status != task.status:
                if new_status == TaskStatus.DONE:
                    task.completed_at = utcnow()
                    task.completed_by = updated_by
                elif task.status == TaskStatus.DONE:
                    task.completed_at = None
                    task.completed_by = None
                task.status = new_status

        logger.info(f"Updated task {task.id} by {updated_by}")
        return task

    def delete_task(self, task_id: UUID, access: Optional[AccessContext] = None) -> None:
        task = self.get_task(task_id, access)
        with transaction(self.db):
            self.db.delete(task)
        logger.info(f"Deleted task {task_id}")

    def _assignee(self, assigned_to: Optional[str], access: Optional[AccessContext]) -> Optional[str]:
        # Tax preparers only ever see their own workload
        if isinstance(access, TaxPreparerAccess):
            return access.user_id
        return assigned_to

    def get_tasks_due_soon(
        self,
        assigned_to: str,
        days: int = 7,
        access: Optional[AccessContext] = None,
    ) -> List[CRMTask]:
        now = utcnow()
        query = self._open(self._scoped(self.db.query(CRMTask), access)).filter(
            CRMTask.assigned_to == self._assignee(assigned_to, access),
            CRMTask.due_date >= now,
            CRMTask.due_date <= now + timedelta(days=days),
        )
        return self._ordered(query).all()

    def get_overdue_tasks(
        self,
        assigned_to: Optional[str] = None,
        access: Optional[AccessContext] = None,
    ) -> List[CRMTask]:
        assigned_to = self._assignee(assigned_to, access)
        query = self._open(self._scoped(self.db.query(CRMTask), access)).filter(
            CRMTask.due_date < utcnow()
        )
        if assigned_to:
            query = query.filter(CRMTask.assigned_to == assigned_to)
        return self._ordered(query).all()

    def get_task_stats(
        self,
        assigned_to: Optional[str] = None,
        access: Optional[AccessContext] = None,
    ) -> TaskStats:
        assigned_to = self._assignee(assigned_to, access)
        query = self._scoped(self.db.query(CRMTask.status, func.count(CRMTask.id)), access)
        if assigned_to:
            query = query.filter(CRMTask.assigned_to == assigned_to)
        by_status = {status: count for status, count in query.group_by(CRMTask.status).all()}

        todo = by_status.get(TaskStatus.TODO, 0)
        in_progress = by_status.get(TaskStatus.IN_PROGRESS, 0)

        return TaskStats(
            total=sum(by_status.values()),
            todo=todo,
            in_progress=in_progress,
            done=by_status.get(TaskStatus.DONE, 0),
            overdue=len(self.get_overdue_tasks(assigned_to, access)),
            active=todo + in_progress,
        )
