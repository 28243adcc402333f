"""
Tasks and reminders attached to CRM contacts.
"""

import enum
import uuid

from sqlalchemy import Column, String, Text, Uuid, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship

from ..core.database import Base, UTCDateTime, utcnow


class TaskPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TaskStatus(str, enum.Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


CLOSED_TASK_STATUSES = (TaskStatus.DONE, TaskStatus.CANCELLED)

# Enum values sort alphabetically in SQL, so ordering uses an explicit rank.
PRIORITY_RANK = {
    TaskPriority.LOW: 0,
    TaskPriority.MEDIUM: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.URGENT: 3,
}


class CRMTask(Base):
    __tablename__ = "crm_tasks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("crm_contacts.id"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    due_date = Column(UTCDateTime, nullable=True, index=True)
    priority = Column(
        SQLEnum(TaskPriority, name="task_priority"),
        nullable=False,
        default=TaskPriority.MEDIUM,
    )
    status = Column(
        SQLEnum(TaskStatus, name="task_status"),
        nullable=False,
        default=TaskStatus.TODO,
        index=True,
    )

    assigned_to = Column(String(64), nullable=True, index=True)
    created_by = Column(String(64), nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    completed_by = Column(String(64), nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    contact = relationship("CRMContact", back_populates="tasks", lazy="joined")

    def __repr__(self) -> str:
        return f"<CRMTask(id={self.id}, status={self.status.value}, title={self.title!r})>"
