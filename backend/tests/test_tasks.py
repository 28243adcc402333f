"""Task manager."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from taxcrm.core.exceptions import AccessDeniedError, NotFoundError, ValidationError
from taxcrm.models import TaskPriority, TaskStatus
from taxcrm.services.task_service import CRMTaskService


def _in(days):
    return datetime.now(timezone.utc) + timedelta(days=days)


@pytest.fixture
def tasks(db):
    return CRMTaskService(db)


@pytest.fixture
def contact(make_contact):
    return make_contact(assigned_preparer_id="prep-1")


def test_create_defaults(tasks, contact, admin):
    task = tasks.create_task({"contact_id": contact.id, "title": "  Collect W-2  "}, admin)
    assert task.title == "Collect W-2"
    assert task.status == TaskStatus.TODO
    assert task.priority == TaskPriority.MEDIUM
    assert task.created_by == "admin-1"


def test_create_for_unknown_contact(tasks, admin):
    with pytest.raises(NotFoundError):
        tasks.create_task({"contact_id": uuid.uuid4(), "title": "x"}, admin)


def test_create_gated(tasks, contact, other_preparer):
    with pytest.raises(AccessDeniedError):
        tasks.create_task({"contact_id": contact.id, "title": "x"}, other_preparer)


def test_list_ordering(tasks, contact, admin):
    soon = _in(1)
    tasks.create_task({"contact_id": contact.id, "title": "undated"}, admin)
    tasks.create_task({"contact_id": contact.id, "title": "later", "due_date": _in(5)}, admin)
    tasks.create_task(
        {"contact_id": contact.id, "title": "soon-low", "due_date": soon, "priority": "LOW"},
        admin,
    )
    tasks.create_task(
        {"contact_id": contact.id, "title": "soon-urgent", "due_date": soon, "priority": "URGENT"},
        admin,
    )

    result = tasks.list_tasks()
    assert [t.title for t in result.tasks] == ["soon-urgent", "soon-low", "later", "undated"]
    assert result.total == 4


def test_list_filters(tasks, contact, admin):
    overdue = tasks.create_task(
        {"contact_id": contact.id, "title": "late", "due_date": _in(-2), "assigned_to": "u1"}, admin
    )
    done = tasks.create_task({"contact_id": contact.id, "title": "done", "due_date": _in(-2)}, admin)
    tasks.update_task(done.id, {"status": "DONE"}, updated_by="u1")
    tasks.create_task({"contact_id": contact.id, "title": "future", "due_date": _in(3)}, admin)

    assert [t.id for t in tasks.list_tasks({"overdue": True}).tasks] == [overdue.id]
    assert [t.title for t in tasks.list_tasks({"assigned_to": "u1"}).tasks] == ["late"]
    assert [t.title for t in tasks.list_tasks({"status": "DONE"}).tasks] == ["done"]
    assert tasks.list_tasks({"due_after": _in(1)}).total == 1


def test_list_scoped_for_preparer(tasks, make_contact, contact, admin, preparer):
    other = make_contact(assigned_preparer_id="prep-2")
    tasks.create_task({"contact_id": contact.id, "title": "mine"}, admin)
    tasks.create_task({"contact_id": other.id, "title": "theirs"}, admin)

    assert [t.title for t in tasks.list_tasks(access=preparer).tasks] == ["mine"]
    assert tasks.list_tasks(access=admin).total == 2


def test_complete_and_reopen(tasks, contact, admin):
    task = tasks.create_task({"contact_id": contact.id, "title": "Review"}, admin)

    done = tasks.update_task(task.id, {"status": "DONE"}, updated_by="user-9")
    assert done.completed_at is not None
    assert done.completed_by == "user-9"

    reopened = tasks.update_task(task.id, {"status": "IN_PROGRESS"}, updated_by="user-9")
    assert reopened.status == TaskStatus.IN_PROGRESS
    assert reopened.completed_at is None
    assert reopened.completed_by is None


def test_update_rejects_null_title(tasks, contact, admin):
    task = tasks.create_task({"contact_id": contact.id, "title": "Review"}, admin)
    with pytest.raises(ValidationError):
        tasks.update_task(task.id, {"title": None}, updated_by="u1")


def test_get_task_gated(tasks, contact, admin, other_preparer, preparer):
    task = tasks.create_task({"contact_id": contact.id, "title": "Review"}, admin)
    assert tasks.get_task(task.id, preparer).id == task.id
    with pytest.raises(AccessDeniedError):
        tasks.get_task(task.id, other_preparer)


def test_delete(tasks, contact, admin):
    task = tasks.create_task({"contact_id": contact.id, "title": "Review"}, admin)
    tasks.delete_task(task.id)
    with pytest.raises(NotFoundError):
        tasks.get_task(task.id)


def test_due_soon_and_overdue(tasks, contact, admin):
    tasks.create_task({"contact_id": contact.id, "title": "soon", "due_date": _in(2), "assigned_to": "u1"}, admin)
    tasks.create_task({"contact_id": contact.id, "title": "far", "due_date": _in(30), "assigned_to": "u1"}, admin)
    tasks.create_task({"contact_id": contact.id, "title": "late", "due_date": _in(-1), "assigned_to": "u1"}, admin)

    assert [t.title for t in tasks.get_tasks_due_soon("u1")] == ["soon"]
    assert [t.title for t in tasks.get_overdue_tasks("u1")] == ["late"]
    assert tasks.get_overdue_tasks("someone-else") == []


def test_stats(tasks, contact, admin):
    a = tasks.create_task({"contact_id": contact.id, "title": "a", "assigned_to": "u1"}, admin)
    tasks.create_task({"contact_id": contact.id, "title": "b", "assigned_to": "u1", "due_date": _in(-1)}, admin)
    c = tasks.create_task({"contact_id": contact.id, "title": "c", "assigned_to": "u1"}, admin)
    tasks.create_task({"contact_id": contact.id, "title": "x", "assigned_to": "u2"}, admin)
    tasks.update_task(a.id, {"status": "IN_PROGRESS"}, updated_by="u1")
    tasks.update_task(c.id, {"status": "DONE"}, updated_by="u1")

    stats = tasks.get_task_stats("u1")
    assert stats.total == 3
    assert stats.todo == 1
    assert stats.in_progress == 1
    assert stats.done == 1
    assert stats.overdue == 1
    assert stats.active == 2


def test_preparer_workload_is_scoped(tasks, make_contact, admin, preparer):
    mine = make_contact(assigned_preparer_id="prep-1")
    theirs = make_contact(assigned_preparer_id="prep-2")
    tasks.create_task({"contact_id": mine.id, "title": "own", "assigned_to": "user-p1", "due_date": _in(-1)}, admin)
    tasks.create_task({"contact_id": theirs.id, "title": "p2", "assigned_to": "user-p2", "due_date": _in(-1)}, admin)
    tasks.create_task({"contact_id": theirs.id, "title": "p2-mine", "assigned_to": "user-p1", "due_date": _in(2)}, admin)

    # assigned_to is ignored for preparers; only their tasks on their contacts count
    stats = tasks.get_task_stats("user-p2", access=preparer)
    assert stats.total == 1
    assert stats.overdue == 1

    assert [t.title for t in tasks.get_overdue_tasks("user-p2", access=preparer)] == ["own"]
    assert tasks.get_tasks_due_soon("user-p1", access=preparer) == []

    assert tasks.get_task_stats("user-p2", access=admin).total == 1
