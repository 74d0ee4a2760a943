# collablist/task_store.py
# Task CRUD scoped to a list. The list passed in is the authorization scope:
# every lookup filters on it, and a task's list_id is never taken from a payload.

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import ledger
from .access import Role, require_role
from .db_models import ListDB, ListMemberDB, TaskDB, now_utc
from .errors import NotFound
from .models import TaskCreate, TaskUpdate


# --- Helpers ---------------------------------------------------------------


def _epoch_ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def _class_filter(query, recurring: bool):
    """Restrict a TaskDB query to one recurrence class."""
    if recurring:
        return query.filter(TaskDB.repeat.isnot(None))
    return query.filter(TaskDB.repeat.is_(None))


def _next_order(db: Session, list_id: int, recurring: bool) -> int:
    query = db.query(func.max(TaskDB.order)).filter(TaskDB.list_id == list_id)
    current = _class_filter(query, recurring).scalar()
    return int(current) + 1 if current is not None else 1


def _ordered(query):
    # stable secondary ordering for legacy rows that share an order value
    return query.order_by(TaskDB.order.asc(), TaskDB.created_at.asc(), TaskDB.id.asc())


# --- Reads -----------------------------------------------------------------


def get_task(db: Session, list_id: int, task_id: int) -> Optional[TaskDB]:
    """Fetch a task only if it belongs to `list_id`."""
    return (
        db.query(TaskDB)
        .filter(TaskDB.id == task_id, TaskDB.list_id == list_id)
        .one_or_none()
    )


def list_tasks(db: Session, list_id: int) -> List[TaskDB]:
    return _ordered(db.query(TaskDB).filter(TaskDB.list_id == list_id)).all()


def tasks_for_user(db: Session, user_id: int) -> List[Tuple[TaskDB, str]]:
    """Tasks across every list the user belongs to, with the list name."""
    member_of = db.query(ListMemberDB.list_id).filter(ListMemberDB.user_id == user_id)
    query = (
        db.query(TaskDB, ListDB.name)
        .join(ListDB, ListDB.id == TaskDB.list_id)
        .filter((ListDB.owner_id == user_id) | ListDB.id.in_(member_of))
    )
    return [(task, name) for task, name in _ordered(query).all()]


# --- CRUD: Tasks -----------------------------------------------------------


def create_task(db: Session, lst: ListDB, actor_id: int, data: TaskCreate) -> TaskDB:
    """Create a task at the end of its recurrence class."""
    require_role(actor_id, lst, Role.EDITOR)
    now = now_utc()
    recurring = data.repeat is not None
    row = TaskDB(
        list_id=lst.id,
        user_id=actor_id,
        text=data.text,
        completed=data.completed,
        due=data.due,
        priority=data.priority,
        category=data.category,
        repeat=data.repeat,
        order=_next_order(db, lst.id, recurring),
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def update_task(
    db: Session,
    lst: ListDB,
    actor_id: int,
    task_id: int,
    data: TaskUpdate,
    *,
    now: Optional[datetime] = None,
) -> TaskDB:
    """Partial update. Raises NotFound if the task is not in `lst`."""
    require_role(actor_id, lst, Role.EDITOR)
    row = get_task(db, lst.id, task_id)
    if row is None:
        raise NotFound("Task not found")
    now = now or now_utc()
    changes = data.changes()

    # Recurring task ticked off: remember when
    if row.repeat is not None and changes.get("completed") is True and not row.completed:
        row.last_completed_at = now

    # New due instant -> forget claimed reminder slots so the new time notifies
    new_due = changes.get("due")
    if new_due is not None and _epoch_ms(new_due) != _epoch_ms(row.due):
        ledger.clear_for_task(db, row.id)

    # Moving between recurrence classes appends to the end of the new class
    if "repeat" in changes and (changes["repeat"] is not None) != (row.repeat is not None):
        row.order = _next_order(db, lst.id, changes["repeat"] is not None)

    for field, value in changes.items():
        setattr(row, field, value)
    row.updated_at = now
    db.commit()
    db.refresh(row)
    return row


def delete_task(db: Session, lst: ListDB, actor_id: int, task_id: int) -> int:
    """Delete a task of `lst`; returns its id or raises NotFound."""
    require_role(actor_id, lst, Role.EDITOR)
    row = get_task(db, lst.id, task_id)
    if row is None:
        raise NotFound("Task not found")
    ledger.clear_for_task(db, row.id)
    db.delete(row)
    db.commit()
    return task_id


def reorder_tasks(
    db: Session,
    lst: ListDB,
    actor_id: int,
    ordered_ids: Sequence[int],
    *,
    recurring: Optional[bool] = None,
) -> List[TaskDB]:
    """Renumber one recurrence class (1-based) following `ordered_ids`.

    Ids from another list or the other class are ignored; tasks of the class
    missing from `ordered_ids` keep their order value.
    """
    require_role(actor_id, lst, Role.EDITOR)
    tasks = {t.id: t for t in db.query(TaskDB).filter(TaskDB.list_id == lst.id).all()}
    if recurring is None:
        first = next((tasks[i] for i in ordered_ids if i in tasks), None)
        recurring = bool(first and first.repeat is not None)

    position = 0
    seen = set()
    for task_id in ordered_ids:
        task = tasks.get(task_id)
        if task is None or task_id in seen or (task.repeat is not None) != recurring:
            continue
        seen.add(task_id)
        position += 1
        task.order = position
    db.commit()
    return list_tasks(db, lst.id)


# --- Scheduler queries -----------------------------------------------------


def open_tasks_with_due(db: Session) -> List[TaskDB]:
    """Incomplete tasks that have a due instant (reminder candidates)."""
    return (
        db.query(TaskDB)
        .filter(TaskDB.due.isnot(None), TaskDB.completed.is_(False))
        .order_by(TaskDB.due.asc(), TaskDB.id.asc())
        .all()
    )


def recurring_to_advance(db: Session, now: datetime) -> List[TaskDB]:
    """Recurring tasks that are completed or overdue."""
    return (
        db.query(TaskDB)
        .filter(
            TaskDB.repeat.isnot(None),
            TaskDB.due.isnot(None),
            (TaskDB.completed.is_(True)) | (TaskDB.due < now),
        )
        .order_by(TaskDB.id.asc())
        .all()
    )
