"""Notification dedupe ledger.

A (task, due instant, stage) slot is claimed with a single INSERT backed by the
`uq_notification_slot` unique constraint. Whoever commits the row first owns
the reminder; every other sweep, worker or overlapping run gets `False`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .db_models import NotificationLogDB, TaskDB, now_utc

logger = logging.getLogger(__name__)

STAGES = ("15min", "5min", "0min")


def claim(
    db: Session,
    *,
    task_id: int,
    list_id: int,
    due: datetime,
    stage: str,
    now: Optional[datetime] = None,
) -> bool:
    """Atomically claim a reminder slot. Returns False if it was already claimed."""
    if stage not in STAGES:
        raise ValueError(f"unknown stage: {stage!r}")
    db.add(NotificationLogDB(task_id=task_id, list_id=list_id, due=due, stage=stage, sent_at=now or now_utc()))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug("ledger slot already claimed task_id=%s due=%s stage=%s", task_id, due, stage)
        return False
    return True


def entries_for_task(db: Session, task_id: int) -> List[NotificationLogDB]:
    return list(db.scalars(select(NotificationLogDB).where(NotificationLogDB.task_id == task_id)))


def clear_for_task(db: Session, task_id: int) -> int:
    """Delete every slot of a task (re-arms reminders). Caller commits."""
    return db.query(NotificationLogDB).filter(NotificationLogDB.task_id == task_id).delete(
        synchronize_session=False
    )


def clear_for_list(db: Session, list_id: int) -> int:
    """Delete every slot belonging to the list's tasks. Caller commits."""
    task_ids = select(TaskDB.id).where(TaskDB.list_id == list_id)
    return (
        db.query(NotificationLogDB)
        .filter((NotificationLogDB.list_id == list_id) | NotificationLogDB.task_id.in_(task_ids))
        .delete(synchronize_session=False)
    )


def prune_expired(db: Session, *, now: datetime, retention_seconds: int) -> int:
    """Rolling retention: drop slots created more than `retention_seconds` ago."""
    cutoff = now - timedelta(seconds=retention_seconds)
    deleted = (
        db.query(NotificationLogDB)
        .filter(NotificationLogDB.sent_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted
