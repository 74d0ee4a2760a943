"""Reminder and recurrence sweep.

Every `interval` seconds (at most one minute), on a fixed schedule:

1. each incomplete task with a due instant is checked against the reminder
   stages (15min / 5min / 0min). Stage N is active while the whole minutes left
   until due equal N, i.e. N*60 <= seconds_left < N*60 + 60. A stage also counts
   when its minute fell between the previous sweep and this one, so a late tick
   never skips it. The (task, due, stage) slot is then claimed in the ledger and,
   only if the claim wins, `task:reminder` goes to every member's personal room
   and a push to every member subscription;
2. recurring tasks that are completed or overdue move to their next due
   instant (current due + 1 day / 7 days / 1 month) and are reopened;
3. ledger slots older than the retention window are pruned.

Store work runs in a worker thread; only the broadcasts run on the event loop,
and pushes are sent in the background. A failure for one task or one
subscriber is logged and the sweep goes on.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from . import ledger, membership, task_store
from .db_models import TaskDB, now_utc
from .events import TASK_REMINDER, TASK_UPDATED, Broadcaster, task_payload
from .push import PushDelivery, reminder_payload

logger = logging.getLogger(__name__)

STAGE_MINUTES = (("15min", 15), ("5min", 5), ("0min", 0))

REPEAT_STEPS = {
    "daily": relativedelta(days=1),
    "weekly": relativedelta(days=7),
    "monthly": relativedelta(months=1),
}


def stage_for(seconds_until_due: float, lookback_seconds: float = 0) -> Optional[str]:
    """Stage whose minute [N*60, N*60 + 60) was reached in the last `lookback_seconds`.

    With no lookback this is the whole-minute match floor(seconds / 60) == N.
    """
    lookback_seconds = max(0.0, lookback_seconds)
    for stage, minutes in STAGE_MINUTES:
        lower = minutes * 60
        if seconds_until_due < lower + 60 and seconds_until_due + lookback_seconds >= lower:
            return stage
    return None


def next_due(current: datetime, repeat: str) -> datetime:
    """Advance from the current due instant (keeps the time of day)."""
    try:
        return current + REPEAT_STEPS[repeat]
    except KeyError as err:
        raise ValueError(f"unknown repeat: {repeat!r}") from err


def reminder_message(text: str, stage: str) -> str:
    if stage == "0min":
        return f"⏰ {text} is due now"
    minutes = dict(STAGE_MINUTES)[stage]
    return f"⏰ {text} is due in {minutes} minutes"


@dataclass
class SweepReport:
    reminders: int = 0
    duplicates: int = 0
    rolled_over: int = 0
    pruned: int = 0
    errors: int = 0


@dataclass
class _Reminder:
    recipients: List[int]
    event: Dict[str, Any]


@dataclass
class _SweepPlan:
    """What the store pass decided; delivered afterwards on the event loop."""

    report: SweepReport
    reminders: List[_Reminder] = field(default_factory=list)
    updated: List[Dict[str, Any]] = field(default_factory=list)


class ReminderScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        broadcaster: Broadcaster,
        push: Optional[PushDelivery] = None,
        *,
        interval_seconds: int = 60,
        retention_seconds: int = 60 * 60 * 24 * 2,
        max_lookback_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.session_factory = session_factory
        self.broadcaster = broadcaster
        self.push = push
        self.interval_seconds = max(1, min(int(interval_seconds), 60))
        self.retention_seconds = retention_seconds
        # after a long outage stale stages are not replayed
        self.max_lookback_seconds = (
            max_lookback_seconds if max_lookback_seconds is not None else 2 * self.interval_seconds
        )
        self.clock = clock
        self._last_sweep: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self._background: Set[asyncio.Task] = set()

    # --- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="reminder-scheduler")
        logger.info("scheduler started interval_seconds=%s", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is not None:
            self._stop.set()
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("scheduler stopped")
        for job in list(self._background):
            job.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)

    async def drain(self) -> None:
        """Wait for the pushes started by earlier sweeps."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        while not self._stop.is_set():
            try:
                await self.run_sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                # keep the loop alive; next tick retries
                logger.exception("scheduler sweep failed")
            # fixed cadence: the sweep's own duration does not push the next tick back
            deadline += self.interval_seconds
            delay = deadline - loop.time()
            if delay < 0:
                logger.warning("scheduler behind schedule by %.1fs", -delay)
                deadline = loop.time()
                delay = 0
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    # --- sweep -------------------------------------------------------------

    def _lookback(self, now: datetime) -> float:
        if self._last_sweep is None:
            return 0.0
        elapsed = (now - self._last_sweep).total_seconds()
        return max(0.0, min(elapsed, self.max_lookback_seconds))

    async def run_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or self.clock()
        plan = await asyncio.to_thread(self._plan, now, self._lookback(now))
        self._last_sweep = now
        report = plan.report

        for reminder in plan.reminders:
            try:
                for user_id in reminder.recipients:
                    await self.broadcaster.send_to_user(user_id, TASK_REMINDER, reminder.event)
            except Exception:
                report.errors += 1
                logger.exception("reminder delivery failed task_id=%s", reminder.event["task"]["id"])
                continue
            self._push(reminder)

        for payload in plan.updated:
            try:
                await self.broadcaster.broadcast(payload["listId"], TASK_UPDATED, payload)
            except Exception:
                report.errors += 1
                logger.exception("recurrence broadcast failed task_id=%s", payload["id"])

        logger.info(
            "sweep done reminders=%s duplicates=%s rolled_over=%s pruned=%s errors=%s",
            report.reminders,
            report.duplicates,
            report.rolled_over,
            report.pruned,
            report.errors,
        )
        return report

    def _push(self, reminder: _Reminder) -> None:
        if self.push is None:
            return
        event = reminder.event
        payload = reminder_payload(event["task"], event["stage"], event["message"])
        job = asyncio.create_task(self.push.notify_users(reminder.recipients, payload))
        self._background.add(job)
        job.add_done_callback(self._background.discard)

    def _plan(self, now: datetime, lookback: float) -> _SweepPlan:
        """Blocking store pass: claim reminder slots, advance recurring tasks, prune."""
        plan = _SweepPlan(SweepReport())
        db = self.session_factory()
        try:
            for task in task_store.open_tasks_with_due(db):
                try:
                    reminder = self._claim(db, task, now, lookback, plan.report)
                except Exception:
                    db.rollback()
                    plan.report.errors += 1
                    logger.exception("reminder failed task_id=%s", task.id)
                    continue
                if reminder is not None:
                    plan.reminders.append(reminder)

            for task in task_store.recurring_to_advance(db, now):
                try:
                    plan.updated.append(self._advance(db, task, now))
                    plan.report.rolled_over += 1
                except Exception:
                    db.rollback()
                    plan.report.errors += 1
                    logger.exception("recurrence failed task_id=%s", task.id)

            plan.report.pruned = ledger.prune_expired(db, now=now, retention_seconds=self.retention_seconds)
        finally:
            db.close()
        return plan

    def _claim(
        self, db: Session, task: TaskDB, now: datetime, lookback: float, report: SweepReport
    ) -> Optional[_Reminder]:
        seconds_left = (task.due - now).total_seconds()
        stage = stage_for(seconds_left, lookback)
        if stage is None:
            return None
        if not ledger.claim(db, task_id=task.id, list_id=task.list_id, due=task.due, stage=stage, now=now):
            report.duplicates += 1
            return None
        report.reminders += 1

        lst = membership.get_list(db, task.list_id)
        event = {
            "task": task_payload(task),
            "stage": stage,
            "diffMin": math.floor(seconds_left / 60),
            "message": reminder_message(task.text, stage),
        }
        return _Reminder(membership.member_ids(lst), event)

    def _advance(self, db: Session, task: TaskDB, now: datetime) -> Dict[str, Any]:
        new_due = next_due(task.due, task.repeat)
        if task.completed:
            task.last_completed_at = now
        task.due = new_due
        task.completed = False
        task.updated_at = now
        db.commit()
        db.refresh(task)
        logger.info("recurring task advanced task_id=%s next_due=%s", task.id, new_due.isoformat())
        return task_payload(task)
