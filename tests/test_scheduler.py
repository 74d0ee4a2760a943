# tests/test_scheduler.py
# PURPOSE: reminder stages, exactly-once delivery, recurrence roll-over and
# failure isolation of the sweep, driven with an explicit `now`.

import asyncio
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from collablist import ledger, subscriptions
from collablist.db_models import ListDB, ListMemberDB, TaskDB, UserDB
from collablist.errors import Transient
from collablist.push import LoggingPushSender, PushDelivery
from collablist.scheduler import ReminderScheduler, next_due, stage_for

NOW = datetime(2030, 6, 1, 12, 0, tzinfo=timezone.utc)


class RecordingBroadcaster:
    def __init__(self):
        self.events = []

    async def emit(self, rooms, event, payload):
        self.events.append((tuple(rooms), event, payload))
        return 1

    async def broadcast(self, list_id, event, payload):
        self.events.append((f"list:{list_id}", event, payload))
        return 1

    async def send_to_user(self, user_id, event, payload):
        self.events.append((f"user:{user_id}", event, payload))
        return 1

    def of(self, event):
        return [e for e in self.events if e[1] == event]


@pytest.fixture()
def world(session_factory):
    """Owner + editor on one list; returns ids."""
    with session_factory() as db:
        owner = UserDB(username="owner", email="o@x.com", password_hash="x")
        editor = UserDB(username="ed", email="e@x.com", password_hash="x")
        db.add_all([owner, editor])
        db.flush()
        lst = ListDB(name="L", owner_id=owner.id)
        lst.members.append(ListMemberDB(user_id=owner.id, role="owner"))
        lst.members.append(ListMemberDB(user_id=editor.id, role="editor"))
        db.add(lst)
        db.commit()
        return {"owner": owner.id, "editor": editor.id, "list": lst.id}


def _task(session_factory, world, **fields):
    with session_factory() as db:
        task = TaskDB(list_id=world["list"], user_id=world["owner"], order=1, **fields)
        db.add(task)
        db.commit()
        return task.id


def _scheduler(session_factory, broadcaster, sender=None):
    push = PushDelivery(sender or LoggingPushSender(), session_factory, backoff_base=0, backoff_max=0)
    return ReminderScheduler(session_factory, broadcaster, push, interval_seconds=60)


@pytest.mark.parametrize(
    "seconds,lookback,stage",
    [
        (15 * 60, 0, "15min"),
        (15 * 60 + 59, 0, "15min"),
        (16 * 60, 0, None),
        (14 * 60 + 59, 0, None),
        (5 * 60, 0, "5min"),
        (0, 0, "0min"),
        (59.5, 0, "0min"),
        (-1, 0, None),
        (10 * 60, 0, None),
        # the 15min minute began between the previous sweep and this one
        (899.7, 60.6, "15min"),
        (-5, 60, "0min"),
        (-61, 60, None),
    ],
)
def test_stage_window(seconds, lookback, stage):
    assert stage_for(seconds, lookback) == stage


def test_next_due_steps():
    start = datetime(2025, 1, 31, 9, 30, tzinfo=timezone.utc)
    assert next_due(start, "daily") == datetime(2025, 2, 1, 9, 30, tzinfo=timezone.utc)
    assert next_due(start, "weekly") == datetime(2025, 2, 7, 9, 30, tzinfo=timezone.utc)
    # month arithmetic clamps to the last day
    assert next_due(start, "monthly") == datetime(2025, 2, 28, 9, 30, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        next_due(start, "hourly")


@pytest.mark.parametrize("minutes,expected", [(15, "15min"), (5, "5min"), (0, "0min"), (14, None), (16, None)])
def test_boundaries_emit_exactly_one_reminder(session_factory, world, minutes, expected):
    _task(session_factory, world, text="pay rent", due=NOW + timedelta(minutes=minutes))
    bc = RecordingBroadcaster()
    scheduler = _scheduler(session_factory, bc)

    asyncio.run(scheduler.run_sweep(now=NOW))
    reminders = list(bc.of("task:reminder"))
    if expected is None:
        assert reminders == []
        return
    # one per member personal room
    assert sorted(r[0] for r in reminders) == sorted([f"user:{world['owner']}", f"user:{world['editor']}"])
    assert all(r[2]["stage"] == expected for r in reminders)
    assert all(r[2]["task"]["text"] == "pay rent" for r in reminders)

    asyncio.run(scheduler.run_sweep(now=NOW + timedelta(seconds=10)))
    assert bc.of("task:reminder") == reminders


def test_partial_minute_counts_toward_the_stage(session_factory, world):
    _task(session_factory, world, text="review", due=NOW + timedelta(minutes=15, seconds=30))
    bc = RecordingBroadcaster()
    asyncio.run(_scheduler(session_factory, bc).run_sweep(now=NOW))
    reminders = bc.of("task:reminder")
    assert [r[2]["stage"] for r in reminders] == ["15min", "15min"]
    assert reminders[0][2]["diffMin"] == 15


def test_sweeps_slightly_over_a_minute_apart_keep_each_stage_once(session_factory, world):
    _task(session_factory, world, text="a", due=NOW + timedelta(seconds=900.5))
    _task(session_factory, world, text="b", due=NOW + timedelta(seconds=960.3))
    bc = RecordingBroadcaster()
    scheduler = _scheduler(session_factory, bc)

    asyncio.run(scheduler.run_sweep(now=NOW))
    assert {r[2]["task"]["text"] for r in bc.of("task:reminder")} == {"a"}

    # "b" enters its 15min minute between the two ticks
    asyncio.run(scheduler.run_sweep(now=NOW + timedelta(seconds=60.6)))
    fired = [(r[2]["task"]["text"], r[2]["stage"]) for r in bc.of("task:reminder")]
    assert sorted(fired) == [("a", "15min"), ("a", "15min"), ("b", "15min"), ("b", "15min")]


def test_catch_up_after_a_long_gap_is_capped(session_factory, world):
    _task(session_factory, world, text="stale", due=NOW + timedelta(minutes=20))
    bc = RecordingBroadcaster()
    scheduler = _scheduler(session_factory, bc)
    asyncio.run(scheduler.run_sweep(now=NOW))
    # ten minutes of downtime: the 15min stage is long past, 5min is not reached
    asyncio.run(scheduler.run_sweep(now=NOW + timedelta(minutes=10)))
    assert bc.of("task:reminder") == []


def test_overlapping_sweeps_do_not_duplicate(session_factory, world):
    _task(session_factory, world, text="x", due=NOW + timedelta(minutes=5))
    bc = RecordingBroadcaster()
    first, second = _scheduler(session_factory, bc), _scheduler(session_factory, bc)

    async def both():
        return await asyncio.gather(first.run_sweep(now=NOW), second.run_sweep(now=NOW))

    reports = asyncio.run(both())
    assert sum(r.reminders for r in reports) == 1
    assert sum(r.duplicates for r in reports) == 1
    assert len(bc.of("task:reminder")) == 2  # two members, one claim


def test_completed_tasks_get_no_reminder(session_factory, world):
    _task(session_factory, world, text="done", completed=True, due=NOW + timedelta(minutes=15))
    bc = RecordingBroadcaster()
    asyncio.run(_scheduler(session_factory, bc).run_sweep(now=NOW))
    assert bc.of("task:reminder") == []


def test_reminder_push_reaches_member_subscriptions(session_factory, world):
    _task(session_factory, world, text="standup", due=NOW + timedelta(minutes=15))
    with session_factory() as db:
        subscriptions.upsert_subscription(db, user_id=world["editor"], endpoint="https://p/e", p256dh="k", auth="a")
    sender = LoggingPushSender()
    scheduler = _scheduler(session_factory, RecordingBroadcaster(), sender)

    async def sweep_and_drain():
        await scheduler.run_sweep(now=NOW)
        await scheduler.drain()

    asyncio.run(sweep_and_drain())
    assert len(sender.sent) == 1
    sub, payload = sender.sent[0]
    assert sub.user_id == world["editor"]
    assert payload["title"] == "Task Reminder"
    assert payload["data"]["stage"] == "15min"
    assert "standup" in payload["body"]


def test_scenario_daily_rolls_forward(session_factory, world):
    due = datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc)
    task_id = _task(session_factory, world, text="meds", repeat="daily", due=due, completed=False)
    bc = RecordingBroadcaster()
    report = asyncio.run(_scheduler(session_factory, bc).run_sweep(now=datetime(2025, 1, 2, 0, 5, tzinfo=timezone.utc)))

    assert report.rolled_over == 1
    with session_factory() as db:
        task = db.get(TaskDB, task_id)
        assert task.due == datetime(2025, 1, 2, 0, 0, tzinfo=timezone.utc)
        assert task.completed is False
        assert task.last_completed_at is None
    updates = bc.of("task:updated")
    assert len(updates) == 1
    assert updates[0][0] == f"list:{world['list']}"


def test_completed_recurring_task_reopens_and_records_completion(session_factory, world):
    due = NOW + timedelta(hours=3)
    task_id = _task(session_factory, world, text="walk", repeat="weekly", due=due, completed=True)
    asyncio.run(_scheduler(session_factory, RecordingBroadcaster()).run_sweep(now=NOW))
    with session_factory() as db:
        task = db.get(TaskDB, task_id)
        assert task.completed is False
        assert task.due == due + timedelta(days=7)
        assert task.last_completed_at == NOW


def test_new_due_instant_can_be_reminded_again(session_factory, world):
    due = NOW + timedelta(minutes=15)
    task_id = _task(session_factory, world, text="call", due=due)
    bc = RecordingBroadcaster()
    scheduler = _scheduler(session_factory, bc)
    asyncio.run(scheduler.run_sweep(now=NOW))
    with session_factory() as db:
        assert len(ledger.entries_for_task(db, task_id)) == 1
        db.get(TaskDB, task_id).due = due + timedelta(hours=1)
        db.commit()
    asyncio.run(scheduler.run_sweep(now=NOW + timedelta(hours=1)))
    assert len(bc.of("task:reminder")) == 4


def test_one_failing_task_does_not_stop_the_sweep(session_factory, world):
    _task(session_factory, world, text="first", due=NOW + timedelta(minutes=15))
    _task(session_factory, world, text="second", due=NOW + timedelta(minutes=15))

    class Flaky(RecordingBroadcaster):
        async def send_to_user(self, user_id, event, payload):
            if payload["task"]["text"] == "first":
                raise RuntimeError("socket layer exploded")
            return await super().send_to_user(user_id, event, payload)

    bc = Flaky()
    report = asyncio.run(_scheduler(session_factory, bc).run_sweep(now=NOW))
    assert report.errors == 1
    assert {e[2]["task"]["text"] for e in bc.of("task:reminder")} == {"second"}


def test_start_and_stop(session_factory):
    async def run():
        scheduler = ReminderScheduler(session_factory, RecordingBroadcaster(), interval_seconds=3600)
        scheduler.start()
        await asyncio.sleep(0)
        await scheduler.stop()

    asyncio.run(run())


def test_slow_push_does_not_hold_up_the_sweep(session_factory, world):
    _task(session_factory, world, text="standup", due=NOW + timedelta(minutes=15))
    with session_factory() as db:
        for n in range(3):
            subscriptions.upsert_subscription(
                db, user_id=world["editor"], endpoint=f"https://p/{n}", p256dh="k", auth="a"
            )

    class Unavailable:
        def __init__(self):
            self.calls = 0

        async def send(self, subscription, payload):
            self.calls += 1
            raise Transient("push service unavailable")

    sender = Unavailable()
    push = PushDelivery(sender, session_factory, max_attempts=3, backoff_base=1, backoff_max=2)
    bc = RecordingBroadcaster()
    scheduler = ReminderScheduler(session_factory, bc, push, interval_seconds=60)

    async def run():
        started = time.perf_counter()
        report = await scheduler.run_sweep(now=NOW)
        elapsed = time.perf_counter() - started
        await scheduler.stop()
        return report, elapsed

    report, elapsed = asyncio.run(run())
    assert report.reminders == 1
    assert len(bc.of("task:reminder")) == 2
    # retries with backoff would take seconds; the sweep is done long before
    assert elapsed < 1.0


def test_sweep_store_work_runs_off_the_event_loop_thread(session_factory, world):
    _task(session_factory, world, text="standup", due=NOW + timedelta(minutes=5))
    threads = []

    def tracking_factory():
        threads.append(threading.get_ident())
        return session_factory()

    bc = RecordingBroadcaster()
    scheduler = ReminderScheduler(tracking_factory, bc, interval_seconds=60)

    async def run():
        await scheduler.run_sweep(now=NOW)
        return threading.get_ident()

    loop_thread = asyncio.run(run())
    assert threads
    assert loop_thread not in threads
    assert len(bc.of("task:reminder")) == 2
