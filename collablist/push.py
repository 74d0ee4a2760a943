"""Outbound web push with per-subscriber retry and cleanup.

Each subscription is delivered independently: up to `max_attempts` tries with
exponential backoff on transient failures (tenacity), immediate removal of the
subscription when the push service reports it gone (404/410), and a logged
give-up otherwise. One subscriber's failure never stops the others.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Protocol

from pywebpush import WebPushException, webpush
from sqlalchemy.orm import Session
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from . import subscriptions as subscription_store
from .config import Settings
from .db_models import PushSubscriptionDB
from .errors import Transient

logger = logging.getLogger(__name__)

GONE_STATUSES = (404, 410)


class SubscriptionGone(Exception):
    """The push service says this endpoint will never accept messages again."""


@dataclass(frozen=True)
class SubscriptionInfo:
    id: int
    user_id: int
    endpoint: str
    p256dh: str
    auth: str

    @classmethod
    def from_row(cls, row: PushSubscriptionDB) -> "SubscriptionInfo":
        return cls(id=row.id, user_id=row.user_id, endpoint=row.endpoint, p256dh=row.p256dh, auth=row.auth)

    def as_webpush(self) -> Dict[str, Any]:
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


class PushSender(Protocol):
    async def send(self, subscription: SubscriptionInfo, payload: Dict[str, Any]) -> None: ...


class WebPushSender:
    """VAPID-signed delivery through pywebpush (blocking, run in a worker thread)."""

    def __init__(self, private_key: str, subject: str, ttl: int = 60 * 60):
        self.private_key = private_key
        self.subject = subject
        self.ttl = ttl

    async def send(self, subscription: SubscriptionInfo, payload: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._send_blocking, subscription, payload)

    def _send_blocking(self, subscription: SubscriptionInfo, payload: Dict[str, Any]) -> None:
        try:
            webpush(
                subscription_info=subscription.as_webpush(),
                data=json.dumps(payload),
                vapid_private_key=self.private_key,
                vapid_claims={"sub": self.subject},
                ttl=self.ttl,
            )
        except WebPushException as exc:
            status = getattr(exc.response, "status_code", None)
            if status in GONE_STATUSES:
                raise SubscriptionGone(str(exc)) from exc
            raise Transient(f"push failed status={status}") from exc
        except OSError as exc:  # network errors surface as requests/OSError subclasses
            raise Transient(str(exc)) from exc


class LoggingPushSender:
    """Used when no VAPID key is configured: records what would be sent."""

    def __init__(self) -> None:
        self.sent: List[tuple[SubscriptionInfo, Dict[str, Any]]] = []

    async def send(self, subscription: SubscriptionInfo, payload: Dict[str, Any]) -> None:
        self.sent.append((subscription, payload))
        logger.debug("push skipped (no VAPID key) user_id=%s title=%s", subscription.user_id, payload.get("title"))


def build_sender(settings: Settings) -> PushSender:
    if settings.VAPID_PRIVATE_KEY:
        return WebPushSender(settings.VAPID_PRIVATE_KEY, settings.VAPID_SUBJECT)
    return LoggingPushSender()


@dataclass
class FanOutReport:
    sent: int = 0
    gone: int = 0
    failed: int = 0


class PushDelivery:
    def __init__(
        self,
        sender: PushSender,
        session_factory: Callable[[], Session],
        *,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 5.0,
    ):
        self.sender = sender
        self.session_factory = session_factory
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

    @classmethod
    def from_settings(cls, settings: Settings, session_factory: Callable[[], Session]) -> "PushDelivery":
        return cls(
            build_sender(settings),
            session_factory,
            max_attempts=settings.PUSH_MAX_ATTEMPTS,
            backoff_base=settings.PUSH_BACKOFF_BASE_SECONDS,
            backoff_max=settings.PUSH_BACKOFF_MAX_SECONDS,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
            retry=retry_if_exception_type(Transient),
            reraise=True,
        )

    async def deliver(self, subscription: SubscriptionInfo, payload: Dict[str, Any]) -> str:
        """Deliver to one subscription. Returns 'sent', 'gone' or 'failed'."""
        try:
            async for attempt in self._retrying():
                with attempt:
                    await self.sender.send(subscription, payload)
        except SubscriptionGone:
            logger.info("push subscription gone, removing id=%s user_id=%s", subscription.id, subscription.user_id)
            await asyncio.to_thread(self._forget, subscription)
            return "gone"
        except Transient as exc:
            logger.warning(
                "push gave up after %s attempts id=%s user_id=%s error=%s",
                self.max_attempts,
                subscription.id,
                subscription.user_id,
                exc,
            )
            return "failed"
        except Exception:
            logger.exception("push failed id=%s user_id=%s", subscription.id, subscription.user_id)
            return "failed"
        return "sent"

    async def fan_out(self, subscriptions: Iterable[SubscriptionInfo], payload: Dict[str, Any]) -> FanOutReport:
        """Deliver to every subscription concurrently; one slow or failing endpoint waits alone."""
        subs = list(subscriptions)
        outcomes = await asyncio.gather(*(self.deliver(sub, payload) for sub in subs))
        report = FanOutReport()
        for outcome in outcomes:
            setattr(report, outcome, getattr(report, outcome) + 1)
        return report

    async def notify_users(self, user_ids: Iterable[int], payload: Dict[str, Any]) -> FanOutReport:
        """Look up every subscription of `user_ids` and fan out."""
        subs = await asyncio.to_thread(self._lookup, list(user_ids))
        return await self.fan_out(subs, payload)

    def _lookup(self, user_ids: List[int]) -> List[SubscriptionInfo]:
        db = self.session_factory()
        try:
            return [SubscriptionInfo.from_row(r) for r in subscription_store.subscriptions_for_users(db, user_ids)]
        finally:
            db.close()

    def _forget(self, subscription: SubscriptionInfo) -> None:
        db = self.session_factory()
        try:
            subscription_store.delete_subscription(db, subscription.id)
        finally:
            db.close()


# --- Payload builders -----------------------------------------------------


def reminder_payload(task: Dict[str, Any], stage: str, message: str) -> Dict[str, Any]:
    return {
        "title": "Task Reminder",
        "body": message,
        "icon": "/logo192.png",
        "data": {
            "url": "/",
            "type": "task_reminder",
            "taskId": task["id"],
            "listId": task["listId"],
            "stage": stage,
        },
    }


_ACTIVITY = {
    "created": ("New Task Added", "{text} was added to the list"),
    "updated": ("Task Updated", "{text} was updated"),
    "deleted": ("Task Deleted", "{text} was removed from the list"),
}


def activity_payload(task: Dict[str, Any], kind: str) -> Dict[str, Any]:
    title, body = _ACTIVITY[kind]
    return {
        "title": title,
        "body": body.format(text=task.get("text", "A task")),
        "icon": "/logo192.png",
        "data": {
            "url": "/",
            "type": f"task_{kind}",
            "taskId": task["id"],
            "listId": task["listId"],
        },
    }
