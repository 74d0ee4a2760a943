"""Per-connection dispatcher for client -> server realtime events.

Mutations re-run the access check themselves; being connected or sitting in a
list room grants nothing. Errors go back to the originating connection as an
`error` event and never close it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from pydantic import ValidationError
from sqlalchemy.orm import Session

from .. import membership, task_store
from ..access import Role, require_role
from ..errors import CollabError, InvalidOperation
from ..events import (
    ERROR,
    JOIN_LIST,
    LEAVE_LIST,
    LIST_JOINED,
    TASK_CREATE,
    TASK_CREATED,
    TASK_DELETE,
    TASK_DELETED,
    TASK_UPDATE,
    TASK_UPDATED,
    task_payload,
)
from ..models import TaskCreate, TaskUpdate
from ..push import PushDelivery, activity_payload
from .channels import ChannelManager, Connection

logger = logging.getLogger(__name__)


def _list_id(data: Any) -> int:
    # join/leave accept a bare id or {"listId": id}
    raw = data.get("listId") if isinstance(data, dict) else data
    try:
        return int(raw)
    except (TypeError, ValueError) as err:
        raise InvalidOperation("listId required") from err


def _task_id(data: Dict[str, Any]) -> int:
    try:
        return int(data["taskId"])
    except (KeyError, TypeError, ValueError) as err:
        raise InvalidOperation("taskId required") from err


class RealtimeSession:
    def __init__(
        self,
        conn: Connection,
        channels: ChannelManager,
        session_factory: Callable[[], Session],
        *,
        push: Optional[PushDelivery] = None,
        verify_join: bool = True,
    ):
        self.conn = conn
        self.channels = channels
        self.session_factory = session_factory
        self.push = push
        self.verify_join = verify_join
        self._background: Set[asyncio.Task] = set()
        self._handlers: Dict[str, Callable[[Any], Awaitable[None]]] = {
            JOIN_LIST: self.join_list,
            LEAVE_LIST: self.leave_list,
            TASK_CREATE: self.create_task,
            TASK_UPDATE: self.update_task,
            TASK_DELETE: self.delete_task,
        }

    async def dispatch(self, message: Any) -> None:
        if not isinstance(message, dict) or "event" not in message:
            await self._error("Malformed message", "InvalidOperation")
            return
        handler = self._handlers.get(message["event"])
        if handler is None:
            await self._error(f"Unknown event: {message['event']}", "InvalidOperation")
            return
        try:
            await handler(message.get("data") or {})
        except CollabError as err:
            await self._error(err.message, err.code)
        except ValidationError as err:
            await self._error(str(err.errors()[0].get("msg", "Invalid payload")), "ValidationError")
        except Exception:
            logger.exception("realtime handler failed event=%s conn=%r", message["event"], self.conn)
            await self._error("Server error", "Transient")

    async def _error(self, message: str, code: str) -> None:
        await self.conn.send(ERROR, {"message": message, "code": code})

    # --- rooms -------------------------------------------------------------

    async def join_list(self, data: Any) -> None:
        list_id = _list_id(data)
        if self.verify_join:
            with self.session_factory() as db:
                membership.load_authorized_list(db, list_id, self.conn.user_id, Role.VIEWER)
        self.channels.join(self.conn, list_id)
        await self.conn.send(LIST_JOINED, {"listId": list_id})

    async def leave_list(self, data: Any) -> None:
        self.channels.leave(self.conn, _list_id(data))

    # --- task mutations ----------------------------------------------------

    async def create_task(self, data: Dict[str, Any]) -> None:
        list_id = _list_id(data)
        fields = TaskCreate.model_validate(data)
        with self.session_factory() as db:
            lst = membership.get_list(db, list_id)
            require_role(self.conn.user_id, lst, Role.EDITOR)
            task = task_store.create_task(db, lst, self.conn.user_id, fields)
            payload = task_payload(task)
            recipients = membership.member_ids(lst)
        await self.channels.broadcast(list_id, TASK_CREATED, payload)
        self._notify(recipients, payload, "created")

    async def update_task(self, data: Dict[str, Any]) -> None:
        list_id = _list_id(data)
        task_id = _task_id(data)
        updates = TaskUpdate.model_validate(data.get("updates") or {})
        with self.session_factory() as db:
            lst = membership.get_list(db, list_id)
            require_role(self.conn.user_id, lst, Role.EDITOR)
            task = task_store.update_task(db, lst, self.conn.user_id, task_id, updates)
            payload = task_payload(task)
            recipients = membership.member_ids(lst)
        await self.channels.broadcast(list_id, TASK_UPDATED, payload)
        self._notify(recipients, payload, "updated")

    async def delete_task(self, data: Dict[str, Any]) -> None:
        list_id = _list_id(data)
        task_id = _task_id(data)
        with self.session_factory() as db:
            lst = membership.get_list(db, list_id)
            require_role(self.conn.user_id, lst, Role.EDITOR)
            task = task_store.get_task(db, list_id, task_id)
            payload = task_payload(task) if task is not None else None
            task_store.delete_task(db, lst, self.conn.user_id, task_id)
            recipients = membership.member_ids(lst)
        await self.channels.broadcast(list_id, TASK_DELETED, {"taskId": task_id, "listId": list_id})
        if payload is not None:
            self._notify(recipients, payload, "deleted")

    def _notify(self, recipients, payload: Dict[str, Any], kind: str) -> None:
        # push runs off the message loop so retries never stall this socket
        if self.push is None:
            return
        job = asyncio.create_task(self.push.notify_users(recipients, activity_payload(payload, kind)))
        self._background.add(job)
        job.add_done_callback(self._background.discard)
