"""Realtime event names, room keys and payload serializers.

The scheduler and the REST/realtime handlers only depend on the `Broadcaster`
protocol defined here, never on the channel manager itself.
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from .db_models import ListDB, TaskDB
from .models import ListOut, TaskOut

# server -> client
TASK_CREATED = "task:created"
TASK_UPDATED = "task:updated"
TASK_DELETED = "task:deleted"
TASKS_REORDERED = "tasks:reordered"
TASK_REMINDER = "task:reminder"
LIST_SHARED = "list:shared"
LIST_MEMBER_JOINED = "list:memberJoined"
LIST_MEMBER_REMOVED = "list:memberRemoved"
LIST_UPDATED = "list:updated"
LIST_DELETED = "list:deleted"
LIST_JOINED = "list:joined"
ERROR = "error"

# client -> server
JOIN_LIST = "join-list"
LEAVE_LIST = "leave-list"
TASK_CREATE = "task:create"
TASK_UPDATE = "task:update"
TASK_DELETE = "task:delete"


def list_room(list_id: int) -> str:
    return f"list:{list_id}"


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


class Broadcaster(Protocol):
    async def emit(self, rooms: Iterable[str], event: str, payload: Any) -> int: ...

    async def broadcast(self, list_id: int, event: str, payload: Any) -> int: ...

    async def send_to_user(self, user_id: int, event: str, payload: Any) -> int: ...


def task_payload(task: TaskDB) -> dict:
    return TaskOut.model_validate(task).model_dump(mode="json", by_alias=True)


def list_payload(lst: ListDB) -> dict:
    return ListOut.model_validate(lst).model_dump(mode="json", by_alias=True)
