"""Offline mutation queue with temp-id dependency tracking.

Actions are typed (`ActionType`) and reference tasks by id. An id that starts
with ``temp-`` belongs to a task created offline; the `IdMap` translates it to
the server id once its ADD has been replayed.

Replay order:

1. every ADD, in queue order;
2. everything else, in queue order, with temp ids rewritten through the map.
   An action whose temp id is still unresolved is deferred; one whose ADD was
   permanently rejected is abandoned.

Transient failures keep the action for the next replay. Permanent (4xx)
failures are reported as rejected and dropped, except a DELETE answered with
404, which already has the effect it wanted.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union

from .api import ApiError, ConnectionLost, TaskApi

logger = logging.getLogger(__name__)

TaskId = Union[int, str]
TEMP_PREFIX = "temp-"


def is_temp(task_id: Any) -> bool:
    return isinstance(task_id, str) and task_id.startswith(TEMP_PREFIX)


def new_temp_id() -> str:
    return f"{TEMP_PREFIX}{uuid.uuid4().hex[:12]}"


class ActionType(str, enum.Enum):
    ADD = "ADD"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    REORDER = "REORDER"


@dataclass
class PendingAction:
    type: ActionType
    list_id: int
    target: Optional[TaskId] = None  # temp id for ADD, task id for UPDATE/DELETE
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def depends_on(self) -> Set[str]:
        """Temp ids this action needs resolved before it can be sent."""
        if self.type is ActionType.ADD:
            return set()
        refs: Set[str] = set()
        if is_temp(self.target):
            refs.add(self.target)
        if self.type is ActionType.REORDER:
            refs.update(i for i in self.payload.get("orderedIds", ()) if is_temp(i))
        return refs

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "listId": self.list_id,
            "target": self.target,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingAction":
        return cls(
            type=ActionType(data["type"]),
            list_id=data["listId"],
            target=data.get("target"),
            payload=dict(data.get("payload") or {}),
            id=data.get("id") or uuid.uuid4().hex,
        )


class IdMap:
    """temp id -> server id."""

    def __init__(self, mapping: Optional[Dict[str, int]] = None):
        self._map: Dict[str, int] = dict(mapping or {})

    def bind(self, temp_id: str, server_id: int) -> None:
        self._map[temp_id] = server_id

    def resolve(self, task_id: TaskId) -> TaskId:
        if is_temp(task_id):
            return self._map.get(task_id, task_id)
        return task_id

    def resolved(self, task_id: TaskId) -> bool:
        return not is_temp(task_id) or task_id in self._map

    def __contains__(self, temp_id: str) -> bool:
        return temp_id in self._map

    def as_dict(self) -> Dict[str, int]:
        return dict(self._map)


@dataclass
class ReplayResult:
    applied: List[PendingAction] = field(default_factory=list)
    confirmed: Dict[str, Dict[str, Any]] = field(default_factory=dict)  # temp id -> server task
    rejected: List[Tuple[PendingAction, ApiError]] = field(default_factory=list)
    abandoned: List[PendingAction] = field(default_factory=list)
    retained: List[PendingAction] = field(default_factory=list)
    connection_lost: bool = False

    @property
    def clean(self) -> bool:
        return not (self.rejected or self.abandoned or self.retained)


class OfflineQueue:
    def __init__(self, actions: Optional[List[PendingAction]] = None, id_map: Optional[IdMap] = None):
        self._actions: List[PendingAction] = list(actions or [])
        self.id_map = id_map or IdMap()

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[PendingAction]:
        return iter(list(self._actions))

    def enqueue(self, action: PendingAction) -> PendingAction:
        self._actions.append(action)
        logger.debug("queued %s target=%s list_id=%s", action.type.value, action.target, action.list_id)
        return action

    def clear(self) -> None:
        self._actions.clear()

    def dump(self) -> Dict[str, Any]:
        return {"actions": [a.to_dict() for a in self._actions], "idMap": self.id_map.as_dict()}

    @classmethod
    def load(cls, data: Optional[Dict[str, Any]]) -> "OfflineQueue":
        data = data or {}
        return cls([PendingAction.from_dict(a) for a in data.get("actions", ())], IdMap(data.get("idMap")))

    # --- replay ------------------------------------------------------------

    def replay(self, api: TaskApi) -> ReplayResult:
        result = ReplayResult()
        failed_temps: Set[str] = set()
        keep: Set[str] = set()

        for action in self._actions:
            if action.type is not ActionType.ADD:
                continue
            if result.connection_lost:
                keep.add(action.id)
                continue
            try:
                created = api.create_task(action.list_id, action.payload)
            except ConnectionLost:
                result.connection_lost = True
                keep.add(action.id)
            except ApiError as err:
                if err.permanent:
                    failed_temps.add(action.target)
                    result.rejected.append((action, err))
                else:
                    keep.add(action.id)
            else:
                self.id_map.bind(action.target, created["id"])
                result.confirmed[action.target] = created
                result.applied.append(action)

        for action in self._actions:
            if action.type is ActionType.ADD:
                continue
            deps = action.depends_on
            if deps & failed_temps:
                # the task never reached the server, so nothing left to change
                result.abandoned.append(action)
                continue
            if result.connection_lost or not all(self.id_map.resolved(d) for d in deps):
                keep.add(action.id)
                continue
            try:
                self._send(api, action)
            except ConnectionLost:
                result.connection_lost = True
                keep.add(action.id)
            except ApiError as err:
                if action.type is ActionType.DELETE and err.status == 404:
                    result.applied.append(action)
                elif err.permanent:
                    result.rejected.append((action, err))
                else:
                    keep.add(action.id)
            else:
                result.applied.append(action)

        self._actions = [a for a in self._actions if a.id in keep]
        result.retained = list(self._actions)
        logger.info(
            "replay applied=%s rejected=%s abandoned=%s retained=%s",
            len(result.applied),
            len(result.rejected),
            len(result.abandoned),
            len(result.retained),
        )
        return result

    def _send(self, api: TaskApi, action: PendingAction) -> None:
        target = self.id_map.resolve(action.target) if action.target is not None else None
        if action.type is ActionType.UPDATE:
            api.update_task(action.list_id, target, action.payload)
        elif action.type is ActionType.DELETE:
            api.delete_task(action.list_id, target)
        elif action.type is ActionType.REORDER:
            ordered = [self.id_map.resolve(i) for i in action.payload.get("orderedIds", ())]
            api.reorder_tasks(action.list_id, ordered, action.payload.get("recurring"))
        else:
            raise ValueError(f"unexpected action type: {action.type}")
