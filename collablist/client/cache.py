"""Client-side task cache for one list.

States: EMPTY -> HYDRATING (local snapshot shown, possibly stale) -> HYDRATED
(canonical server copy applied). A canonical fetch always replaces the visible
set; the only local entries that survive it are unconfirmed temp tasks, and a
temp task is dropped as soon as a server task with the same content signature
shows up (the server echo of that temp).

Mutations are applied locally first. Online they are sent straight away; offline,
or while older actions are still queued, they go through the `OfflineQueue`,
which `sync()` replays on reconnection before a canonical refresh.
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dateutil.parser import isoparse

from ..events import LIST_DELETED, TASK_CREATED, TASK_DELETED, TASK_UPDATED, TASKS_REORDERED
from .api import ApiError, ConnectionLost, TaskApi
from .queue import ActionType, OfflineQueue, PendingAction, ReplayResult, TaskId, is_temp, new_temp_id
from .snapshot import MemorySnapshotStore, SnapshotStore

logger = logging.getLogger(__name__)


class CacheState(str, enum.Enum):
    EMPTY = "empty"
    HYDRATING = "hydrating"
    HYDRATED = "hydrated"


def _due_ms(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    if isinstance(value, str):
        value = isoparse(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def content_signature(task: Dict[str, Any]) -> Tuple[str, Optional[int], Optional[str]]:
    """What a temp task and its server echo have in common."""
    return ((task.get("text") or "").strip(), _due_ms(task.get("due")), task.get("repeat") or None)


def _jsonable(fields: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        out[key] = value
    return out


class ReconciliationCache:
    def __init__(
        self,
        api: TaskApi,
        list_id: int,
        *,
        store: Optional[SnapshotStore] = None,
        queue: Optional[OfflineQueue] = None,
        online: bool = True,
    ):
        self.api = api
        self.list_id = list_id
        self.store = store or MemorySnapshotStore()
        self.queue = queue if queue is not None else OfflineQueue.load(self.store.load_queue())
        self.online = online
        self.state = CacheState.EMPTY
        self.last_sync: Optional[ReplayResult] = None
        self._tasks: List[Dict[str, Any]] = []

    # --- views -------------------------------------------------------------

    @property
    def tasks(self) -> List[Dict[str, Any]]:
        """One-off tasks first, then recurring ones, each class by `order`."""
        return sorted(
            (dict(t) for t in self._tasks),
            key=lambda t: (t.get("repeat") is not None, t.get("order") or 0, str(t.get("id"))),
        )

    def get(self, task_id: TaskId) -> Optional[Dict[str, Any]]:
        found = self._find(self.queue.id_map.resolve(task_id))
        return dict(found) if found is not None else None

    def _find(self, task_id: TaskId) -> Optional[Dict[str, Any]]:
        return next((t for t in self._tasks if t.get("id") == task_id), None)

    # --- hydration ---------------------------------------------------------

    def hydrate(self) -> List[Dict[str, Any]]:
        """Show the local snapshot immediately, then fetch the canonical set."""
        self.state = CacheState.HYDRATING
        snapshot = self.store.load_tasks(self.list_id)
        if snapshot is not None:
            self._tasks = snapshot
        if self.online:
            self.refresh()
        return self.tasks

    def refresh(self) -> bool:
        """Canonical fetch. Returns False when it failed; the local view is kept.

        Unreachable means offline. A transient server error (5xx, 408, 429)
        leaves the cache online so the next sync tries again.
        """
        try:
            canonical = self.api.list_tasks(self.list_id)
        except ConnectionLost:
            self.go_offline()
            return False
        except ApiError as err:
            if err.permanent:
                raise
            logger.warning("refresh failed list_id=%s status=%s", self.list_id, err.status)
            return False
        self.replace(canonical)
        return True

    def replace(self, canonical: Sequence[Dict[str, Any]]) -> None:
        signatures = {content_signature(t) for t in canonical}
        queued = self._queued_temps()
        # a temp whose ADD is still queued cannot have been echoed yet
        pending = [
            t
            for t in self._tasks
            if is_temp(t.get("id"))
            and t["id"] not in self.queue.id_map
            and (t["id"] in queued or content_signature(t) not in signatures)
        ]
        self._tasks = [dict(t) for t in canonical] + pending
        self.state = CacheState.HYDRATED
        self._persist()

    # --- connectivity ------------------------------------------------------

    def go_offline(self) -> None:
        if self.online:
            logger.info("cache offline list_id=%s", self.list_id)
        self.online = False

    def go_online(self) -> Optional[ReplayResult]:
        self.online = True
        return self.sync()

    def sync(self) -> Optional[ReplayResult]:
        """Replay the queue, then refresh. Failed actions stay queued."""
        if not self.online:
            return None
        result = self.queue.replay(self.api)
        for temp_id, created in result.confirmed.items():
            if self._find(temp_id) is not None:
                self._swap(temp_id, created)
        for action, _err in result.rejected:
            if action.type is ActionType.ADD:
                self._remove(action.target)
        self.last_sync = result
        # applied actions leave the stored queue before anything else can fail
        self._persist()
        if result.connection_lost:
            self.go_offline()
            return result
        self.refresh()
        return result

    # --- mutations ---------------------------------------------------------

    def add_task(self, text: str, **fields: Any) -> TaskId:
        """Create a task; returns the server id, or a temp id while queued."""
        body = _jsonable({"text": text, **fields})
        temp_id = new_temp_id()
        recurring = body.get("repeat") is not None
        self._tasks.append(
            {
                "id": temp_id,
                "listId": self.list_id,
                "text": text,
                "completed": bool(body.get("completed", False)),
                "due": body.get("due"),
                "priority": body.get("priority", "medium"),
                "category": body.get("category", "General"),
                "repeat": body.get("repeat"),
                "order": self._next_order(recurring),
            }
        )
        action = PendingAction(ActionType.ADD, self.list_id, temp_id, body)
        if self._direct():
            try:
                created = self.api.create_task(self.list_id, body)
            except ConnectionLost:
                self.go_offline()
            except ApiError:
                self._remove(temp_id)
                self._persist()
                raise
            else:
                self._swap(temp_id, created)
                self._persist()
                return created["id"]
        self._queue(action)
        return temp_id

    def update_task(self, task_id: TaskId, **changes: Any) -> Optional[Dict[str, Any]]:
        task_id = self.queue.id_map.resolve(task_id)
        local = self._find(task_id)
        if local is None:
            raise KeyError(task_id)
        body = _jsonable(changes)
        local.update(body)
        if self._direct() and not is_temp(task_id):
            try:
                server = self.api.update_task(self.list_id, task_id, body)
            except ConnectionLost:
                self.go_offline()
            except ApiError:
                # undo the optimistic edit with the server's copy
                self.refresh()
                raise
            else:
                self._swap(task_id, server)
                self._persist()
                return dict(server)
        self._queue(PendingAction(ActionType.UPDATE, self.list_id, task_id, body))
        return dict(local)

    def delete_task(self, task_id: TaskId) -> None:
        task_id = self.queue.id_map.resolve(task_id)
        self._remove(task_id)
        if is_temp(task_id) and task_id not in self._queued_temps():
            # never sent and never will be: nothing to tell the server
            self._persist()
            return
        if self._direct() and not is_temp(task_id):
            try:
                self.api.delete_task(self.list_id, task_id)
            except ConnectionLost:
                self.go_offline()
            except ApiError as err:
                if err.status != 404:
                    self.refresh()
                    raise
                self._persist()
                return
            else:
                self._persist()
                return
        self._queue(PendingAction(ActionType.DELETE, self.list_id, task_id))

    def reorder(self, ordered_ids: Sequence[TaskId], recurring: Optional[bool] = None) -> None:
        """Renumber one recurrence class locally (1-based) and send the order."""
        resolved = [self.queue.id_map.resolve(i) for i in ordered_ids]
        by_id = {t["id"]: t for t in self._tasks}
        if recurring is None:
            first = next((by_id[i] for i in resolved if i in by_id), None)
            recurring = bool(first and first.get("repeat") is not None)
        position = 0
        for task_id in resolved:
            task = by_id.get(task_id)
            if task is None or (task.get("repeat") is not None) != recurring:
                continue
            position += 1
            task["order"] = position
        payload = {"orderedIds": resolved, "recurring": recurring}
        if self._direct() and not any(is_temp(i) for i in resolved):
            try:
                canonical = self.api.reorder_tasks(self.list_id, resolved, recurring)
            except ConnectionLost:
                self.go_offline()
            else:
                self.replace(canonical)
                return
        self._queue(PendingAction(ActionType.REORDER, self.list_id, None, payload))

    # --- realtime events ---------------------------------------------------

    def apply_event(self, event: str, data: Any) -> bool:
        """Fold a server event into the cache. Returns False if it was not for this list."""
        if event in (TASK_CREATED, TASK_UPDATED):
            if data.get("listId") != self.list_id:
                return False
            if self._find(data["id"]) is not None:
                self._swap(data["id"], data)
            else:
                echo = None
                if event == TASK_CREATED:
                    sig = content_signature(data)
                    queued = self._queued_temps()
                    echo = next(
                        (
                            t
                            for t in self._tasks
                            if is_temp(t.get("id")) and t["id"] not in queued and content_signature(t) == sig
                        ),
                        None,
                    )
                if echo is not None:
                    self._swap(echo["id"], data)
                else:
                    self._tasks.append(dict(data))
        elif event == TASK_DELETED:
            if data.get("listId") != self.list_id:
                return False
            self._remove(data.get("taskId"))
        elif event == TASKS_REORDERED:
            if not data or any(t.get("listId") != self.list_id for t in data):
                return False
            self.replace(data)
            return True
        elif event == LIST_DELETED:
            if data.get("listId") != self.list_id:
                return False
            self._tasks = []
            self.queue.clear()
            self.state = CacheState.EMPTY
        else:
            return False
        self._persist()
        return True

    # --- internals ---------------------------------------------------------

    def _direct(self) -> bool:
        # queued actions must reach the server first, in order
        return self.online and len(self.queue) == 0

    def _queue(self, action: PendingAction) -> None:
        self.queue.enqueue(action)
        self._persist()
        if self.online:
            self.sync()

    def _queued_temps(self) -> set:
        return {a.target for a in self.queue if a.type is ActionType.ADD}

    def _next_order(self, recurring: bool) -> int:
        orders = [t.get("order") or 0 for t in self._tasks if (t.get("repeat") is not None) == recurring]
        return max(orders, default=0) + 1

    def _swap(self, old_id: TaskId, server_task: Dict[str, Any]) -> None:
        new_id = server_task["id"]
        replaced = False
        kept = []
        for task in self._tasks:
            if task.get("id") == old_id and not replaced:
                kept.append(dict(server_task))
                replaced = True
            elif task.get("id") == new_id and old_id != new_id:
                continue  # realtime echo already inserted it
            else:
                kept.append(task)
        if not replaced:
            kept.append(dict(server_task))
        self._tasks = kept

    def _remove(self, task_id: TaskId) -> None:
        self._tasks = [t for t in self._tasks if t.get("id") != task_id]

    def _persist(self) -> None:
        self.store.save_tasks(self.list_id, self._tasks)
        self.store.save_queue(self.queue.dump())
