# collablist/routers/tasks.py
# PURPOSE: tasks of one list (/lists/{list_id}/tasks) plus the cross-list
# /tasks/all view. Every mutation broadcasts to the list room after commit and
# queues a best-effort activity push for the list members.

from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Response, status
from sqlalchemy.orm import Session

from .. import membership, task_store
from ..api.deps import get_channels, get_push, require_editor, require_viewer
from ..auth import get_current_user
from ..db import get_db
from ..db_models import ListDB, UserDB
from ..errors import NotFound
from ..events import TASK_CREATED, TASK_DELETED, TASK_UPDATED, TASKS_REORDERED, task_payload
from ..models import ReorderRequest, TaskCreate, TaskOut, TaskUpdate, TaskWithList
from ..push import PushDelivery, activity_payload
from ..realtime import ChannelManager

router = APIRouter(prefix="/lists/{list_id}/tasks", tags=["tasks"])
all_router = APIRouter(prefix="/tasks", tags=["tasks"])


def _queue_activity_push(background: BackgroundTasks, push: PushDelivery, lst: ListDB, task: dict, kind: str) -> None:
    background.add_task(push.notify_users, membership.member_ids(lst), activity_payload(task, kind))


@router.get("", response_model=List[TaskOut])
def list_tasks(lst: ListDB = Depends(require_viewer), db: Session = Depends(get_db)):
    return task_store.list_tasks(db, lst.id)


@router.post("", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
async def create_task(
    item: TaskCreate,
    response: Response,
    background: BackgroundTasks,
    lst: ListDB = Depends(require_editor),
    db: Session = Depends(get_db),
    user: UserDB = Depends(get_current_user),
    channels: ChannelManager = Depends(get_channels),
    push: PushDelivery = Depends(get_push),
):
    task = task_store.create_task(db, lst, user.id, item)
    payload = task_payload(task)
    response.headers["Location"] = f"/lists/{lst.id}/tasks/{task.id}"
    await channels.broadcast(lst.id, TASK_CREATED, payload)
    _queue_activity_push(background, push, lst, payload, "created")
    return payload


# Declared before /{task_id} so "reorder" is never parsed as an id
@router.put("/reorder", response_model=List[TaskOut])
async def reorder_tasks(
    body: ReorderRequest,
    lst: ListDB = Depends(require_editor),
    db: Session = Depends(get_db),
    user: UserDB = Depends(get_current_user),
    channels: ChannelManager = Depends(get_channels),
):
    tasks = task_store.reorder_tasks(db, lst, user.id, body.ordered_ids, recurring=body.recurring)
    payload = [task_payload(t) for t in tasks]
    await channels.broadcast(lst.id, TASKS_REORDERED, payload)
    return payload


@router.get("/{task_id}", response_model=TaskOut)
def get_task(task_id: int, lst: ListDB = Depends(require_viewer), db: Session = Depends(get_db)):
    task = task_store.get_task(db, lst.id, task_id)
    if task is None:
        raise NotFound("Task not found")
    return task


@router.put("/{task_id}", response_model=TaskOut)
@router.patch("/{task_id}", response_model=TaskOut, include_in_schema=False)
async def update_task(
    task_id: int,
    item: TaskUpdate,
    background: BackgroundTasks,
    lst: ListDB = Depends(require_editor),
    db: Session = Depends(get_db),
    user: UserDB = Depends(get_current_user),
    channels: ChannelManager = Depends(get_channels),
    push: PushDelivery = Depends(get_push),
):
    task = task_store.update_task(db, lst, user.id, task_id, item)
    payload = task_payload(task)
    await channels.broadcast(lst.id, TASK_UPDATED, payload)
    _queue_activity_push(background, push, lst, payload, "updated")
    return payload


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: int,
    background: BackgroundTasks,
    lst: ListDB = Depends(require_editor),
    db: Session = Depends(get_db),
    user: UserDB = Depends(get_current_user),
    channels: ChannelManager = Depends(get_channels),
    push: PushDelivery = Depends(get_push),
):
    task = task_store.get_task(db, lst.id, task_id)
    if task is None:
        raise NotFound("Task not found")
    payload = task_payload(task)
    task_store.delete_task(db, lst, user.id, task_id)
    await channels.broadcast(lst.id, TASK_DELETED, {"taskId": task_id, "listId": lst.id})
    _queue_activity_push(background, push, lst, payload, "deleted")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@all_router.get("/all", response_model=List[TaskWithList])
def all_tasks(db: Session = Depends(get_db), user: UserDB = Depends(get_current_user)):
    return [
        TaskWithList(**TaskOut.model_validate(task).model_dump(), list_name=name)
        for task, name in task_store.tasks_for_user(db, user.id)
    ]
