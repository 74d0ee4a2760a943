# collablist/routers/lists.py
# PURPOSE: list CRUD, membership and sharing. Role checks run in the
# `list_access` dependency and again inside the membership store.

import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import mailer, membership
from ..api.deps import get_channels, require_owner, require_viewer
from ..auth import get_current_user
from ..config import settings
from ..db import get_db
from ..db_models import ListDB, UserDB
from ..errors import Transient
from ..events import (
    LIST_DELETED,
    LIST_MEMBER_REMOVED,
    LIST_SHARED,
    LIST_UPDATED,
    list_room,
    user_room,
)
from ..models import ListCreate, ListOut, ListRename, Member, MemberUpsert, ShareRequest
from ..realtime import ChannelManager

router = APIRouter(prefix="/lists", tags=["lists"])
logger = logging.getLogger(__name__)


@router.post("", response_model=ListOut, status_code=status.HTTP_201_CREATED)
def create_list(payload: ListCreate, db: Session = Depends(get_db), user: UserDB = Depends(get_current_user)):
    return membership.create_list(db, user.id, payload.name)


@router.get("", response_model=List[ListOut])
def my_lists(db: Session = Depends(get_db), user: UserDB = Depends(get_current_user)):
    return membership.lists_for_user(db, user.id)


@router.put("/{list_id}", response_model=ListOut)
async def rename_list(
    payload: ListRename,
    lst: ListDB = Depends(require_owner),
    db: Session = Depends(get_db),
    user: UserDB = Depends(get_current_user),
    channels: ChannelManager = Depends(get_channels),
):
    lst = membership.rename_list(db, lst, user.id, payload.name)
    await channels.broadcast(lst.id, LIST_UPDATED, {"listId": lst.id, "name": lst.name})
    return lst


@router.delete("/{list_id}")
async def delete_list(
    lst: ListDB = Depends(require_owner),
    db: Session = Depends(get_db),
    user: UserDB = Depends(get_current_user),
    channels: ChannelManager = Depends(get_channels),
):
    recipients = membership.member_ids(lst)
    list_id = membership.delete_list(db, lst, user.id)
    # Members not currently viewing the list still learn it is gone
    rooms = [list_room(list_id)] + [user_room(uid) for uid in recipients]
    await channels.emit(rooms, LIST_DELETED, {"listId": list_id})
    channels.close_room(list_id)
    return {"success": True, "message": "List, tasks, and notifications deleted"}


# --- Members ---------------------------------------------------------------


@router.get("/{list_id}/members", response_model=List[Member])
def list_members(lst: ListDB = Depends(require_viewer)):
    return lst.members


@router.post("/{list_id}/members", response_model=ListOut)
async def upsert_member(
    payload: MemberUpsert,
    lst: ListDB = Depends(require_owner),
    db: Session = Depends(get_db),
    user: UserDB = Depends(get_current_user),
    channels: ChannelManager = Depends(get_channels),
):
    role = membership.add_or_update_member(db, lst, user.id, payload.user_id, payload.role)
    event = {"listId": lst.id, "userId": payload.user_id, "role": role.label}
    await channels.emit([list_room(lst.id), user_room(payload.user_id)], LIST_SHARED, event)
    return lst


@router.post("/{list_id}/share")
async def share_list(
    payload: ShareRequest,
    lst: ListDB = Depends(require_owner),
    db: Session = Depends(get_db),
    user: UserDB = Depends(get_current_user),
    channels: ChannelManager = Depends(get_channels),
):
    result = membership.share_list(db, lst, user.id, role=payload.role, user_id=payload.user_id, email=payload.email)
    if not result.invited:
        event = {"listId": lst.id, "userId": result.user_id, "role": result.role.label}
        await channels.emit([list_room(lst.id), user_room(result.user_id)], LIST_SHARED, event)
        return ListOut.model_validate(lst).model_dump(mode="json", by_alias=True)

    try:
        await mailer.send_invite(
            settings, to=payload.email, list_name=lst.name, inviter=user.username, token=result.invite_token
        )
    except OSError as err:  # smtplib errors are OSError subclasses
        logger.warning("invite mail failed list_id=%s error=%s", lst.id, err)
        raise Transient("Failed to send invitation email") from err
    return {"message": "Invitation sent successfully", "invited": True}


@router.delete("/{list_id}/members/{user_id}")
async def remove_member(
    user_id: int,
    lst: ListDB = Depends(require_owner),
    db: Session = Depends(get_db),
    user: UserDB = Depends(get_current_user),
    channels: ChannelManager = Depends(get_channels),
):
    lst = membership.remove_member(db, lst, user.id, user_id)
    event = {"listId": lst.id, "userId": user_id}
    await channels.emit([list_room(lst.id), user_room(user_id)], LIST_MEMBER_REMOVED, event)
    # A removed member stops receiving list traffic immediately
    channels.evict(lst.id, user_id)
    return {
        "success": True,
        "members": [Member.model_validate(m).model_dump(mode="json", by_alias=True) for m in lst.members],
    }


