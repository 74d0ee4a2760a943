# collablist/routers/invites.py
# PURPOSE: redeem an e-mailed list invitation.

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import membership
from ..api.deps import get_channels
from ..auth import get_current_user
from ..db import get_db
from ..db_models import UserDB
from ..events import LIST_MEMBER_JOINED, list_payload, list_room, user_room
from ..models import InviteAccept
from ..realtime import ChannelManager

router = APIRouter(prefix="/invites", tags=["invites"])


@router.post("/accept")
async def accept_invite(
    body: InviteAccept,
    db: Session = Depends(get_db),
    user: UserDB = Depends(get_current_user),
    channels: ChannelManager = Depends(get_channels),
):
    lst, role = membership.accept_invite(db, user, body.token)
    event = {"listId": lst.id, "userId": user.id, "role": role.label}
    # The joiner is not in the list room yet; their personal room gets it too
    await channels.emit([list_room(lst.id), user_room(user.id)], LIST_MEMBER_JOINED, event)
    return {"message": "Successfully joined the list", "list": list_payload(lst)}
