from typing import Callable

from fastapi import Depends, Path, Request
from sqlalchemy.orm import Session

from ..access import Role
from ..auth import get_current_user
from ..db import get_db
from ..db_models import ListDB, UserDB
from ..membership import load_authorized_list
from ..push import PushDelivery
from ..realtime import ChannelManager


def get_channels(request: Request) -> ChannelManager:
    return request.app.state.channels


def get_push(request: Request) -> PushDelivery:
    return request.app.state.push


def list_access(required: Role) -> Callable[..., ListDB]:
    """Dependency factory: load the list from the path and require `required`.

    Unknown list -> 404, not a member or role too low -> 403.
    """

    def dependency(
        list_id: int = Path(...),
        db: Session = Depends(get_db),
        user: UserDB = Depends(get_current_user),
    ) -> ListDB:
        return load_authorized_list(db, list_id, user.id, required)

    return dependency


require_viewer = list_access(Role.VIEWER)
require_editor = list_access(Role.EDITOR)
require_owner = list_access(Role.OWNER)
