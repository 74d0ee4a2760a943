"""Membership store: lists and their member records.

Every role mutation goes through here and re-checks the actor with
`access.require_role`, even when a router dependency already did. Member rows
are only touched inside the owning list's transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import ledger
from .access import Role, member_role, require_role
from .db_models import ListDB, ListMemberDB, TaskDB, UserDB
from .errors import AlreadyMember, EmailMismatch, InvalidOperation, NotFound
from .security import create_invite_token, verify_invite_token

logger = logging.getLogger(__name__)


@dataclass
class ShareResult:
    list: ListDB
    user_id: Optional[int] = None
    role: Optional[Role] = None
    invite_token: Optional[str] = None

    @property
    def invited(self) -> bool:
        return self.invite_token is not None


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidOperation("List name is required")
    return cleaned


# --- Lookups -----------------------------------------------------------------


def get_list(db: Session, list_id: int) -> ListDB:
    row = db.get(ListDB, list_id)
    if row is None:
        raise NotFound("List not found")
    return row


def load_authorized_list(db: Session, list_id: int, principal_id: int, required: Role) -> ListDB:
    """Fetch a list and check the principal's role in one step."""
    row = get_list(db, list_id)
    require_role(principal_id, row, required)
    return row


def lists_for_user(db: Session, user_id: int) -> List[ListDB]:
    """Lists the user owns or is a member of, oldest first."""
    member_of = db.query(ListMemberDB.list_id).filter(ListMemberDB.user_id == user_id)
    return (
        db.query(ListDB)
        .filter((ListDB.owner_id == user_id) | ListDB.id.in_(member_of))
        .order_by(ListDB.created_at, ListDB.id)
        .all()
    )


def member_ids(lst: ListDB) -> List[int]:
    """Owner first, then every other member, without duplicates."""
    ids = [lst.owner_id]
    ids.extend(m.user_id for m in lst.members if m.user_id != lst.owner_id)
    return ids


def find_user_by_email(db: Session, email: str) -> Optional[UserDB]:
    return db.query(UserDB).filter(func.lower(UserDB.email) == email.strip().lower()).first()


# --- Mutations ---------------------------------------------------------------


def create_list(db: Session, owner_id: int, name: str) -> ListDB:
    row = ListDB(name=_clean_name(name), owner_id=owner_id)
    row.members.append(ListMemberDB(user_id=owner_id, role=Role.OWNER.label))
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("list created list_id=%s owner_id=%s", row.id, owner_id)
    return row


def add_or_update_member(db: Session, lst: ListDB, actor_id: int, user_id: int, role: Role | str) -> Role:
    """Add `user_id` with `role`, or change the role of an existing member."""
    require_role(actor_id, lst, Role.OWNER)
    role = Role.parse(role)
    if user_id == lst.owner_id:
        raise InvalidOperation("Owner role cannot be changed")
    if role is Role.OWNER:
        raise InvalidOperation("Ownership cannot be transferred")
    if db.get(UserDB, user_id) is None:
        raise NotFound("User not found")

    existing = next((m for m in lst.members if m.user_id == user_id), None)
    if existing is not None:
        existing.role = role.label
    else:
        lst.members.append(ListMemberDB(user_id=user_id, role=role.label))
    db.commit()
    db.refresh(lst)
    return role


def share_list(
    db: Session,
    lst: ListDB,
    actor_id: int,
    *,
    role: Role | str,
    user_id: Optional[int] = None,
    email: Optional[str] = None,
) -> ShareResult:
    """Share with a registered user directly, or issue an invite token for an email."""
    role = Role.parse(role)
    if role not in (Role.VIEWER, Role.EDITOR):
        raise InvalidOperation("Role must be viewer or editor")
    require_role(actor_id, lst, Role.OWNER)

    target_id = user_id
    if target_id is None and email:
        existing = find_user_by_email(db, email)
        if existing is not None:
            target_id = existing.id

    if target_id is not None:
        if target_id == lst.owner_id:
            raise InvalidOperation("Owner cannot be re-assigned")
        add_or_update_member(db, lst, actor_id, target_id, role)
        return ShareResult(list=lst, user_id=target_id, role=role)

    if not email:
        raise InvalidOperation("userId or email is required")
    token = create_invite_token(lst.id, email.strip(), role.label)
    logger.info("invite issued list_id=%s role=%s", lst.id, role.label)
    return ShareResult(list=lst, role=role, invite_token=token)


def remove_member(db: Session, lst: ListDB, actor_id: int, user_id: int) -> ListDB:
    require_role(actor_id, lst, Role.OWNER)
    if user_id == lst.owner_id:
        raise InvalidOperation("Owner cannot be removed")
    member = next((m for m in lst.members if m.user_id == user_id), None)
    if member is None:
        raise NotFound("User not found in list")
    lst.members.remove(member)
    db.commit()
    db.refresh(lst)
    return lst


def accept_invite(db: Session, user: UserDB, token: str) -> tuple[ListDB, Role]:
    """Redeem an invitation for the authenticated `user`."""
    invite = verify_invite_token(token)
    lst = get_list(db, invite.list_id)
    if member_role(lst, user.id) is not None:
        raise AlreadyMember()
    # The token is bound to an address; a different account cannot redeem it
    if (user.email or "").strip().lower() != invite.email.strip().lower():
        raise EmailMismatch()
    role = Role.parse(invite.role)
    if role is Role.OWNER:
        raise InvalidOperation("Ownership cannot be transferred")
    lst.members.append(ListMemberDB(user_id=user.id, role=role.label))
    db.commit()
    db.refresh(lst)
    logger.info("invite accepted list_id=%s user_id=%s role=%s", lst.id, user.id, role.label)
    return lst, role


def rename_list(db: Session, lst: ListDB, actor_id: int, name: str) -> ListDB:
    require_role(actor_id, lst, Role.OWNER)
    lst.name = _clean_name(name)
    db.commit()
    db.refresh(lst)
    return lst


def delete_list(db: Session, lst: ListDB, actor_id: int) -> int:
    """Cascade: ledger slots, tasks, then the list itself, in one commit."""
    require_role(actor_id, lst, Role.OWNER)
    list_id = lst.id
    slots = ledger.clear_for_list(db, list_id)
    tasks = db.query(TaskDB).filter(TaskDB.list_id == list_id).delete(synchronize_session=False)
    db.delete(lst)
    db.commit()
    logger.info("list deleted list_id=%s tasks=%s ledger_slots=%s", list_id, tasks, slots)
    return list_id
