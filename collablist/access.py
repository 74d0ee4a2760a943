"""Role-based access control for lists.

`authorize` is pure: it only looks at the list's owner id and member records,
so it can run on every request and every realtime message before any store
mutation.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from .errors import Forbidden


class Role(IntEnum):
    VIEWER = 0
    EDITOR = 1
    OWNER = 2

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: "str | Role") -> "Role":
        if isinstance(value, Role):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError as err:
            raise ValueError(f"unknown role: {value!r}") from err


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)
NOT_A_MEMBER = "You are not a member of this list"
INSUFFICIENT = "Insufficient permissions"


def member_role(lst: Any, user_id: int) -> Role | None:
    """Role of `user_id` in `lst`; the registered owner is always OWNER."""
    if lst.owner_id == user_id:
        return Role.OWNER
    for member in lst.members:
        if member.user_id == user_id:
            return Role.parse(member.role)
    return None


def authorize(principal_id: int, lst: Any, required: Role) -> Decision:
    if lst.owner_id == principal_id:
        return ALLOW
    role = member_role(lst, principal_id)
    if role is None:
        return Decision(False, NOT_A_MEMBER)
    if role >= required:
        return ALLOW
    return Decision(False, INSUFFICIENT)


def require_role(principal_id: int, lst: Any, required: Role) -> None:
    """Raise Forbidden unless `principal_id` holds at least `required` on `lst`."""
    decision = authorize(principal_id, lst, required)
    if not decision:
        raise Forbidden(decision.reason)
