from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from ..config import settings
from ..errors import InvalidToken


@dataclass(frozen=True)
class Invite:
    list_id: int
    email: str
    role: str


def _get_serializer() -> URLSafeTimedSerializer:
    # Stable salt binds tokens to this purpose; change to rotate
    return URLSafeTimedSerializer(secret_key=settings.INVITE_SECRET, salt="collablist.invite.v1")


def create_invite_token(list_id: int, email: str, role: str) -> str:
    """Create a signed, timestamped invitation token."""
    return _get_serializer().dumps({"listId": list_id, "email": email, "role": role})


def verify_invite_token(token: str, max_age: Optional[int] = None) -> Invite:
    """Validate signature and TTL; raise InvalidToken on any failure."""
    if not token:
        raise InvalidToken()
    try:
        data = _get_serializer().loads(token, max_age=max_age or settings.INVITE_TTL_SECONDS)
    except (BadSignature, SignatureExpired) as err:  # SignatureExpired is a BadSignature
        raise InvalidToken() from err
    try:
        return Invite(list_id=int(data["listId"]), email=str(data["email"]), role=str(data["role"]))
    except (KeyError, TypeError, ValueError) as err:
        raise InvalidToken() from err


def invite_url(token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/accept-invite?token={token}"
