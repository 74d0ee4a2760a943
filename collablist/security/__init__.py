# Security utilities package

from .invites import (
    Invite,
    create_invite_token,
    verify_invite_token,
    invite_url,
)

__all__ = [
    "Invite",
    "create_invite_token",
    "verify_invite_token",
    "invite_url",
]
