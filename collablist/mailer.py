"""Invitation e-mail. Without SMTP_HOST the invite link is only logged."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage

from .config import Settings
from .security import invite_url

logger = logging.getLogger(__name__)


def build_invite_message(settings: Settings, *, to: str, list_name: str, inviter: str, token: str) -> EmailMessage:
    link = invite_url(token)
    msg = EmailMessage()
    msg["Subject"] = f'You\'re invited to join "{list_name}"'
    msg["From"] = settings.SMTP_FROM or settings.SMTP_USER
    msg["To"] = to
    msg.set_content(
        f'{inviter} has invited you to join the list "{list_name}".\n\n'
        f"Accept the invitation: {link}\n\n"
        "This invitation will expire in 7 days.\n"
    )
    msg.add_alternative(
        "<h2>You've been invited to collaborate!</h2>"
        f'<p>{inviter} has invited you to join the list "{list_name}".</p>'
        f'<p><a href="{link}">Click here to accept the invitation</a></p>'
        "<p>This invitation will expire in 7 days.</p>",
        subtype="html",
    )
    return msg


def _send_blocking(settings: Settings, msg: EmailMessage) -> None:
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
        smtp.starttls()
        if settings.SMTP_USER:
            smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


async def send_invite(settings: Settings, *, to: str, list_name: str, inviter: str, token: str) -> bool:
    """Send (or log) the invitation. Returns True when handed to SMTP."""
    msg = build_invite_message(settings, to=to, list_name=list_name, inviter=inviter, token=token)
    if not settings.SMTP_HOST:
        logger.info("invite mail not sent (SMTP_HOST empty) to=%s link=%s", to, invite_url(token))
        return False
    await asyncio.to_thread(_send_blocking, settings, msg)
    logger.info("invite mail sent to=%s list=%s", to, list_name)
    return True
