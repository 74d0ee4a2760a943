# collablist/rate_limit.py
# PURPOSE: slowapi limiter guarding the credential endpoints (login, signup).

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from starlette.requests import Request

from .config import settings


def get_storage_uri() -> str:
    # Redis when configured (shared across workers), else in-process memory
    return settings.REDIS_URL or settings.RATE_LIMIT_STORAGE_URI


def client_address(request: Request) -> str:
    """Key for credential guessing limits: the caller's address.

    Behind a reverse proxy the first X-Forwarded-For hop is the client, but
    only when RATE_LIMIT_TRUST_FORWARDED says the proxy sets that header.
    """
    if settings.RATE_LIMIT_TRUST_FORWARDED:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return get_remote_address(request)


limiter = Limiter(
    key_func=client_address,
    storage_uri=get_storage_uri(),
    headers_enabled=True,
    enabled=settings.RATE_LIMIT_ENABLED,
)

__all__ = ["client_address", "limiter", "_rate_limit_exceeded_handler"]
