# collablist/auth.py
# Password hashing (bcrypt), JWT issue/verify (python-jose) and the
# current-user dependency shared by REST routes and the realtime handshake.

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
import bcrypt
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .db_models import UserDB
from .errors import Unauthorized

# Bearer token extraction; auto_error=False so we raise our own Unauthorized
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


# --- Password helpers (bcrypt, no passlib) ---

def hash_password(password: str) -> str:
    """Return a bcrypt hash for the given plain password."""
    if not isinstance(password, str):
        raise TypeError("password must be a string")
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )
    except ValueError:
        return False


# --- JWT helpers ---

def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def get_access_token_ttl_minutes() -> int:
    """
    Return access token TTL in minutes, parsed safely from settings.
    Falls back to 7 days if env contains invalid value (e.g., '60m').
    """
    try:
        return int(settings.JWT_EXPIRE_MIN)
    except (TypeError, ValueError):
        return 60 * 24 * 7


def create_access_token(user_id: int, extra: Dict[str, Any] | None = None) -> str:
    """Create a signed JWT whose `sub` is the user id."""
    payload: Dict[str, Any] = {**(extra or {}), "sub": str(user_id)}
    expire = _now_utc() + timedelta(minutes=get_access_token_ttl_minutes())
    payload["exp"] = expire
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str | None) -> int:
    """Return the user id carried by `token` or raise Unauthorized."""
    if not token:
        raise Unauthorized("Authentication required")
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as err:
        raise Unauthorized("Invalid token") from err
    subject = payload.get("sub")
    try:
        return int(subject)
    except (TypeError, ValueError) as err:
        raise Unauthorized("Invalid token") from err


def authenticate_token(db: Session, token: str | None) -> UserDB:
    """Resolve a bearer token to a stored user (REST and realtime handshake)."""
    user_id = decode_access_token(token)
    user = db.get(UserDB, user_id)
    if user is None:
        raise Unauthorized()
    return user


def get_current_user(token: str | None = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> UserDB:
    """Decode JWT and load the user row."""
    return authenticate_token(db, token)
