# collablist/routers/auth.py
# PURPOSE: /auth/signup, /auth/login, /auth/me

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth import create_access_token, get_current_user, hash_password, verify_password
from ..config import settings
from ..db import get_db
from ..db_models import UserDB
from ..errors import InvalidOperation
from ..models import AuthResponse, LoginRequest, SignupRequest, UserPublic
from ..rate_limit import limiter

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_SIGNUP)
def signup(request: Request, response: Response, payload: SignupRequest, db: Session = Depends(get_db)):
    username = payload.username.strip()
    # Email defaults to the username (the original UI used a single login field)
    email = (payload.email or username).strip()
    taken = (
        db.query(UserDB)
        .filter((UserDB.username == username) | (func.lower(UserDB.email) == email.lower()))
        .first()
    )
    if taken:
        raise InvalidOperation("Username or email already registered")
    user = UserDB(username=username, email=email, password_hash=hash_password(payload.password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError as err:
        db.rollback()
        raise InvalidOperation("Username or email already registered") from err
    db.refresh(user)
    logger.info("user signed up user_id=%s", user.id)
    return AuthResponse(token=create_access_token(user.id), username=user.username)


@router.post("/login", response_model=AuthResponse)
@limiter.limit(settings.RATE_LIMIT_LOGIN)
def login(request: Request, response: Response, payload: LoginRequest, db: Session = Depends(get_db)):
    ident = payload.username.strip()
    user = (
        db.query(UserDB)
        .filter((UserDB.username == ident) | (func.lower(UserDB.email) == ident.lower()))
        .first()
    )
    if not user or not verify_password(payload.password, user.password_hash):
        raise InvalidOperation("Invalid credentials")
    return AuthResponse(token=create_access_token(user.id), username=user.username)


@router.get("/me", response_model=UserPublic)
def me(user: UserDB = Depends(get_current_user)):
    return user
