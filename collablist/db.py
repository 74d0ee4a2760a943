# PURPOSE: create the engine, the Session factory and the per-request session dependency.

from datetime import timezone

from fastapi import Depends
from sqlalchemy import DateTime, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator

from .config import settings

# Choose engine based on DATABASE_URL; apply SQLite-specific connect_args only when needed.
db_url = settings.DATABASE_URL
connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}

engine = create_engine(db_url, connect_args=connect_args)

# SessionLocal: opened/closed per request, per realtime message and per sweep
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base: parent class for all ORM models (tables)
Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Store naive UTC, hand back timezone-aware UTC datetimes.

    SQLite drops tzinfo on the way in, so comparisons between stored values and
    `now_utc()` would otherwise mix naive and aware datetimes.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


def get_session_factory() -> sessionmaker:
    """Return the Session factory; tests override this dependency."""
    return SessionLocal


def get_db(session_factory: sessionmaker = Depends(get_session_factory)):
    """Yield a SQLAlchemy session (used as a FastAPI dependency)."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
