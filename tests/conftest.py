# tests/conftest.py
# PURPOSE: create a TestClient and override the session factory to use a temp SQLite file.

# Ensure project root is on sys.path so `import collablist` works when running pytest.
import sys, os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Settings are read at import time: no background sweep, no limiter, no file DB
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("DB_AUTO_CREATE", "false")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import tempfile
from dataclasses import dataclass
from typing import Dict

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from collablist.db import Base, get_session_factory  # DB metadata + dependency to override
from collablist.main import app  # FastAPI app


@dataclass
class User:
    id: int
    username: str
    email: str
    token: str

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


@pytest.fixture()
def session_factory():
    # 1) Temporary SQLite file so data is isolated per test
    tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    tmp.close()
    engine = create_engine(f"sqlite:///{tmp.name}", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    # 2) Create tables
    Base.metadata.create_all(bind=engine)

    yield TestingSessionLocal

    # 3) Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    os.unlink(tmp.name)


@pytest.fixture()
def client(session_factory):
    # Override before startup so push delivery also uses the test database
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    # Context manager runs the lifespan (channel manager, push delivery)
    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture()
def push_sender(client):
    """The recording sender used when no VAPID key is configured."""
    return app.state.push.sender


@pytest.fixture()
def make_user(client):
    def _make(username: str, email: str | None = None, password: str = "secret") -> User:
        body = {"username": username, "password": password}
        if email is not None:
            body["email"] = email
        r = client.post("/auth/signup", json=body)
        assert r.status_code == 201, r.text
        token = r.json()["token"]
        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        data = me.json()
        return User(id=data["id"], username=data["username"], email=data["email"], token=token)

    return _make


@pytest.fixture()
def make_list(client):
    def _make(owner: User, name: str = "Groceries") -> Dict:
        r = client.post("/lists", json={"name": name}, headers=owner.headers)
        assert r.status_code == 201, r.text
        return r.json()

    return _make


@pytest.fixture()
def share(client):
    def _share(owner: User, list_id: int, target: User, role: str = "editor") -> None:
        r = client.post(
            f"/lists/{list_id}/members",
            json={"userId": target.id, "role": role},
            headers=owner.headers,
        )
        assert r.status_code == 200, r.text

    return _share
