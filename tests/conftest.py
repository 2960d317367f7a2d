import os

# Settings and the engine are read at import time, so the environment goes first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["APP_ENV"] = "test"
for _name in ("REDIS_URL", "CELERY_BROKER_URL", "GEMINI_API_KEY", "GOOGLE_CLIENT_ID"):
    os.environ.pop(_name, None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from KoriBackend.config import get_settings  # noqa: E402

get_settings.cache_clear()

import KoriBackend.models  # noqa: E402,F401
from KoriBackend.app import app  # noqa: E402
from KoriBackend.database import Base, SessionLocal, engine  # noqa: E402
from KoriBackend.models.user_model import User  # noqa: E402


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(email: str = "ana@example.com", full_name: str = "Ana Silva", **fields) -> User:
        user = User(full_name=full_name, email=email.lower(), **fields)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


def register(client, email="ana@example.com", password="secret123", full_name="Ana Silva"):
    return client.post("/api/auth/register", json={"fullName": full_name, "email": email, "password": password})


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
