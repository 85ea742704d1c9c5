"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any message_service import,
so the module-level settings instance is built with them. Values already
present in the environment win.
"""

import os
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import jwt
import mongomock
import pytest

ROOT = Path(__file__).resolve().parent

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("AUTHZ_ALLOW_ALL", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("DATABASE_NAME", "messages_test")
os.environ.setdefault("ROUTING_CONFIG_PATH", str(ROOT / "config" / "routing.yaml"))

# Clear settings cache before any app imports to ensure test env vars are used
from message_service.config import get_settings  # noqa: E402
get_settings.cache_clear()

from message_service import storage  # noqa: E402
from message_service.authorization import get_authorization  # noqa: E402
from message_service.outbox import get_routing  # noqa: E402

TEST_JWT_SECRET = os.environ["JWT_SECRET_KEY"]


def make_token(user_id: uuid.UUID, secret: str = TEST_JWT_SECRET, expires_in: timedelta = timedelta(minutes=15)) -> str:
    """Sign an HS256 access token for user_id."""
    claims = {"sub": str(user_id), "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(claims, secret, algorithm="HS256")


def auth_headers(user_id: uuid.UUID) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture(autouse=True)
def db(monkeypatch):
    """Fresh in-memory MongoDB for every test."""
    client = mongomock.MongoClient(tz_aware=True)
    monkeypatch.setattr(storage, "_client", client)
    get_routing.cache_clear()
    get_authorization.cache_clear()
    yield client[storage.settings.DATABASE_NAME]
    get_authorization.cache_clear()
