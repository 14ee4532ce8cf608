import os

# Module-level engine in license_server.database must not need a PostgreSQL server
os.environ.setdefault("DATABASE_URL", "sqlite://")

import json
import threading
import time
from datetime import timedelta
from typing import Optional

import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from main import app
from license_server.config import settings
from license_server.database import build_engine, get_db, get_session_factory
from license_server.integrations.mailgun import SendResult, get_email_transport
from license_server.integrations.paddle import compute_signature
from license_server.models import Base, User
from license_server.models.base import utcnow
from license_server.services import licenses as license_service

ADMIN_TOKEN = "test-admin-token"
PADDLE_SECRET = "pdl_ntfset_test_secret"


class FakeTransport:
    """Records sends; fails while `fail` is set or raises when `error` is set"""

    def __init__(self, fail: bool = False, error: Optional[Exception] = None):
        self.fail = fail
        self.error = error
        self.sent = []
        self._lock = threading.Lock()

    def send(self, to, subject, text, html=None):
        if self.error is not None:
            raise self.error
        if self.fail:
            return SendResult(success=False, error="Mailgun API error 503: unavailable")
        with self._lock:
            self.sent.append({"to": to, "subject": subject, "text": text, "html": html})
            message_id = f"<msg-{len(self.sent)}@test>"
        return SendResult(success=True, message_id=message_id)


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so worker threads share the same database"""
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def make_transport():
    """Factory for transports that fail or raise"""
    return FakeTransport


@pytest.fixture
def client(session_factory, transport, monkeypatch):
    """TestClient on the SQLite database, fake email transport and known secrets"""
    monkeypatch.setattr(settings, "admin_api_token", ADMIN_TOKEN)
    monkeypatch.setattr(settings, "paddle_webhook_secret", PADDLE_SECRET)
    monkeypatch.setattr(settings, "paddle_api_key", "pdl_sdbx_apikey_test")

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_email_transport] = lambda: transport
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}


@pytest.fixture
def no_sleep():
    """Skip retry backoff waits"""
    with patch("license_server.services.retry.time.sleep") as sleep:
        yield sleep


@pytest.fixture
def user(db):
    user = User(email="buyer@example.com", name="Buyer")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def make_license(db, user):
    """Factory: committed license for the default user"""

    def _make(max_activations=2, expires_in_days=None, **kwargs):
        expires_at = utcnow() + timedelta(days=expires_in_days) if expires_in_days is not None else None
        license = license_service.create_license(
            db, user_id=user.id, expires_at=expires_at, max_activations=max_activations, **kwargs
        )
        db.commit()
        db.refresh(license)
        return license

    return _make


def paddle_signature(payload: dict, secret: str = PADDLE_SECRET, timestamp: Optional[int] = None) -> str:
    ts = str(int(time.time()) if timestamp is None else timestamp)
    return f"ts={ts};h1={compute_signature(ts, payload, secret)}"


@pytest.fixture
def sign():
    return paddle_signature


@pytest.fixture
def post_paddle(client):
    """POST a signed Paddle notification; pass signature to override the header"""

    def _post(payload: dict, signature: Optional[str] = None):
        headers = {"Content-Type": "application/json"}
        headers["Paddle-Signature"] = signature if signature is not None else paddle_signature(payload)
        return client.post("/paddle/webhook", content=json.dumps(payload), headers=headers)

    return _post
