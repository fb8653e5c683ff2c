"""
Shared fixtures: an in-memory SQLite database, a fake LINE client and a
TestClient with the database, admin check and LINE client overridden.
"""

import os

# Must be set before qa_portal.database is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["LINE_ENCRYPTION_KEY"] = ""
os.environ["LINE_CHANNEL_ACCESS_TOKEN"] = ""
os.environ["APP_TIMEZONE"] = "Asia/Bangkok"

import pytest
from fastapi.testclient import TestClient

import qa_portal.models  # noqa: F401
from qa_portal.auth import require_admin
from qa_portal.database import Base, SessionLocal, engine, get_db
from qa_portal.errors import ExternalServiceError
from qa_portal.line_client import get_client_factory
from qa_portal.main import app


class FakeLineClient:
    """Records calls instead of talking to LINE."""

    def __init__(self):
        self.pushed = []
        self.replies = []
        self.fail_push_to = set()
        self.fail_lookups = False
        self.fail_replies = False
        self.bot_info_error = None
        self.tokens = []

    def push_message(self, to, text):
        if to in self.fail_push_to:
            raise ExternalServiceError(f"push to {to} rejected", status_code=400)
        self.pushed.append((to, text))

    def reply_message(self, reply_token, text):
        if self.fail_replies:
            raise ExternalServiceError("reply rejected", status_code=400)
        self.replies.append((reply_token, text))

    def get_user_profile(self, user_id):
        if self.fail_lookups:
            raise ExternalServiceError("profile lookup failed", status_code=404)
        return {"displayName": f"Nurse {user_id}"}

    def get_group_summary(self, group_id):
        if self.fail_lookups:
            raise ExternalServiceError("group lookup failed", status_code=404)
        return {"groupName": f"Team {group_id}"}

    def get_bot_info(self):
        if self.bot_info_error:
            raise ExternalServiceError(self.bot_info_error, status_code=401)
        return {"displayName": "QA Bot", "userId": "Ubot", "pictureUrl": "https://example.com/bot.png"}


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
def fake_line():
    return FakeLineClient()


@pytest.fixture
def client(db, fake_line):
    def make_client(token):
        fake_line.tokens.append(token)
        return fake_line

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[require_admin] = lambda: {"username": "ADMIN", "role": "admin"}
    app.dependency_overrides[get_client_factory] = lambda: make_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
