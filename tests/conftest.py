"""
tests/conftest.py -- Shared test fixtures for idgate unit and integration tests.

This module provides:
  - FrozenClock: a settable clock injected into TokenCodec / SessionIssuer
  - RecordingNotifier: a Notifier that keeps every message, with a fail switch
  - secret_from(): pulls the one-time code or link token out of a message
  - store / notifier / clock / service: per-test objects for service tests
  - api_client: TestClient over the real app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit tests run on one thread and use plain :memory:.

The DEBUG env var must be set before any core/api import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

# CRITICAL: Set DEBUG before any core/api import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.challenges import TokenCodec, TokenPolicy
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import SessionIssuer
from mail.base import MailMessage, Notifier, NotifierError

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when a test moves it."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> None:
        self.current = self.current + timedelta(**delta)

    def set(self, value: datetime) -> None:
        self.current = value


class RecordingNotifier(Notifier):
    """Keeps every delivered message. Set fail=True to simulate an outage."""

    def __init__(self) -> None:
        self.sent: list[MailMessage] = []
        self.fail = False

    def send(self, message: MailMessage) -> None:
        if self.fail:
            raise NotifierError("simulated outage")
        self.sent.append(message)

    @property
    def last(self) -> MailMessage:
        return self.sent[-1]


def secret_from(message: MailMessage) -> str:
    """Return the OTP code or the link token carried by a message's text body."""
    last_word = message.text.split()[-1]
    if "?" in last_word:
        return parse_qs(urlparse(last_word).query)["token"][0]
    return last_word


def make_service(
    store: UserStore,
    notifier: Notifier,
    clock: FrozenClock,
    mode: str = "otp",
    expiry_minutes: int = 15,
) -> AuthService:
    return AuthService(
        store,
        notifier,
        codec=TokenCodec(TokenPolicy(mode=mode, expiry_minutes=expiry_minutes), clock=clock),
        issuer=SessionIssuer(TEST_SECRET, expire_seconds=3600, clock=clock),
        app_url="https://app.example.test",
    )


# ---------------------------------------------------------------------------
# Function-scoped fixtures for service/store unit tests
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def service(store: UserStore, notifier: RecordingNotifier, clock: FrozenClock) -> AuthService:
    """AuthService in OTP mode with a 15-minute window and a frozen clock."""
    return make_service(store, notifier, clock)


@pytest.fixture
def token_service(store: UserStore, notifier: RecordingNotifier, clock: FrozenClock) -> AuthService:
    """AuthService in token (link) mode."""
    return make_service(store, notifier, clock, mode="token")


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, notifier: Notifier):
    """Return an async context manager that replaces the real lifespan.

    Wires a pre-created test store and a recording notifier into app.state so
    TestClient routes use an isolated database and never touch SMTP.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        issuer = SessionIssuer(TEST_SECRET, expire_seconds=3600)
        app.state.user_store = user_store
        app.state.session_issuer = issuer
        app.state.auth_service = AuthService(
            user_store,
            notifier,
            codec=TokenCodec(TokenPolicy(mode="otp", expiry_minutes=15)),
            issuer=issuer,
            app_url="https://app.example.test",
        )
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, RecordingNotifier, UserStore], None, None]:
    """Yield (client, notifier, store) for API integration tests.

    One database per test module; tests use unique emails so they do not
    collide within a module.
    """
    db_url = f"sqlite:///file:test_idgate_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url)
    mail = RecordingNotifier()

    app.router.lifespan_context = _patch_lifespan(user_store, mail)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, mail, user_store

    user_store.close()


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"
