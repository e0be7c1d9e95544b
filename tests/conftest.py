"""
tests/conftest.py -- Shared test fixtures for Gatehouse.

This module provides:
  - FrozenClock: a settable clock injected into TokenService and services
  - RecordingMailer / FailingMailer: Mailer test doubles
  - FakeIdentityProvider: IdentityProvider test double (no network)
  - store / tokens / reset_service: unit-level fixtures over in-memory SQLite
  - api_client: TestClient over the real app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

The DEBUG env var must be set before any api/ or core/ import so
get_settings() auto-generates SECRET_KEY instead of raising ValueError.
"""

from __future__ import annotations

import os
import smtplib
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any core/api import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from auth.bootstrap import init_superuser
from auth.models import ExternalProfile, Role, User
from auth.oauth import OAuthLoginService, build_oauth_registry
from auth.passwords import hash_password
from auth.reset import PasswordResetService
from auth.store import UserStore
from auth.tokens import TokenService

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters-long"

ADMIN_EMAIL = "admin@x.test"
ADMIN_PASSWORD = "Sup3rSecret"
USER_EMAIL = "user@x.test"
USER_PASSWORD = "UserPass1"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send_otp_email(self, to_address: str, code: str) -> None:
        self.sent.append((to_address, code))

    def last_code(self, email: str) -> str:
        return [code for to, code in self.sent if to == email][-1]


class FailingMailer:
    def send_otp_email(self, to_address: str, code: str) -> None:
        raise smtplib.SMTPException("connection refused")


@dataclass
class FakeIdentityProvider:
    """Returns whatever profile the test assigns; records exchanged codes."""

    profile: ExternalProfile
    exchanged: list | None = None

    async def exchange_code(self, code: str, redirect_uri: str) -> dict:
        if self.exchanged is None:
            self.exchanged = []
        self.exchanged.append((code, redirect_uri))
        return {"access_token": f"provider-token-{code}", "token_type": "Bearer"}

    async def fetch_profile(self, token: dict) -> ExternalProfile:
        return self.profile


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    """Fresh shared-memory store. Shared so asyncio.to_thread() calls see it too."""
    s = UserStore(f"sqlite:///file:unit_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield s
    s.close()


@pytest.fixture
def tokens(clock: FrozenClock) -> TokenService:
    return TokenService(TEST_SECRET, clock=clock)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def reset_service(store: UserStore, tokens: TokenService, mailer: RecordingMailer, clock: FrozenClock):
    return PasswordResetService(store, tokens, mailer, clock=clock)


@pytest.fixture
def local_user(store: UserStore) -> User:
    """A local account with USER_EMAIL / USER_PASSWORD."""
    uid = store.create_user(User(email=USER_EMAIL, role=Role.USER.value, password_hash=hash_password(USER_PASSWORD)))
    return store.get_by_id(uid)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, mailer: RecordingMailer, provider: FakeIdentityProvider):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store, a recording mailer and a fake Google provider into
    app.state so routes never touch SMTP or the network.
    """
    from core.config import get_settings

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.settings = settings
        app.state.user_store = user_store
        app.state.tokens = TokenService(TEST_SECRET)
        app.state.reset_service = PasswordResetService(user_store, app.state.tokens, mailer)
        app.state.oauth = build_oauth_registry(settings)
        app.state.oauth_service = OAuthLoginService(user_store, app.state.tokens, {"google": provider})
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, RecordingMailer, FakeIdentityProvider], None, None]:
    """Yield (client, mailer, provider) for API integration tests.

    The store is bootstrapped with ADMIN_EMAIL/ADMIN_PASSWORD as super_admin
    and holds one local user USER_EMAIL/USER_PASSWORD. One DB per test module.
    """
    from api.main import app

    db_name = request.module.__name__.replace(".", "_")
    user_store = UserStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    init_superuser(user_store, ADMIN_EMAIL, ADMIN_PASSWORD)
    user_store.create_user(User(email=USER_EMAIL, role=Role.USER.value, password_hash=hash_password(USER_PASSWORD)))

    mailer = RecordingMailer()
    provider = FakeIdentityProvider(ExternalProfile(external_id="g-100", email="oauth@x.test", display_name="O User"))

    app.router.lifespan_context = _patch_lifespan(user_store, mailer, provider)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, mailer, provider

    user_store.close()
