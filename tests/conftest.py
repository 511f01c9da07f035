"""
tests/conftest.py -- Shared test fixtures for BidBuy Auth tests.

This module provides:
  - RecordingEmailSender: in-memory EmailSender that records every message
    and can be told to fail
  - FakeClock: controllable clock injected into the flows for expiry tests
  - settings / store / flow fixtures: isolated in-memory store per test
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit-test fixtures run on one thread and use plain :memory:.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.authenticator import Authenticator
from auth.models import LegacyStatus, Principal, PrincipalType, VerificationState
from auth.password_reset import PasswordResetService
from auth.service import AuthService
from auth.store import CredentialStore
from auth.tokens import PasswordHasher, SessionTokenSigner
from auth.verification import VerificationService
from core.config import Settings
from notify.notifier import AuthNotifier

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"
STRONG_PASSWORD = "Abc12345!"

_CODE_RE = re.compile(r"code is: (\d{6})")


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


@dataclass
class SentEmail:
    to: str
    subject: str
    html: str
    text: str

    @property
    def code(self) -> str:
        match = _CODE_RE.search(self.text)
        assert match, f"No code in email body: {self.text!r}"
        return match.group(1)


class RecordingEmailSender:
    """EmailSender that keeps every message. Set fail=True to simulate an outage."""

    def __init__(self) -> None:
        self.sent: list[SentEmail] = []
        self.fail = False

    def send(self, to: str, subject: str, html: str, text: str) -> bool:
        if self.fail:
            return False
        self.sent.append(SentEmail(to, subject, html, text))
        return True

    def last_to(self, email: str) -> SentEmail:
        for message in reversed(self.sent):
            if message.to == email:
                return message
        raise AssertionError(f"No email sent to {email}")


class FakeClock:
    """Callable clock. Starts at a fixed instant; advance() moves it forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "bcrypt_rounds": 4,
        "database_url": "sqlite:///:memory:",
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Unit fixtures -- fresh in-memory store per test
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(settings: Settings) -> Generator[CredentialStore, None, None]:
    s = CredentialStore(PasswordHasher(settings.bcrypt_rounds), "sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def notifier(settings: Settings, sender: RecordingEmailSender) -> AuthNotifier:
    return AuthNotifier(sender, settings)


@pytest.fixture
def signer(settings: Settings) -> SessionTokenSigner:
    return SessionTokenSigner(settings.secret_key, settings.token_expire_seconds)


@pytest.fixture
def verification(settings, store, notifier, clock) -> VerificationService:
    return VerificationService(settings, store, notifier, clock=clock)


@pytest.fixture
def authenticator(store, signer, verification) -> Authenticator:
    return Authenticator(store, signer, verification)


@pytest.fixture
def password_reset(settings, store, notifier, clock) -> PasswordResetService:
    return PasswordResetService(settings, store, notifier, clock=clock)


@pytest.fixture
def service(settings, store, verification, authenticator, password_reset) -> AuthService:
    return AuthService(settings, store, verification, authenticator, password_reset)


@pytest.fixture
def make_principal(store: CredentialStore):
    """Insert a principal directly, bypassing signup. Verified by default."""

    def _make(
        email: str = "ada@example.com",
        principal_type: PrincipalType = PrincipalType.buyer,
        password: str | None = STRONG_PASSWORD,
        verified: bool = True,
        **fields,
    ) -> Principal:
        fields.setdefault("name", "Ada Lovelace")
        fields.setdefault("verification_state", VerificationState.verified if verified else VerificationState.unverified)
        fields.setdefault("status", LegacyStatus.completed if verified else LegacyStatus.pending)
        return store.insert(Principal(principal_type=principal_type, email=email, **fields), password=password)

    return _make


# ---------------------------------------------------------------------------
# API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test AuthService into app.state so TestClient routes
    use an isolated in-memory store and the recording sender.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, AuthService, RecordingEmailSender], None, None]:
    """Yield (client, service, sender) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers and middleware.
    """
    db_url = f"sqlite:///file:test_api_{uuid4().hex}?mode=memory&cache=shared&uri=true"
    recorder = RecordingEmailSender()
    service = AuthService.from_settings(make_settings(database_url=db_url), email_sender=recorder)

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service, recorder

    service.close()


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """Rate-limit counters are process-global; start every test from zero."""
    limiter.reset()
