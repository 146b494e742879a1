"""
tests/conftest.py -- Shared test fixtures for authcore unit and integration tests.

This module provides:
  - FrozenClock / deterministic OTP codes / recording mail sender, so every
    expiry and every mailed code is under the test's control
  - user_store: an isolated, bootstrapped in-memory directory per test
  - auth_service, verification_flow, reset_flow: the identity core wired to
    the fixtures above
  - api: TestClient over the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment must be set before any api/ import: get_settings() is cached and
api/main.py reads it at import time (TrustedHost list, session secret).
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator, Iterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any authcore import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-at-least-32-characters")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, configure_services
from auth.errors import MailDeliveryError
from auth.passwords import PasswordHasher
from auth.registry import RoleName, bootstrap
from auth.reset import PasswordResetFlow
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenCodec
from auth.verification import EmailVerificationFlow
from cache.store import InMemoryOtpStore
from core.clock import FrozenClock
from core.config import get_settings
from mail.sender import ContentType, MailMessage
from mail.templates import EmailTemplates

SECRET = "test-secret-key-that-is-at-least-32-characters"
START = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
PASSWORD = "correct horse battery"

limiter.enabled = False


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class CodeSequence:
    """OTP generator that hands out the given codes in order, repeating the last."""

    def __init__(self, *codes: str) -> None:
        self.codes = list(codes) or ["482913"]
        self.calls = 0

    def __call__(self) -> str:
        code = self.codes[min(self.calls, len(self.codes) - 1)]
        self.calls += 1
        return code


@dataclass
class RecordingMailSender:
    """MailSender that keeps every message; set fail=True to simulate an SMTP outage."""

    sender_email: str = "noreply@authcore.test"
    outbox: list[MailMessage] = field(default_factory=list)
    fail: bool = False

    def create_message(
        self, to: str, subject: str, body: str, content_type: ContentType = ContentType.HTML
    ) -> MailMessage:
        return MailMessage(sender=self.sender_email, to=to, subject=subject, body=body, content_type=content_type)

    def send(self, message: MailMessage) -> None:
        if self.fail:
            raise MailDeliveryError()
        self.outbox.append(message)

    @property
    def last(self) -> MailMessage:
        return self.outbox[-1]


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


def _memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def codes() -> CodeSequence:
    return CodeSequence("482913", "105772", "660134")


@pytest.fixture
def mailer() -> RecordingMailSender:
    return RecordingMailSender()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    # Minimum bcrypt cost keeps the suite fast; production default is 12.
    return PasswordHasher(rounds=4)


@pytest.fixture
def codec(clock: FrozenClock) -> TokenCodec:
    return TokenCodec(SECRET, clock=clock)


@pytest.fixture
def otp_store(clock: FrozenClock, codes: CodeSequence) -> InMemoryOtpStore:
    return InMemoryOtpStore(ttl=timedelta(minutes=5), clock=clock, code_generator=codes)


@pytest.fixture
def user_store() -> Iterator[UserStore]:
    store = UserStore(db_url=_memory_url("test_users"))
    bootstrap(store)
    yield store
    store.close()


@pytest.fixture
def templates() -> EmailTemplates:
    return EmailTemplates(company_name="Acme")


@pytest.fixture
def auth_service(user_store, codec, hasher, clock) -> AuthService:
    return AuthService(user_store, codec, hasher, clock=clock)


@pytest.fixture
def verification_flow(user_store, codec, otp_store, mailer, templates) -> EmailVerificationFlow:
    return EmailVerificationFlow(user_store, codec, otp_store, mailer, templates)


@pytest.fixture
def reset_flow(user_store, codec, otp_store, mailer, templates, hasher) -> PasswordResetFlow:
    return PasswordResetFlow(user_store, codec, otp_store, mailer, templates, hasher)


@pytest.fixture
def alice(auth_service):
    return auth_service.register_local_user("Alice", "alice@example.com", PASSWORD)


# ---------------------------------------------------------------------------
# API harness
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    store: UserStore
    mailer: RecordingMailSender
    clock: FrozenClock
    codes: CodeSequence
    admin_token: str
    super_admin_token: str

    def bearer(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(store, clock, mailer, otp_store, hasher):
    """Return a lifespan that wires the test collaborators into app.state.

    Replaces the real lifespan so no file database is created and no purge
    task is started.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        configure_services(
            app,
            get_settings(),
            store,
            clock=clock,
            mailer=mailer,
            otp_store=otp_store,
            hasher=hasher,
        )
        yield

    return test_lifespan


@pytest.fixture
def api(hasher) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness with an admin and a super_admin already registered.

    follow_redirects=False so OAuth tests can assert on redirect locations.
    """
    store = UserStore(db_url=_memory_url("test_api"))
    bootstrap(store)
    clock = FrozenClock(START)
    codes = CodeSequence("482913", "105772", "660134")
    mailer = RecordingMailSender()
    otp_store = InMemoryOtpStore(ttl=timedelta(minutes=5), clock=clock, code_generator=codes)

    setup = AuthService(store, TokenCodec(get_settings().secret_key, clock=clock), hasher, clock=clock)
    admin = setup.register_local_user("Ada Admin", "admin@example.com", PASSWORD, role=RoleName.ADMIN)
    root = setup.register_local_user("Root", "root@example.com", PASSWORD, role=RoleName.SUPER_ADMIN)

    app.router.lifespan_context = _patch_lifespan(store, clock, mailer, otp_store, hasher)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield ApiHarness(
            client=client,
            store=store,
            mailer=mailer,
            clock=clock,
            codes=codes,
            admin_token=setup.issue_login_token(admin, timedelta(hours=1)),
            super_admin_token=setup.issue_login_token(root, timedelta(hours=1)),
        )
    store.close()
