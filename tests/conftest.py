"""
tests/conftest.py -- Shared test fixtures for the identity service tests.

This module provides:
  - make_settings(): Settings with a fixed secret and the minimum bcrypt cost
  - RecordingNotifier: captures every dispatched email so tests can read OTPs
  - FakeClock: injectable clock that tests advance to expire OTPs and lockouts
  - store / engine fixtures: a fresh in-memory database and engine per test
  - file_store / file_harness: a WAL file database for multi-threaded tests
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

DEBUG and RATE_LIMIT_ENABLED must be set before any api/ import: the app
module reads settings at import time for its middleware and limiter.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

# CRITICAL: Set before any api/core import so get_settings() can auto-generate
# SECRET_KEY in dev mode and slowapi limits are disabled for the whole run.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.engine import IdentityEngine
from auth.passwords import PasswordHasher
from auth.store import AccountStore
from auth.tokens import TokenService, utcnow
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789abcdef"

_OTP_RE = re.compile(r"<strong>(\d+)</strong>")

# bcrypt at cost 4 is fast; one hasher is shared by every test.
_HASHER = PasswordHasher(rounds=4)


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "bcrypt_rounds": 4,
        "secure_cookies": False,
        "rate_limit_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


def memory_db_url(prefix: str = "identity") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@dataclass
class SentEmail:
    recipient: str
    subject: str
    body: str


@dataclass
class RecordingNotifier:
    """Notifier double. Set fail=True to simulate a dead mail relay."""

    sent: list[SentEmail] = field(default_factory=list)
    fail: bool = False

    def send(self, recipient: str, subject: str, body: str) -> bool:
        if self.fail:
            return False
        self.sent.append(SentEmail(recipient, subject, body))
        return True

    def last_otp(self, recipient: str | None = None) -> str:
        for email in reversed(self.sent):
            if recipient is None or email.recipient == recipient:
                match = _OTP_RE.search(email.body)
                if match:
                    return match.group(1)
        raise AssertionError(f"No OTP was sent to {recipient!r}")


class FakeClock:
    """Starts at the real current time so python-jose expiry checks still pass."""

    def __init__(self) -> None:
        self.now = utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class Harness:
    engine: IdentityEngine
    store: AccountStore
    notifier: RecordingNotifier
    clock: FakeClock
    settings: Settings
    tokens: TokenService

    def register_and_verify(self, email: str = "alice@example.com", password: str = "Passw0rd!x"):
        """Create an Active, verified account through the public flow."""
        self.engine.register(email, password)
        return self.engine.verify_email(email, self.notifier.last_otp(email))


def build_harness(store: AccountStore, **setting_overrides) -> Harness:
    settings = make_settings(**setting_overrides)
    clock = FakeClock()
    notifier = RecordingNotifier()
    tokens = TokenService(settings, clock=clock)
    engine = IdentityEngine(
        repository=store,
        tokens=tokens,
        hasher=_HASHER,
        notifier=notifier,
        settings=settings,
        clock=clock,
    )
    return Harness(engine, store, notifier, clock, settings, tokens)


# ---------------------------------------------------------------------------
# Function-scoped fixtures -- a fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore(db_url=memory_db_url())
    yield s
    s.close()


@pytest.fixture
def harness(store: AccountStore) -> Harness:
    return build_harness(store)


@pytest.fixture
def hasher() -> PasswordHasher:
    return _HASHER


@pytest.fixture
def file_store(tmp_path) -> Generator[AccountStore, None, None]:
    """File-backed store for tests that write from several threads at once.

    Shared-cache memory databases fail fast with "table is locked" under
    concurrent writers; a WAL file database waits on the busy timeout.
    """
    s = AccountStore(db_url=f"sqlite:///{tmp_path / 'identity.db'}", timeout_seconds=30)
    yield s
    s.close()


@pytest.fixture
def file_harness(file_store: AccountStore) -> Harness:
    return build_harness(file_store)


# ---------------------------------------------------------------------------
# Module-scoped API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(h: Harness):
    """Return an async context manager that replaces the real lifespan.

    Wires the test harness into app.state so TestClient routes see an
    isolated in-memory database and the recording notifier.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = h.settings
        app.state.store = h.store
        app.state.tokens = h.tokens
        app.state.engine = h.engine
        yield

    return test_lifespan


@dataclass
class ApiContext:
    client: TestClient
    harness: Harness
    admin_token: str
    admin_id: int


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    An administrator is bootstrapped before the client starts and an access
    token is issued for use in Authorization headers.
    """
    store = AccountStore(db_url=memory_db_url("api"))
    h = build_harness(store)
    admin = h.engine.bootstrap_admin("admin@example.com", "Adm1n!pass")
    token = h.tokens.issue_access_token(admin)

    app.router.lifespan_context = _patch_lifespan(h)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, harness=h, admin_token=token, admin_id=admin.id)

    store.close()


# ---------------------------------------------------------------------------
# Factory fixtures -- for tests that need non-default settings
# ---------------------------------------------------------------------------


@pytest.fixture
def settings_factory():
    """Return make_settings so a test can build Settings with overrides."""
    return make_settings


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def harness_factory(store: AccountStore):
    """Build a Harness over the per-test store with custom settings (e.g. lockout_threshold=3)."""

    def _factory(**setting_overrides) -> Harness:
        return build_harness(store, **setting_overrides)

    return _factory
