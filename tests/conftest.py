"""
tests/conftest.py -- Shared test fixtures for AuthGate.

This module provides:
  - FakeClock: injectable clock that only moves when a test advances it
  - RecordingTransport: email transport that records messages (or fails on demand)
  - store / clock / transport / service: isolated unit-test wiring per test
  - api_client: TestClient over the real app with a patched lifespan

Design: API tests use named shared-memory SQLite URIs (not plain :memory:)
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment variables must be set before any api/auth import:
  DEBUG=true               -- get_settings() auto-generates SECRET_KEY
  RATE_LIMIT_ENABLED=false -- every test request comes from the same address
  ALLOWED_HOSTS            -- TestClient sends Host: testserver
"""

from __future__ import annotations

import asyncio
import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", "testserver,localhost")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.errors import TransportFailure
from auth.models import Account
from auth.store import AccountStore
from auth.sweeper import ExpirySweeper
from auth.tokens import hash_password
from auth.verification import VerificationService

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock returning a fixed aware UTC instant until advanced."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@dataclass
class SentEmail:
    recipient: str
    subject: str
    text_body: str
    html_body: str

    @property
    def code(self) -> str:
        match = re.search(r"\b(\d{6})\b", self.text_body)
        assert match, f"No 6-digit code in email body: {self.text_body!r}"
        return match.group(1)


class RecordingTransport:
    """Email transport that keeps every message; set fail=True to simulate an outage."""

    def __init__(self) -> None:
        self.sent: list[SentEmail] = []
        self.fail = False

    async def send(self, recipient: str, subject: str, text_body: str, html_body: str) -> None:
        if self.fail:
            raise TransportFailure(detail="simulated outage")
        self.sent.append(SentEmail(recipient, subject, text_body, html_body))

    def to(self, recipient: str) -> list[SentEmail]:
        return [m for m in self.sent if m.recipient == recipient]


# ---------------------------------------------------------------------------
# Unit-test fixtures -- fresh in-memory store per test
# ---------------------------------------------------------------------------

# Hashing once keeps the suite fast; bcrypt is deliberately slow.
PASSWORD = "correct-horse"
PASSWORD_HASH = hash_password(PASSWORD)


def make_account(email: str = "ada@example.com", **fields) -> Account:
    fields.setdefault("name", "Ada")
    fields.setdefault("hashed_password", PASSWORD_HASH)
    return Account(email=email, **fields)


def run(coro):
    """Drive a coroutine to completion from a plain (sync) test."""
    return asyncio.run(coro)


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite://")
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def service(store: AccountStore, transport: RecordingTransport, clock: FakeClock) -> VerificationService:
    return VerificationService(store, transport, email_verify_minutes=3, password_reset_minutes=10, clock=clock)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    store: AccountStore
    transport: RecordingTransport


def _patch_lifespan(store: AccountStore, transport: RecordingTransport):
    """Return a lifespan that wires test doubles into app.state.

    The sweeper is created but not started so tests control every deletion.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = store
        app.state.mail_transport = transport
        app.state.verification = VerificationService(store, transport)
        app.state.sweeper = ExpirySweeper(store)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness whose store is private to the requesting test module."""
    suffix = request.module.__name__.replace(".", "_")
    store = AccountStore(f"sqlite:///file:authgate_{suffix}?mode=memory&cache=shared&uri=true")
    transport = RecordingTransport()

    app.router.lifespan_context = _patch_lifespan(store, transport)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, store=store, transport=transport)

    store.close()
