"""
tests/conftest.py -- Shared test fixtures for ParkingPilot tests.

This module provides:
  - RecordingNotifier: captures outgoing messages instead of sending them
  - _make_account_store(): isolated in-memory account DB per test module
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - api_client: module-scoped ApiContext (TestClient + notifier + clock + admin)

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.

JWT_SECRET must be set before any api/auth/core import: Settings refuses to
load without a secret of at least 32 characters.
"""

from __future__ import annotations

import asyncio
import itertools
import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import NamedTuple

# CRITICAL: set before importing the app; get_settings() is read at import time.
os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("AUTH_RATE_LIMIT_MAX", "1000")
os.environ.setdefault("GENERAL_RATE_LIMIT", "10000/minute")
os.environ.setdefault("DATABASE_URL", "sqlite:///file:test_unused?mode=memory&cache=shared&uri=true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, configure_services
from auth.models import Account
from auth.passwords import PasswordHasher
from auth.store import AccountStore
from core.clock import FakeClock
from core.config import get_settings
from kvstore import MemoryStore
from notify.base import DeliveryError, Notifier

ADMIN_EMAIL = "admin@vnrvjiet.in"
ADMIN_PASSWORD = "adminpass123"


# ---------------------------------------------------------------------------
# Notifier double
# ---------------------------------------------------------------------------


class RecordingNotifier(Notifier):
    """Keeps every message in memory. Set fail=True to simulate a provider outage."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str, str]] = []
        self.fail = False

    def send(self, channel: str, recipient: str, subject: str, body: str) -> None:
        if self.fail:
            raise DeliveryError("provider down")
        self.sent.append((channel, recipient, subject, body))

    def last_body(self, channel: str, recipient: str) -> str:
        for sent_channel, sent_to, _subject, body in reversed(self.sent):
            if sent_channel == channel and sent_to == recipient:
                return body
        raise AssertionError(f"nothing sent over {channel} to {recipient}")

    def last_code(self, channel: str, recipient: str) -> str:
        return re.search(r"\b(\d{4,10})\b", self.last_body(channel, recipient)).group(1)

    def last_reset_token(self, email: str) -> str:
        return re.search(r"token=([\w\-]+)", self.last_body("email", email)).group(1)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_account_store(db_suffix: str) -> AccountStore:
    """Create an isolated named shared-memory account store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'store').
    """
    return AccountStore(db_url=f"sqlite:///file:test_accounts_{db_suffix}?mode=memory&cache=shared&uri=true")


_store_ids = itertools.count()


@pytest.fixture
def account_store() -> Generator[AccountStore, None, None]:
    """Function-scoped account store, unique per test."""
    store = _make_account_store(f"unit_{next(_store_ids)}")
    yield store
    store.close()


def _patch_lifespan(accounts: AccountStore, notifier: Notifier, clock: FakeClock):
    """Return an async context manager that replaces the real lifespan.

    Uses the production configure_services() so the wiring under test is the
    real one, but with memory stores, a recording notifier and a fake clock.
    The sweep task is a long sleep so shutdown can cancel a real Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        configure_services(
            app,
            get_settings(),
            accounts=accounts,
            notifier=notifier,
            store_factory=lambda namespace: MemoryStore(namespace=namespace),
            clock=clock,
        )
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


class ApiContext(NamedTuple):
    client: TestClient
    notifier: RecordingNotifier
    clock: FakeClock
    accounts: AccountStore
    admin_id: int


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers and middleware but use isolated stores. An admin
    account (ADMIN_EMAIL / ADMIN_PASSWORD) exists before the client starts.
    """
    accounts = _make_account_store(f"api_{request.module.__name__}")
    admin_id = accounts.create_account(
        Account(
            username="pilotadmin",
            email=ADMIN_EMAIL,
            password_hash=PasswordHasher(rounds=4).hash(ADMIN_PASSWORD),
            role="admin",
        )
    )
    notifier = RecordingNotifier()
    clock = FakeClock()

    app.router.lifespan_context = _patch_lifespan(accounts, notifier, clock)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client, notifier, clock, accounts, admin_id)

    accounts.close()


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def register(client: TestClient, username: str, email: str, password: str = "secret1", **extra):
    return client.post("/api/auth/register", json={"username": username, "email": email, "password": password, **extra})


def login(client: TestClient, email: str, password: str, remember_me: bool = False):
    return client.post("/api/auth/login", json={"email": email, "password": password, "remember_me": remember_me})


def session_headers(client: TestClient, token: str) -> dict[str, str]:
    """Bearer header plus a freshly issued CSRF token for state-changing calls."""
    csrf = client.get("/api/csrf-token", headers=bearer(token)).json()["csrfToken"]
    return {**bearer(token), "X-CSRF-Token": csrf}
