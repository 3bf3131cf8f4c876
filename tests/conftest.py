"""
tests/conftest.py -- Shared test fixtures for AuthGate integration tests.

This module provides:
  - FakeClock: controllable time source for window and TTL boundaries
  - _make_user_store(): isolated named shared-memory SQLite user store
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - gate: TestClient plus seeded admin and regular user, fresh counters per test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment must be set before any core/auth import so get_settings() runs in
dev mode (auto-generated secrets) and issues cookies the HTTP test client will
send back (no Secure flag).
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECURE_COOKIES", "false")
os.environ.setdefault("COOKIE_SAMESITE", "lax")

import pytest
from fastapi.testclient import TestClient

from api.main import app, configure_state
from auth.models import ROLE_ADMIN, ROLE_USER, User
from auth.provider import hash_password
from auth.store import UserStore
from auth.tokens import create_session_token
from core.config import get_settings
from core.events import event_log
from counters.store import CounterStore, MemoryCounterStore

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"
USER_EMAIL = "alice@example.com"
USER_PASSWORD = "alicepass123"


class FakeClock:
    """Callable clock returning seconds; advance() moves it forward."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def ms(self) -> int:
        return int(self.now * 1000)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_user_store() -> UserStore:
    """Create a user store on a uniquely named shared-memory SQLite database."""
    return UserStore(db_url=f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(user_store: UserStore, counter_store: CounterStore):
    """Return an async context manager that replaces the real lifespan.

    Builds the same app.state graph as production (configure_state) around
    the test stores, so routes exercise the real limiter, tracker and CSRF
    engine.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        configure_state(app, get_settings(), user_store, counter_store)
        yield
        await counter_store.close()

    return test_lifespan


def _seed_user(store: UserStore, email: str, password: str, role: str) -> int:
    return store.create_user(User(email=email, hashed_password=hash_password(password), role=role))


@dataclass
class Gate:
    client: TestClient
    user_store: UserStore
    counter_store: MemoryCounterStore
    admin_id: int
    admin_token: str
    user_id: int
    user_token: str

    def auth(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def csrf_headers(self, token: str | None = None) -> dict[str, str]:
        """Fetch a CSRF token (also sets the cookie) and return the header to echo it."""
        csrf = self.client.get("/api/v1/auth/csrf").json()["csrf_token"]
        headers = {get_settings().csrf_header_name: csrf}
        if token is not None:
            headers.update(self.auth(token))
        return headers


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def gate() -> Generator[Gate, None, None]:
    """Yield a Gate with fresh counters and a seeded admin and regular user.

    Function-scoped: rate-limit and lockout counters must not leak between
    tests.
    """
    user_store = _make_user_store()
    counter_store = MemoryCounterStore()
    admin_id = _seed_user(user_store, ADMIN_EMAIL, ADMIN_PASSWORD, ROLE_ADMIN)
    user_id = _seed_user(user_store, USER_EMAIL, USER_PASSWORD, ROLE_USER)
    event_log.clear()

    app.router.lifespan_context = _patch_lifespan(user_store, counter_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield Gate(
            client=client,
            user_store=user_store,
            counter_store=counter_store,
            admin_id=admin_id,
            admin_token=create_session_token(admin_id, ADMIN_EMAIL, ROLE_ADMIN, expire_seconds=3600),
            user_id=user_id,
            user_token=create_session_token(user_id, USER_EMAIL, ROLE_USER, expire_seconds=3600),
        )

    user_store.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
