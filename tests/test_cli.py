"""
tests/test_cli.py -- Operator CLI (main.py).

Covers:
  - status reports failure count, lock state and per-IP auth counters
  - unlock clears exactly the keys the gate increments
  - counter commands refuse to run without a shared store
  - set-role promotes an existing user
"""

from __future__ import annotations

import uuid

import pytest

import main as cli
from auth.models import ROLE_ADMIN, User
from auth.store import UserStore
from core.config import get_settings
from counters.keys import SIGNIN_ROUTE, lockout_key, rate_limit_key
from counters.store import MemoryCounterStore


@pytest.fixture
def settings():
    return get_settings().model_copy(update={"redis_url": ""})


class TestCounterCommands:
    @pytest.mark.asyncio
    async def test_status_shows_lock_state(self, settings):
        store = MemoryCounterStore()
        for _ in range(settings.lockout_max_attempts):
            await store.hit(lockout_key("bob@example.com"), 900_000)
        await store.hit(rate_limit_key(SIGNIN_ROUTE, "203.0.113.9"), 60_000)

        lines = await cli.show_status(store, settings, "Bob@Example.com", "203.0.113.9")

        assert "lockout:bob@example.com" in lines[0]
        assert "LOCKED" in lines[0]
        assert f"rl:{SIGNIN_ROUTE}:203.0.113.9  1/" in lines[1]

    @pytest.mark.asyncio
    async def test_unlock_clears_lockout_and_ip_counters(self, settings):
        store = MemoryCounterStore()
        await store.hit(lockout_key("bob@example.com"), 900_000)
        await store.hit(rate_limit_key(SIGNIN_ROUTE, "203.0.113.9"), 60_000)

        cleared = await cli.unlock(store, settings, "BOB@example.com", "203.0.113.9")

        assert cleared == ["lockout", "signin_rate_limit", "signup_rate_limit"]
        assert await store.get(lockout_key("bob@example.com")) is None
        assert await store.get(rate_limit_key(SIGNIN_ROUTE, "203.0.113.9")) is None

    def test_requires_shared_store(self, settings, monkeypatch, capsys):
        monkeypatch.setattr(cli, "get_settings", lambda: settings)
        assert cli.main(["unlock", "bob@example.com"]) == 2
        assert "REDIS_URL" in capsys.readouterr().out

    def test_rejects_bad_ip(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["status", "bob@example.com", "--ip", "nope"])


class TestSetRole:
    def test_promotes_user(self, settings, monkeypatch):
        db_url = f"sqlite:///file:test_cli_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
        store = UserStore(db_url)
        uid = store.create_user(User(email="bob@example.com"))
        monkeypatch.setattr(cli, "get_settings", lambda: settings.model_copy(update={"database_url": db_url}))

        assert cli.main(["set-role", "Bob@Example.com", ROLE_ADMIN]) == 0
        assert store.get_by_id(uid).role == ROLE_ADMIN
        store.close()

    def test_unknown_user(self, settings, monkeypatch):
        db_url = f"sqlite:///file:test_cli_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
        store = UserStore(db_url)
        monkeypatch.setattr(cli, "get_settings", lambda: settings.model_copy(update={"database_url": db_url}))

        assert cli.main(["set-role", "ghost@example.com", ROLE_ADMIN]) == 1
        store.close()
