"""
tests/test_counter_store.py -- Counter store realizations.

Covers:
  - MemoryCounterStore: increment/expire/get/reset, lazy expiry, sweep,
    atomic hit under concurrency
  - RedisCounterStore: command mapping and error translation (mocked client)
  - FailoverCounterStore: fallback on outage, retry cooldown, recovery,
    reset clearing both sides
  - build_counter_store: strategy chosen from REDIS_URL
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from core.config import get_settings
from core.errors import BackingStoreUnavailable
from counters.failover import FailoverCounterStore, build_counter_store
from counters.redis_store import RedisCounterStore
from counters.store import MemoryCounterStore


class TestMemoryCounterStore:
    @pytest.fixture
    def store(self, clock) -> MemoryCounterStore:
        return MemoryCounterStore(clock=clock)

    @pytest.mark.asyncio
    async def test_increment_creates_then_adds(self, store: MemoryCounterStore):
        assert await store.increment("k") == 1
        assert await store.increment("k") == 2
        assert await store.get("k") == 2

    @pytest.mark.asyncio
    async def test_absent_key_is_none(self, store: MemoryCounterStore):
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_increment_without_expire_never_expires(self, store: MemoryCounterStore, clock):
        await store.increment("k")
        clock.advance(10 * 365 * 86400)
        assert await store.get("k") == 1

    @pytest.mark.asyncio
    async def test_expired_key_is_absent(self, store: MemoryCounterStore, clock):
        await store.increment("k")
        await store.expire("k", 60)
        clock.advance(59)
        assert await store.get("k") == 1
        clock.advance(1)
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_increment_after_expiry_restarts_at_one(self, store: MemoryCounterStore, clock):
        await store.increment("k")
        await store.increment("k")
        await store.expire("k", 1)
        clock.advance(2)
        assert await store.increment("k") == 1

    @pytest.mark.asyncio
    async def test_expire_on_absent_key_is_noop(self, store: MemoryCounterStore):
        await store.expire("missing", 60)
        assert await store.get("missing") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_reset_is_idempotent(self, store: MemoryCounterStore):
        await store.increment("k")
        await store.reset("k")
        await store.reset("k")
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_hit_sets_window_once(self, store: MemoryCounterStore, clock):
        first = await store.hit("k", 60_000)
        clock.advance(30)
        second = await store.hit("k", 60_000)
        assert (first.count, second.count) == (1, 2)
        assert second.expires_at == first.expires_at
        assert second.reset_in_ms(clock()) == 30_000

    @pytest.mark.asyncio
    async def test_hit_arms_expiry_on_bare_increment(self, store: MemoryCounterStore, clock):
        await store.increment("k")
        entry = await store.hit("k", 1_000)
        assert entry.count == 2
        clock.advance(1)
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, store: MemoryCounterStore, clock):
        await store.hit("short", 1_000)
        await store.hit("long", 60_000)
        await store.increment("forever")
        clock.advance(2)
        assert await store.sweep() == 1
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_concurrent_hits_lose_no_updates(self, store: MemoryCounterStore):
        entries = await asyncio.gather(*(store.hit("k", 60_000) for _ in range(200)))
        assert await store.get("k") == 200
        assert sorted(e.count for e in entries) == list(range(1, 201))

    @pytest.mark.asyncio
    async def test_start_and_close(self):
        store = MemoryCounterStore(sweep_interval=3600)
        store.start()
        await store.increment("k")
        await store.close()
        await store.close()
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_ping(self, store: MemoryCounterStore):
        assert await store.ping() == 0.0


def _redis_client(script_result=None) -> MagicMock:
    client = MagicMock()
    client.register_script.return_value = AsyncMock(return_value=script_result or [1, 60_000])
    client.incr = AsyncMock(return_value=1)
    client.expire = AsyncMock(return_value=True)
    client.get = AsyncMock(return_value=None)
    client.delete = AsyncMock(return_value=1)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client


class TestRedisCounterStore:
    @pytest.mark.asyncio
    async def test_hit_runs_script_with_window(self, clock):
        client = _redis_client([3, 45_000])
        store = RedisCounterStore(client, clock=clock)
        entry = await store.hit("rl:/x:1.2.3.4", 60_000)
        client.register_script.return_value.assert_awaited_once_with(keys=["rl:/x:1.2.3.4"], args=[60_000])
        assert entry.count == 3
        assert entry.reset_in_ms(clock()) == 45_000

    @pytest.mark.asyncio
    async def test_get_parses_integer(self):
        client = _redis_client()
        client.get.return_value = "4"
        store = RedisCounterStore(client)
        assert await store.get("k") == 4

    @pytest.mark.asyncio
    async def test_get_absent(self):
        assert await RedisCounterStore(_redis_client()).get("k") is None

    @pytest.mark.asyncio
    async def test_increment_expire_reset(self):
        client = _redis_client()
        store = RedisCounterStore(client)
        assert await store.increment("k") == 1
        await store.expire("k", 60)
        await store.reset("k")
        client.incr.assert_awaited_once_with("k")
        client.expire.assert_awaited_once_with("k", 60)
        client.delete.assert_awaited_once_with("k")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [RedisConnectionError("refused"), RedisTimeoutError("slow"), OSError("reset")])
    async def test_failures_become_backing_store_unavailable(self, error):
        client = _redis_client()
        client.get.side_effect = error
        store = RedisCounterStore(client)
        with pytest.raises(BackingStoreUnavailable):
            await store.get("k")

    @pytest.mark.asyncio
    async def test_ping_reports_milliseconds(self):
        latency = await RedisCounterStore(_redis_client()).ping()
        assert latency >= 0.0

    @pytest.mark.asyncio
    async def test_close(self):
        client = _redis_client()
        await RedisCounterStore(client).close()
        client.aclose.assert_awaited_once()


class _BrokenStore(MemoryCounterStore):
    """Memory store that can be switched to raise like an unreachable server."""

    name = "broken"

    def __init__(self) -> None:
        super().__init__()
        self.down = True
        self.calls = 0

    async def hit(self, key, window_ms):
        self.calls += 1
        if self.down:
            raise BackingStoreUnavailable("ConnectionError")
        return await super().hit(key, window_ms)

    async def reset(self, key):
        if self.down:
            raise BackingStoreUnavailable("ConnectionError")
        await super().reset(key)

    async def ping(self):
        if self.down:
            raise BackingStoreUnavailable("ConnectionError")
        return 1.0


class TestFailoverCounterStore:
    @pytest.fixture
    def parts(self, clock):
        primary = _BrokenStore()
        fallback = MemoryCounterStore()
        store = FailoverCounterStore(primary, fallback, retry_seconds=30, clock=clock)
        return store, primary, fallback

    @pytest.mark.asyncio
    async def test_outage_served_by_fallback(self, parts):
        store, primary, fallback = parts
        entry = await store.hit("k", 60_000)
        assert entry.count == 1
        assert await fallback.get("k") == 1
        assert store.degraded

    @pytest.mark.asyncio
    async def test_primary_skipped_during_cooldown(self, parts, clock):
        store, primary, _ = parts
        await store.hit("k", 60_000)
        await store.hit("k", 60_000)
        await store.hit("k", 60_000)
        assert primary.calls == 1
        clock.advance(31)
        await store.hit("k", 60_000)
        assert primary.calls == 2

    @pytest.mark.asyncio
    async def test_recovery_returns_to_primary(self, parts, clock):
        store, primary, _ = parts
        await store.hit("k", 60_000)
        primary.down = False
        clock.advance(31)
        entry = await store.hit("k", 60_000)
        assert entry.count == 1  # primary counts from scratch; no copy-back
        assert not store.degraded

    @pytest.mark.asyncio
    async def test_reset_clears_fallback_even_when_primary_down(self, parts):
        store, _, fallback = parts
        await store.hit("k", 60_000)
        await store.reset("k")
        assert await fallback.get("k") is None

    @pytest.mark.asyncio
    async def test_ping_reflects_primary(self, parts):
        store, primary, _ = parts
        with pytest.raises(BackingStoreUnavailable):
            await store.ping()
        primary.down = False
        assert await store.ping() == 1.0

    def test_name(self, parts):
        store, _, _ = parts
        assert store.name == "broken+memory"


class TestBuildCounterStore:
    def test_memory_without_redis_url(self):
        settings = get_settings().model_copy(update={"redis_url": ""})
        assert isinstance(build_counter_store(settings), MemoryCounterStore)

    def test_failover_with_redis_url(self):
        settings = get_settings().model_copy(update={"redis_url": "redis://localhost:6379/0"})
        store = build_counter_store(settings)
        assert isinstance(store, FailoverCounterStore)
        assert isinstance(store.primary, RedisCounterStore)
        assert isinstance(store.fallback, MemoryCounterStore)
