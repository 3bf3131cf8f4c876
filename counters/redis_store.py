"""
counters/redis_store.py -- Redis-backed counter store shared by all instances.

hit() runs a Lua script so INCR and PEXPIRE execute as one atomic server-side
step. The script also re-arms the expiry when it finds a key with no TTL
(PTTL == -1), which heals counters left behind by a bare increment() whose
follow-up expire() never arrived.

increment() and expire() remain separate round trips because that is the
contract. Callers that use them directly inherit the residual risk: a crash
between the two calls leaves a counter without an expiry until the next hit()
on the same key repairs it.

Every redis-py failure (connection refused, timeout, protocol error) is
re-raised as BackingStoreUnavailable so consumers only handle one type.

Security note: include TLS (rediss://) and credentials in REDIS_URL when the
store is reached over an untrusted network. The URL is never logged.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from core.errors import BackingStoreUnavailable
from counters.store import CounterEntry, CounterStore

T = TypeVar("T")

_HIT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if count == 1 or ttl < 0 then
  redis.call('PEXPIRE', KEYS[1], ARGV[1])
  ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisCounterStore(CounterStore):
    """Counter store on a shared Redis instance.

    Usage:
        store = RedisCounterStore.from_url("redis://localhost:6379/0")
        entry = await store.hit("lockout:alice@example.com", 900_000)
        await store.close()
    """

    name = "redis"

    def __init__(self, client: Redis, clock: Callable[[], float] = time.time) -> None:
        self._redis = client
        self._clock = clock
        self._hit_script = client.register_script(_HIT_SCRIPT)

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 2.0) -> "RedisCounterStore":
        """Build a store from a connection URL. Connects lazily on first command."""
        client = Redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    async def _call(self, op: Callable[[], Awaitable[T]]) -> T:
        try:
            return await op()
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise BackingStoreUnavailable(type(exc).__name__) from exc

    async def increment(self, key: str) -> int:
        return int(await self._call(lambda: self._redis.incr(key)))

    async def expire(self, key: str, seconds: int) -> None:
        await self._call(lambda: self._redis.expire(key, seconds))

    async def get(self, key: str) -> int | None:
        value = await self._call(lambda: self._redis.get(key))
        return int(value) if value is not None else None

    async def reset(self, key: str) -> None:
        await self._call(lambda: self._redis.delete(key))

    async def hit(self, key: str, window_ms: int) -> CounterEntry:
        count, ttl_ms = await self._call(lambda: self._hit_script(keys=[key], args=[window_ms]))
        return CounterEntry(
            key=key,
            count=int(count),
            expires_at=self._clock() + int(ttl_ms) / 1000,
        )

    async def ping(self) -> float:
        start = time.perf_counter()
        await self._call(self._redis.ping)
        return (time.perf_counter() - start) * 1000

    async def close(self) -> None:
        await self._redis.aclose()
