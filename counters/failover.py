"""
counters/failover.py -- Primary/fallback composition and startup selection.

FailoverCounterStore sends every operation to the primary (Redis) and, when
the primary raises BackingStoreUnavailable, serves it from the in-process
fallback instead. After a failure the primary is left alone for
`retry_seconds` so an outage does not add a timeout to every request.

This is an accepted degradation, not a silent bug: while the primary is down,
rate limits and lockouts are counted per instance, and counts accumulated in
the fallback are not copied back when the primary recovers. Both transitions
are logged (WARNING going down, INFO coming back).

build_counter_store() decides ONCE at startup which strategy to use, based on
whether REDIS_URL is configured. Consumers receive the result by injection and
never ask which realization they hold.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from core.config import Settings
from core.errors import BackingStoreUnavailable
from counters.redis_store import RedisCounterStore
from counters.store import CounterEntry, CounterStore, MemoryCounterStore

logger = logging.getLogger("authgate.counters")

T = TypeVar("T")


class FailoverCounterStore(CounterStore):
    def __init__(
        self,
        primary: CounterStore,
        fallback: CounterStore,
        retry_seconds: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.retry_seconds = retry_seconds
        self._clock = clock
        self._down_until: float | None = None

    @property
    def name(self) -> str:  # type: ignore[override]
        return f"{self.primary.name}+{self.fallback.name}"

    @property
    def degraded(self) -> bool:
        """True while operations are being served by the fallback."""
        return self._down_until is not None

    async def _dispatch(self, op: Callable[[CounterStore], Awaitable[T]]) -> T:
        if self._down_until is not None and self._clock() < self._down_until:
            return await op(self.fallback)
        try:
            result = await op(self.primary)
        except BackingStoreUnavailable as exc:
            if self._down_until is None:
                logger.warning(
                    "Counter store %s unavailable (%s); counting in-process for %ss",
                    self.primary.name,
                    exc,
                    self.retry_seconds,
                )
            self._down_until = self._clock() + self.retry_seconds
            return await op(self.fallback)
        if self._down_until is not None:
            logger.info("Counter store %s recovered", self.primary.name)
            self._down_until = None
        return result

    async def increment(self, key: str) -> int:
        return await self._dispatch(lambda s: s.increment(key))

    async def expire(self, key: str, seconds: int) -> None:
        await self._dispatch(lambda s: s.expire(key, seconds))

    async def get(self, key: str) -> int | None:
        return await self._dispatch(lambda s: s.get(key))

    async def reset(self, key: str) -> None:
        # Clear both sides: a key counted during an outage must not survive an unlock.
        await self.fallback.reset(key)
        await self._dispatch(lambda s: s.reset(key))

    async def hit(self, key: str, window_ms: int) -> CounterEntry:
        return await self._dispatch(lambda s: s.hit(key, window_ms))

    async def ping(self) -> float:
        """Ping the primary only -- health reports the shared store's state."""
        return await self.primary.ping()

    def start(self) -> None:
        self.primary.start()
        self.fallback.start()

    async def close(self) -> None:
        await self.fallback.close()
        await self.primary.close()


def build_counter_store(settings: Settings) -> CounterStore:
    """Select the counter store strategy for this process."""
    memory = MemoryCounterStore(sweep_interval=settings.store_sweep_interval_seconds)
    if not settings.redis_url:
        logger.info("No REDIS_URL configured, using in-process counters (per-instance limits)")
        return memory
    logger.info("Using Redis for rate limiting and lockout counters")
    return FailoverCounterStore(
        primary=RedisCounterStore.from_url(
            settings.redis_url,
            socket_timeout=settings.redis_socket_timeout_seconds,
        ),
        fallback=memory,
        retry_seconds=settings.store_retry_seconds,
    )
