"""
counters/store.py -- Counter store contract and the in-process realization.

A counter store maps string keys to non-negative integer counts with an
optional expiry. It is the only mutable state the request gate shares between
requests, so every realization owns its own atomicity: callers never lock.

Contract (all coroutines):
    increment(key)          -> int     create at 1 (no expiry) or add 1
    expire(key, seconds)    -> None    bound the lifetime of an existing key
    get(key)                -> int | None
    reset(key)              -> None    idempotent delete
    hit(key, window_ms)     -> CounterEntry
        increment + expire-if-new as ONE atomic step. The rate limiter and the
        lockout tracker use this instead of increment()/expire() so a crash
        between the two calls can never leave a counter that never expires.
    ping()                  -> float   round-trip milliseconds; raises when down

Expired entries are logically absent. MemoryCounterStore deletes them lazily on
access and in a periodic sweep (every 5 minutes by default).

Usage:
    store = MemoryCounterStore()
    store.start()                       # inside a running event loop
    entry = await store.hit("rl:/api/v1/auth/signin:10.0.0.1", 60_000)
    await store.close()

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger("authgate.counters")

_DEFAULT_SWEEP_SECONDS = 5 * 60


@dataclass(frozen=True)
class CounterEntry:
    """Snapshot of one counter right after it was incremented."""

    key: str
    count: int
    expires_at: float | None  # epoch seconds; None = no expiry set

    def reset_in_ms(self, now: float) -> int:
        """Milliseconds until the window closes (0 when already past)."""
        if self.expires_at is None:
            return 0
        return max(0, int(round((self.expires_at - now) * 1000)))


class CounterStore(ABC):
    """Abstract counter store. See the module docstring for the contract."""

    name: str = "abstract"

    @abstractmethod
    async def increment(self, key: str) -> int: ...

    @abstractmethod
    async def expire(self, key: str, seconds: int) -> None: ...

    @abstractmethod
    async def get(self, key: str) -> int | None: ...

    @abstractmethod
    async def reset(self, key: str) -> None: ...

    @abstractmethod
    async def hit(self, key: str, window_ms: int) -> CounterEntry: ...

    @abstractmethod
    async def ping(self) -> float:
        """Round-trip latency in milliseconds. Raises BackingStoreUnavailable."""

    def start(self) -> None:
        """Start background work. Must be called inside a running event loop."""

    async def close(self) -> None:
        """Release resources. Safe to call more than once."""


@dataclass
class _Slot:
    count: int
    expires_at: float | None


class MemoryCounterStore(CounterStore):
    """Dict-backed store for one process.

    All mutations run inside a single asyncio.Lock, which makes increment and
    hit atomic with respect to every other coroutine on the loop. Counts are
    NOT shared with other server instances.
    """

    name = "memory"

    def __init__(
        self,
        sweep_interval: float = _DEFAULT_SWEEP_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._slots: dict[str, _Slot] = {}
        self._lock = asyncio.Lock()
        self._sweep_task: asyncio.Task | None = None

    def _live(self, key: str, now: float) -> _Slot | None:
        """Return the slot for key, deleting it first if it has expired."""
        slot = self._slots.get(key)
        if slot is None:
            return None
        if slot.expires_at is not None and slot.expires_at <= now:
            del self._slots[key]
            return None
        return slot

    async def increment(self, key: str) -> int:
        async with self._lock:
            slot = self._live(key, self._clock())
            if slot is None:
                slot = self._slots[key] = _Slot(count=0, expires_at=None)
            slot.count += 1
            return slot.count

    async def expire(self, key: str, seconds: int) -> None:
        async with self._lock:
            now = self._clock()
            slot = self._live(key, now)
            if slot is not None:
                slot.expires_at = now + seconds

    async def get(self, key: str) -> int | None:
        async with self._lock:
            slot = self._live(key, self._clock())
            return slot.count if slot is not None else None

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._slots.pop(key, None)

    async def hit(self, key: str, window_ms: int) -> CounterEntry:
        async with self._lock:
            now = self._clock()
            slot = self._live(key, now)
            if slot is None:
                slot = self._slots[key] = _Slot(count=0, expires_at=None)
            if slot.expires_at is None:
                slot.expires_at = now + window_ms / 1000
            slot.count += 1
            return CounterEntry(key=key, count=slot.count, expires_at=slot.expires_at)

    async def ping(self) -> float:
        return 0.0

    async def sweep(self) -> int:
        """Evict every expired entry. Returns the number removed."""
        async with self._lock:
            now = self._clock()
            stale = [k for k, s in self._slots.items() if s.expires_at is not None and s.expires_at <= now]
            for k in stale:
                del self._slots[k]
        if stale:
            logger.debug("Swept %d expired counters", len(stale))
        return len(stale)

    async def _sweep_loop(self) -> None:
        """Sweep forever. Cancelled by close()."""
        while True:
            await asyncio.sleep(self.sweep_interval)
            await self.sweep()

    def start(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def close(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        async with self._lock:
            self._slots.clear()

    def __len__(self) -> int:
        return len(self._slots)
