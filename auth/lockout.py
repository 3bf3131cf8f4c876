"""
auth/lockout.py -- Per-identity failed sign-in tracking.

Each identity (normalized email) gets one counter, "lockout:{email}", whose
window starts at the first failure and lasts lockout_window_seconds. Once the
count reaches max_attempts the sign-in route refuses the identity BEFORE it
verifies credentials: no hashing work is spent on a locked account, and a
locked response cannot be told apart from a wrong password by latency.

Failure policy -- the tracker fails OPEN:
  get_failure_count() returns 0 when the store is unreachable.
  record_failure_quietly() logs and swallows every error.
A broken tracking subsystem must never become a way to deny sign-in to
everyone.

reset() runs on successful sign-in and on administrative unlock.

Layer rule: no imports from api/. The store is injected; only its interface
is used.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from core.errors import BackingStoreUnavailable
from core.events import SecurityEvents, report_security_event
from counters.keys import lockout_key

if TYPE_CHECKING:
    from counters.store import CounterStore

logger = logging.getLogger("authgate.auth")


class LockoutTracker:
    """Counts failed sign-ins per identity over a fixed window.

    Usage:
        tracker = LockoutTracker(store, max_attempts=5, window_seconds=900)
        if await tracker.is_locked(email): ...
        await tracker.record_failure(email)
        await tracker.reset(email)
    """

    def __init__(self, store: CounterStore, max_attempts: int = 5, window_seconds: int = 15 * 60) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    async def record_failure(self, email: str) -> int:
        """Count one failed attempt and return the total in the current window.

        Shielded: if the caller is cancelled, the increment still completes so
        abuse is never undercounted.
        """
        entry = await asyncio.shield(self.store.hit(lockout_key(email), self.window_seconds * 1000))
        if entry.count == self.max_attempts:
            report_security_event(SecurityEvents.ACCOUNT_LOCKED, email=email, window_seconds=self.window_seconds)
        return entry.count

    async def record_failure_quietly(self, email: str) -> None:
        """Fire-and-forget variant for background dispatch. Never raises."""
        try:
            await self.record_failure(email)
        except Exception:
            logger.exception("Could not record failed sign-in for %s", email)

    async def get_failure_count(self, email: str) -> int:
        """Return the current failure count, or 0 if the store cannot answer."""
        try:
            return await self.store.get(lockout_key(email)) or 0
        except BackingStoreUnavailable:
            logger.warning("Lockout store unavailable; treating %s as 0 failures", email)
            return 0

    async def is_locked(self, email: str) -> bool:
        return await self.get_failure_count(email) >= self.max_attempts

    async def reset(self, email: str) -> None:
        await asyncio.shield(self.store.reset(lockout_key(email)))
