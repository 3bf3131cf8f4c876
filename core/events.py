"""
core/events.py -- Security event reporting.

report_security_event() is the single observability hook for the gate: every
rate-limit denial, lockout, CSRF rejection and administrative unlock goes
through it. Events are logged on the "authgate.security" logger (WARNING) and
kept in a bounded in-process ring buffer so the monitoring endpoint can show
recent activity without a database.

Reporting must never break the request that triggered it, so the function
catches its own failures and logs them instead of raising.

Layer rule: core/ is the kernel. No imports from api/, auth/, or counters/.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("authgate.security")


class SecurityEvents:
    RATE_LIMIT_EXCEEDED = "security.rate_limit_exceeded"
    ACCOUNT_LOCKED = "security.account_locked"
    CSRF_INVALID = "security.csrf_invalid"
    AUTH_FAILED = "security.auth_failed"
    SUSPICIOUS_ACTIVITY = "security.suspicious_activity"
    ADMIN_UNLOCK = "security.admin_unlock"


@dataclass(frozen=True)
class SecurityEvent:
    name: str
    timestamp: str
    data: dict[str, Any] = field(default_factory=dict)


class SecurityEventLog:
    """Fixed-size, thread-safe buffer of the most recent security events.

    Per-process only. Handlers run on the event loop while sync routes run in
    the threadpool, hence the lock.
    """

    def __init__(self, maxlen: int = 200) -> None:
        self._events: deque[SecurityEvent] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def append(self, event: SecurityEvent) -> None:
        with self._lock:
            self._events.append(event)

    def recent(self, limit: int = 50) -> list[SecurityEvent]:
        """Return up to `limit` events, newest first."""
        with self._lock:
            items = list(self._events)
        items.reverse()
        return items[:limit]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


event_log = SecurityEventLog()


def report_security_event(name: str, **data: Any) -> None:
    """Log a security event and record it in the ring buffer. Never raises."""
    try:
        event = SecurityEvent(
            name=name,
            timestamp=datetime.now(timezone.utc).isoformat(),
            data=data,
        )
        event_log.append(event)
        logger.warning("%s %s", name, " ".join(f"{k}={v}" for k, v in data.items()))
    except Exception:
        logger.exception("Failed to report security event %s", name)
