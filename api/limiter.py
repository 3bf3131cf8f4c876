"""
api/limiter.py -- Fixed-window rate limiting on the shared counter store.

One counter per (route, client IP): key "rl:{path}:{ip}". The first request in
a window creates the counter and starts its expiry (atomically, via
CounterStore.hit); every request in the window increments the same counter;
when it expires the next request starts a fresh window at count 1. This is
fixed-window counting, not a sliding log.

    allowed   = count <= max_requests
    remaining = max(0, max_requests - count)
    Retry-After (on denial) = ceil(reset_in_ms / 1000)

Two policy presets:
    strict   5 requests / 60 s   authentication and admin endpoints
    relaxed 30 requests / 60 s   read-only monitoring endpoints

Client IP: X-Forwarded-For is honoured only when TRUSTED_PROXY_HOPS is exactly
1, and then its first value is used. The proxy appends the address it saw, so
only the last value is proxy-verified; the first is whatever the client sent
and can be spoofed to dodge per-IP limits unless the proxy overwrites the
header. With any other hop count the header is ignored and the socket address
is used. A header whose first value is not an IP address yields "unknown".

Routes apply a policy with a dependency, listed before CSRF and auth so
floods are rejected before any other work:

    @router.post("/auth/signin", dependencies=[Depends(rate_limit(STRICT)), Depends(validate_csrf)])
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import Request, Response

from core.errors import BackingStoreUnavailable, RateLimitExceeded
from core.events import SecurityEvents, report_security_event
from counters.keys import rate_limit_key

if TYPE_CHECKING:
    from core.config import Settings
    from counters.store import CounterStore

logger = logging.getLogger("authgate.ratelimit")

STRICT = "strict"
RELAXED = "relaxed"


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    window_ms: int
    max_requests: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    reset_in_ms: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    @property
    def retry_after(self) -> int:
        return math.ceil(self.reset_in_ms / 1000)

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def get_client_ip(request: Request, trusted_proxy_hops: int = 1) -> str:
    """Return the client address used as the rate-limit identity."""
    if trusted_proxy_hops == 1:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded is not None:
            first = forwarded.split(",")[0].strip()
            return first if _is_ip(first) else "unknown"
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RateLimiter:
    """Counts requests per route and client over fixed windows.

    Usage:
        limiter = RateLimiter.from_settings(store, settings)
        decision = await limiter.check("/api/v1/auth/signin", "10.0.0.1", 60_000, 5)
    """

    def __init__(
        self,
        store: CounterStore,
        policies: dict[str, RateLimitPolicy],
        trusted_proxy_hops: int = 1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.policies = policies
        self.trusted_proxy_hops = trusted_proxy_hops
        self._clock = clock

    @classmethod
    def from_settings(cls, store: CounterStore, settings: Settings) -> "RateLimiter":
        return cls(
            store,
            policies={
                STRICT: RateLimitPolicy(STRICT, settings.strict_rate_limit_window_ms, settings.strict_rate_limit_max),
                RELAXED: RateLimitPolicy(
                    RELAXED, settings.relaxed_rate_limit_window_ms, settings.relaxed_rate_limit_max
                ),
            },
            trusted_proxy_hops=settings.trusted_proxy_hops,
        )

    async def check(self, route: str, client_ip: str, window_ms: int, max_requests: int) -> RateLimitDecision:
        """Count this request and decide whether it is within the limit.

        The increment is shielded: a request cancelled mid-check still counts.
        If no store can answer at all, the request is allowed -- rate limiting
        degrades, the pipeline does not crash.
        """
        key = rate_limit_key(route, client_ip)
        try:
            entry = await asyncio.shield(self.store.hit(key, window_ms))
        except BackingStoreUnavailable:
            logger.warning("Rate limit store unavailable; allowing %s %s", route, client_ip)
            return RateLimitDecision(allowed=True, count=0, reset_in_ms=window_ms, limit=max_requests)
        return RateLimitDecision(
            allowed=entry.count <= max_requests,
            count=entry.count,
            reset_in_ms=entry.reset_in_ms(self._clock()),
            limit=max_requests,
        )

    async def reset(self, route: str, client_ip: str) -> None:
        await asyncio.shield(self.store.reset(rate_limit_key(route, client_ip)))


def rate_limit(policy_name: str) -> Callable:
    """Build a route dependency enforcing the named policy."""

    async def dependency(request: Request, response: Response) -> RateLimitDecision:
        limiter: RateLimiter = request.app.state.rate_limiter
        policy = limiter.policies[policy_name]
        ip = get_client_ip(request, limiter.trusted_proxy_hops)
        path = request.url.path

        decision = await limiter.check(path, ip, policy.window_ms, policy.max_requests)
        if not decision.allowed:
            logger.warning("Rate limit exceeded ip=%s path=%s count=%d", ip, path, decision.count)
            report_security_event(
                SecurityEvents.RATE_LIMIT_EXCEEDED,
                ip=ip,
                path=path,
                count=decision.count,
                policy=policy.name,
            )
            raise RateLimitExceeded(limit=decision.limit, retry_after=decision.retry_after)

        for name, value in decision.headers().items():
            response.headers[name] = value
        return decision

    return dependency
