"""
core/errors.py -- Exception taxonomy for the request gate.

Every client-facing rejection is a GateError. The API layer registers one
exception handler for the base class and renders the uniform error envelope
from the attributes below, so a stage only has to raise -- it never builds a
response itself.

Messages are deliberately generic. Nothing here carries internal key names,
exact failure counts, or stack traces.

BackingStoreUnavailable is NOT a GateError: it never reaches the client.
Counter consumers catch it at the point of use and degrade (fail over or
fail open).

Layer rule: core/ is the kernel. No imports from api/, auth/, or counters/.
"""

from __future__ import annotations


class GateError(Exception):
    """Base class for rejections that become structured HTTP responses."""

    status_code: int = 400
    code: str = "bad_request"
    message: str = "Request rejected."

    def __init__(
        self,
        message: str | None = None,
        *,
        retry_after: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.message = message or self.message
        self.retry_after = retry_after
        self.headers = dict(headers or {})
        super().__init__(self.message)


class CsrfError(GateError):
    status_code = 403
    code = "csrf_invalid"
    message = "Invalid or expired CSRF token."


class CsrfMissing(CsrfError):
    code = "csrf_missing"
    message = "CSRF token missing."


class CsrfMismatch(CsrfError):
    code = "csrf_mismatch"
    message = "CSRF token mismatch."


class CsrfInvalid(CsrfError):
    pass


class RateLimitExceeded(GateError):
    """Fixed-window limit exceeded. Carries the feedback headers with it."""

    status_code = 429
    code = "rate_limited"
    message = "Too many requests."

    def __init__(self, limit: int, retry_after: int) -> None:
        super().__init__(
            retry_after=retry_after,
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )
        self.limit = limit


class AccountLocked(GateError):
    """Too many failed sign-ins. Reports the wait time, never the count."""

    status_code = 429
    code = "account_locked"

    def __init__(self, retry_after: int) -> None:
        minutes = max(1, -(-retry_after // 60))
        super().__init__(
            f"Account temporarily locked. Please try again in {minutes} minutes.",
            retry_after=retry_after,
            headers={"Retry-After": str(retry_after)},
        )


class BackingStoreUnavailable(Exception):
    """The networked counter store could not complete an operation."""
