"""
api/csrf.py -- CSRF validation policy for state-changing requests.

Safe methods (GET, HEAD, OPTIONS) are exempt. Every other method must carry
the token in the CSRF header, and then:

  1. No header                -> 403 csrf_missing.
  2. Header + cookie          -> double-submit: header must byte-equal the
                                 cookie, else 403 csrf_mismatch.
  3. Header, no cookie        -> the browser withheld the cookie (cross-origin
                                 topology). If CSRF_ALLOW_HEADER_ONLY is on,
                                 verify the header token's signature and age;
                                 else 403 csrf_missing.

Path 3 is a configured weakening, not an oversight: it proves the token was
minted by this server within the TTL but not that it came from this browser's
cookie. Deployments that serve frontend and API from one origin should turn
it off. The startup log states which mode is active.

Every rejection is logged with full context (path, method, client, reason)
server-side; the client only sees the generic code.

Token issue: issue_csrf_token() mints a token and sets the script-readable
cookie. GET /auth/me and GET /auth/csrf call it.
"""

from __future__ import annotations

from fastapi import Request, Response

from api.limiter import get_client_ip
from auth.csrf import CsrfTokenEngine
from core.errors import CsrfError, CsrfInvalid, CsrfMismatch, CsrfMissing
from core.events import SecurityEvents, report_security_event

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def _present(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value


def _reject(request: Request, error: CsrfError, reason: str) -> None:
    report_security_event(
        SecurityEvents.CSRF_INVALID,
        reason=reason,
        method=request.method,
        path=request.url.path,
        ip=get_client_ip(request, request.app.state.settings.trusted_proxy_hops),
    )
    raise error


async def validate_csrf(request: Request) -> None:
    """Route dependency enforcing the CSRF policy above."""
    if request.method in SAFE_METHODS:
        return

    settings = request.app.state.settings
    engine: CsrfTokenEngine = request.app.state.csrf_engine
    header_token = _present(request.headers.get(settings.csrf_header_name))
    cookie_token = _present(request.cookies.get(settings.csrf_cookie_name))

    if header_token is None:
        _reject(request, CsrfMissing(), "header_missing")

    if cookie_token is not None:
        if not engine.verify_double_submit(cookie_token, header_token):
            _reject(request, CsrfMismatch(), "cookie_header_mismatch")
        return

    if not settings.csrf_allow_header_only:
        _reject(request, CsrfMissing(), "cookie_missing")
    if not engine.verify_signed(header_token):
        _reject(request, CsrfInvalid(), "bad_signature_or_expired")


def issue_csrf_token(request: Request, response: Response) -> str:
    """Mint a CSRF token and deliver it in the non-httpOnly cookie."""
    settings = request.app.state.settings
    token = request.app.state.csrf_engine.generate()
    response.set_cookie(
        settings.csrf_cookie_name,
        value=token,
        httponly=False,
        samesite=settings.cookie_samesite,
        secure=settings.secure_cookies,
        path="/",
        max_age=settings.csrf_token_ttl_seconds,
    )
    return token
