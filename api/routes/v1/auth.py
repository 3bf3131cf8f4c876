"""
api/routes/v1/auth.py -- Sign-up, sign-in, sign-out and CSRF token endpoints.

Routes:
  POST /api/v1/auth/signup    -- create account; sets session cookie (201)
  POST /api/v1/auth/signin    -- password sign-in with lockout; sets session cookie
  POST /api/v1/auth/signout   -- clears session cookie
  GET  /api/v1/auth/me        -- current user; always issues a CSRF cookie
  GET  /api/v1/auth/csrf      -- issues a CSRF cookie AND returns the token in
                                 the body (cross-origin pages cannot read the
                                 API's cookie)

Gate order on state-changing routes: rate limit -> CSRF -> handler. The order
of the `dependencies=[...]` list IS the execution order.

Security:
  [H2] signup/signin use the strict policy (5 requests / 60 s per IP).
  [C1] LocalAuthProvider.authenticate() equalizes timing for unknown emails.
  [L1] A locked identity is refused BEFORE credentials are verified, even when
       the password is correct. The response carries the wait time only.
  [L2] Failed attempts are recorded in a background task after the response is
       sent. A failure to record never fails or delays the sign-in response.
  [M5] Cache-Control: no-store on responses that set session cookies.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Response
from starlette.concurrency import run_in_threadpool

from api.csrf import issue_csrf_token, validate_csrf
from api.limiter import STRICT, get_client_ip, rate_limit
from api.models import (
    CsrfTokenResponse,
    ErrorDetail,
    ErrorResponse,
    MessageResponse,
    SignInRequest,
    SignUpRequest,
    UserResponse,
)
from auth.dependencies import try_get_current_user
from auth.lockout import LockoutTracker
from auth.provider import AuthProvider, IdentityExists
from auth.tokens import clear_session_cookie, create_session_token, set_session_cookie
from core.errors import AccountLocked
from core.events import SecurityEvents, report_security_event

# Auth policy:
# - POST /auth/signup:   public, strict rate limit, CSRF
# - POST /auth/signin:   public, strict rate limit, CSRF, lockout
# - POST /auth/signout:  public (clearing a cookie needs no session), CSRF
# - GET  /auth/me:       public; 401 body when not signed in
# - GET  /auth/csrf:     public
router = APIRouter()


@router.post(
    "/auth/signup",
    status_code=201,
    response_model=UserResponse,
    dependencies=[Depends(rate_limit(STRICT)), Depends(validate_csrf)],
)
async def signup(request: Request, response: Response, body: SignUpRequest) -> UserResponse:
    """Create an account and start a session for it."""
    provider: AuthProvider = request.app.state.auth_provider
    try:
        user = await run_in_threadpool(provider.sign_up, body.email, body.password, body.name)
    except IdentityExists:
        raise HTTPException(
            status_code=409,
            detail={"code": "email_taken", "message": "An account with this email already exists."},
        )

    set_session_cookie(response, create_session_token(user.id, user.email, user.role))
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return UserResponse.from_user(user)


@router.post(
    "/auth/signin",
    response_model=None,
    dependencies=[Depends(rate_limit(STRICT)), Depends(validate_csrf)],
)
async def signin(
    request: Request,
    response: Response,
    body: SignInRequest,
    background_tasks: BackgroundTasks,
) -> UserResponse | ErrorResponse:
    """Verify credentials unless the identity is locked out.

    Returns the same generic error for unknown email and wrong password
    ("bad_credentials") to avoid leaking account existence.
    """
    tracker: LockoutTracker = request.app.state.lockout
    provider: AuthProvider = request.app.state.auth_provider
    ip = get_client_ip(request, request.app.state.rate_limiter.trusted_proxy_hops)
    response.headers["Cache-Control"] = "no-store"  # [M5]

    # [L1] lockout check precedes any credential work
    if await tracker.is_locked(body.email):
        report_security_event(SecurityEvents.ACCOUNT_LOCKED, email=body.email, ip=ip, stage="signin_refused")
        raise AccountLocked(retry_after=tracker.window_seconds)

    user = await run_in_threadpool(provider.authenticate, body.email, body.password)
    if user is None:
        background_tasks.add_task(tracker.record_failure_quietly, body.email)  # [L2]
        report_security_event(SecurityEvents.AUTH_FAILED, email=body.email, ip=ip)
        response.status_code = 401
        return ErrorResponse(error=ErrorDetail(code="bad_credentials", message="Invalid email or password."))

    await tracker.reset(body.email)
    set_session_cookie(response, create_session_token(user.id, user.email, user.role))
    return UserResponse.from_user(user)


@router.post("/auth/signout", response_model=MessageResponse, dependencies=[Depends(validate_csrf)])
async def signout(response: Response) -> MessageResponse:
    """Clear the session cookie."""
    clear_session_cookie(response)
    return MessageResponse(message="Signed out.")


@router.get("/auth/me", response_model=None)
def me(request: Request, response: Response) -> UserResponse | ErrorResponse:
    """Return the current user. Always refreshes the CSRF cookie, even on 401."""
    issue_csrf_token(request, response)
    user = try_get_current_user(request)
    if user is None:
        response.status_code = 401
        return ErrorResponse(error=ErrorDetail(code="unauthorized", message="Authentication required."))
    return UserResponse.from_user(user)


@router.get("/auth/csrf", response_model=CsrfTokenResponse)
async def csrf_token(request: Request, response: Response) -> CsrfTokenResponse:
    """Issue a CSRF token in both the cookie and the body."""
    return CsrfTokenResponse(csrf_token=issue_csrf_token(request, response))
