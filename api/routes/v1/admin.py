"""
api/routes/v1/admin.py -- Administrative unlock.

  POST /api/v1/admin/unlock   {email?, client_ip?}

Resets the lockout counter for an email and, when client_ip is given, the
strict rate-limit counters that IP accumulated on sign-in and sign-up. Keys
come from counters.keys, the same helpers the limiter and tracker use, so an
unlock clears exactly what was counted.

Gates: strict rate limit -> CSRF -> admin role. Self-service is not enough:
a locked-out user must not be able to unlock themselves.
"""

from fastapi import APIRouter, Depends, Request

from api.csrf import validate_csrf
from api.limiter import STRICT, RateLimiter, get_client_ip, rate_limit
from api.models import UnlockRequest, UnlockResponse
from auth.dependencies import require_role
from auth.lockout import LockoutTracker
from auth.models import ROLE_ADMIN, User
from core.events import SecurityEvents, report_security_event
from counters.keys import SIGNIN_ROUTE, SIGNUP_ROUTE

router = APIRouter()


@router.post(
    "/admin/unlock",
    response_model=UnlockResponse,
    dependencies=[Depends(rate_limit(STRICT)), Depends(validate_csrf)],
)
async def unlock(
    request: Request,
    body: UnlockRequest,
    admin: User = Depends(require_role(ROLE_ADMIN)),
) -> UnlockResponse:
    tracker: LockoutTracker = request.app.state.lockout
    limiter: RateLimiter = request.app.state.rate_limiter
    cleared: list[str] = []

    if body.email is not None:
        await tracker.reset(body.email)
        cleared.append("lockout")
    if body.client_ip is not None:
        await limiter.reset(SIGNIN_ROUTE, body.client_ip)
        cleared.append("signin_rate_limit")
        await limiter.reset(SIGNUP_ROUTE, body.client_ip)
        cleared.append("signup_rate_limit")

    report_security_event(
        SecurityEvents.ADMIN_UNLOCK,
        admin_id=admin.id,
        email=body.email,
        client_ip=body.client_ip,
        cleared=cleared,
        ip=get_client_ip(request, limiter.trusted_proxy_hops),
    )
    return UnlockResponse(email=body.email, client_ip=body.client_ip, cleared=cleared)
