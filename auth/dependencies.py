"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Two session transports are checked in priority order:
  1. "access_token" cookie -- set by POST /auth/signin.
  2. Authorization: Bearer <token> header -- non-browser API clients.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_role(role) wraps get_current_user() and raises HTTP 403 unless the
    user's role attribute equals `role`. Self-access is NOT enough -- use it for
    actions where acting on yourself would defeat the control (unlocking your
    own locked account).
require_self_or_role(role) allows the resource owner (path param user_id) or
    a holder of `role`.

Role checks fail closed: a missing or unrecognized role grants nothing.

Layer rule: no imports from api/ or counters/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from auth.models import ROLES, User
from auth.tokens import SESSION_COOKIE, decode_session_token
from core.events import SecurityEvents, report_security_event


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request via session cookie or Bearer header. Never raises."""
    user_store = request.app.state.user_store

    token: str | None = request.cookies.get(SESSION_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    if not token:
        return None

    payload = decode_session_token(token)
    if payload is None:
        return None
    user = user_store.get_by_id(payload["user_id"])
    if user is None or not user.is_active:
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    request.state.user = user
    return user


def _has_role(user: User, role: str) -> bool:
    return user.role in ROLES and user.role == role


def require_role(role: str) -> Callable[..., User]:
    """Build a dependency that admits only users holding `role`."""

    def dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        if not _has_role(user, role):
            report_security_event(
                SecurityEvents.SUSPICIOUS_ACTIVITY,
                reason="role_required",
                user_id=user.id,
                required_role=role,
                method=request.method,
                path=request.url.path,
            )
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"{role.capitalize()} access required."},
            )
        return user

    return dependency


def require_self_or_role(role: str) -> Callable[..., User]:
    """Build a dependency that admits the owner of /{user_id} or a holder of `role`."""

    def dependency(user_id: int, request: Request, user: User = Depends(get_current_user)) -> User:
        if user.id == user_id or _has_role(user, role):
            return user
        report_security_event(
            SecurityEvents.SUSPICIOUS_ACTIVITY,
            reason="unauthorized_access_attempt",
            user_id=user.id,
            target_id=user_id,
            method=request.method,
            path=request.url.path,
        )
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You can only modify your own resources."},
        )

    return dependency
