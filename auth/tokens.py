"""
auth/tokens.py -- Session JWTs and cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Session tokens are signed with SECRET_KEY and
       carry user_id, email, role and expiry. Verification returns None on any
       failure -- the dependency layer turns that into a 401.

  Session cookie: httpOnly (JS cannot read it), Secure and SameSite from
       settings. The frontend lives on another origin behind a CDN, so the
       production default is SameSite=None + Secure.

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       auto-generates a key in dev mode and refuses to start without one in
       production [M7].

Layer rule: no imports from api/ or counters/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("authgate.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

SESSION_COOKIE = "access_token"


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_session_token(user_id: int, email: str, role: str | None, expire_seconds: int = 0) -> str:
    """Encode a signed session JWT. expire_seconds=0 uses Settings.token_expire_seconds."""
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    payload = {
        "sub": email,
        "user_id": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str) -> dict | None:
    """Decode and verify a session JWT. Returns the payload or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the session token as an httpOnly cookie on the response."""
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite=_settings.cookie_samesite,
        secure=_settings.secure_cookies,
        path="/",
        max_age=duration,
    )


def clear_session_cookie(response) -> None:
    """Delete the session cookie with the same attributes it was set with."""
    response.delete_cookie(
        SESSION_COOKIE,
        httponly=True,
        samesite=_settings.cookie_samesite,
        secure=_settings.secure_cookies,
        path="/",
    )

