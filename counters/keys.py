"""
counters/keys.py -- Key naming convention for the counter store.

Every key is "<purpose>:<route-or-identity>". The rate limiter, the lockout
tracker, the admin unlock endpoint and the operator CLI all build their keys
here, so an unlock always resets exactly the keys the limiter incremented.
"""

RATE_LIMIT_PREFIX = "rl"
LOCKOUT_PREFIX = "lockout"


def normalize_identity(email: str) -> str:
    """Case-fold an email so "Alice@X.com" and "alice@x.com" share one counter."""
    return email.strip().lower()


def rate_limit_key(route: str, client_ip: str) -> str:
    return f"{RATE_LIMIT_PREFIX}:{route}:{client_ip}"


def lockout_key(email: str) -> str:
    return f"{LOCKOUT_PREFIX}:{normalize_identity(email)}"


# Routes whose per-IP counters an administrative unlock clears.
SIGNIN_ROUTE = "/api/v1/auth/signin"
SIGNUP_ROUTE = "/api/v1/auth/signup"
