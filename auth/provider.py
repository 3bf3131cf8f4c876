"""
auth/provider.py -- Credential verification behind a provider interface.

Password storage and verification belong to the identity provider, not to the
request gate. The gate only needs two operations, so routes depend on the
AuthProvider interface and the app wires in a concrete provider at startup.

LocalAuthProvider is the in-process provider: bcrypt hashes in the
UserStore. Both methods are synchronous and CPU-bound (bcrypt); async callers
run them in the threadpool.

Timing equalization [C1]: authenticate() always runs one bcrypt check, against
_DUMMY_HASH when the email is unknown, so response time does not reveal
whether an account exists.

Layer rule: no imports from api/. counters.keys supplies identity normalization.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import bcrypt
from sqlalchemy.exc import IntegrityError

from auth.models import ROLE_USER, User
from auth.store import UserStore
from counters.keys import normalize_identity

logger = logging.getLogger("authgate.auth")


class IdentityExists(Exception):
    """Sign-up for an email that already has an account."""


class AuthProvider(ABC):
    @abstractmethod
    def sign_up(self, email: str, password: str, name: str | None = None) -> User: ...

    @abstractmethod
    def authenticate(self, email: str, password: str) -> User | None:
        """Return the User when the credentials are valid, else None."""


# ---------------------------------------------------------------------------
# bcrypt (direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash. Inputs are capped at 72 bytes by the request model."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


_DUMMY_HASH: str = hash_password("authgate_timing_dummy")


class LocalAuthProvider(AuthProvider):
    def __init__(self, store: UserStore) -> None:
        self.store = store

    def sign_up(self, email: str, password: str, name: str | None = None) -> User:
        """Create an account with the default role. Raises IdentityExists on duplicates."""
        user = User(
            email=normalize_identity(email),
            name=name,
            role=ROLE_USER,
            hashed_password=hash_password(password),
        )
        try:
            user_id = self.store.create_user(user)
        except IntegrityError as exc:
            raise IdentityExists(user.email) from exc
        logger.info("Created account id=%s", user_id)
        # Timestamps are assigned by the store.
        return self.store.get_by_id(user_id)

    def authenticate(self, email: str, password: str) -> User | None:
        user = self.store.get_by_email(normalize_identity(email))
        if user is None or user.hashed_password is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            verify_password(password, _DUMMY_HASH)
            return None
        if not verify_password(password, user.hashed_password):
            return None
        if not user.is_active:
            return None
        self.store.update_last_login(user.id)
        return user
