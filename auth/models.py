"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work.

Layer rule: no imports from api/ or counters/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLES = (ROLE_ADMIN, ROLE_USER)


@dataclass
class User:
    """An identity known to AuthGate.

    email is the identity key for sign-in, lockout counters and admin unlock.
    It is stored normalized (stripped, lower-cased).

    role drives every capability check. A value outside ROLES (including None
    from a legacy row) grants nothing -- role checks fail closed.

    hashed_password belongs to the credential provider; route code never
    reads it.
    """

    email: str
    role: str | None = ROLE_USER
    id: int | None = None
    name: str | None = None
    hashed_password: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None
    is_active: bool = True
