"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are kept apart from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Every error, including gate rejections and validation failures, is
rendered as ErrorResponse so clients parse one shape:
    {"error": {"code": "...", "message": "...", "detail": null, "retry_after": null}}
"""

import ipaddress
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator

from auth.models import User
from core.events import SecurityEvent

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt only hashes the first 72 bytes and bcrypt>=4.1 rejects longer input.
_MAX_PASSWORD_BYTES = 72


def _normalize_email(value: object) -> object:
    return value.strip().lower() if isinstance(value, str) else value


# Applied before the pattern check so "  Alice@Example.COM " validates and keys consistently.
_Email = Annotated[str, BeforeValidator(_normalize_email), Field(max_length=255, pattern=EMAIL_PATTERN)]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None
    retry_after: Optional[int] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignInRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: _Email
    password: str = Field(min_length=1, max_length=255)


class SignUpRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: _Email
    password: str = Field(min_length=8, max_length=_MAX_PASSWORD_BYTES)
    name: Optional[str] = Field(default=None, max_length=100)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > _MAX_PASSWORD_BYTES:
            raise ValueError("Password must be at most 72 bytes.")
        return value


class UserPatch(BaseModel):
    """Partial update. is_active is honoured for admins only (enforced in the route)."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, max_length=100)
    is_active: Optional[bool] = None


class UnlockRequest(BaseModel):
    """Body for POST /admin/unlock. At least one of email / client_ip is required."""

    email: Optional[_Email] = None
    client_ip: Optional[str] = None

    @field_validator("client_ip")
    @classmethod
    def valid_ip(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return str(ipaddress.ip_address(value.strip()))

    @model_validator(mode="after")
    def require_target(self) -> "UnlockRequest":
        if self.email is None and self.client_ip is None:
            raise ValueError("Provide email, client_ip, or both.")
        return self


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: Optional[str]
    role: Optional[str]
    created_at: Optional[str]
    last_login: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            created_at=user.created_at,
            last_login=user.last_login,
        )


class UserListResponse(BaseModel):
    items: list[UserResponse]
    total: int
    page: int
    limit: int


class CsrfTokenResponse(BaseModel):
    csrf_token: str


class MessageResponse(BaseModel):
    message: str


class UnlockResponse(BaseModel):
    email: Optional[str]
    client_ip: Optional[str]
    cleared: list[str]


class StoreStatusResponse(BaseModel):
    backend: str
    status: str  # "operational" | "degraded" | "down"
    latency_ms: Optional[float] = None
    failover_active: bool = False


class SecurityEventResponse(BaseModel):
    name: str
    timestamp: str
    data: dict

    @classmethod
    def from_event(cls, event: SecurityEvent) -> "SecurityEventResponse":
        return cls(name=event.name, timestamp=event.timestamp, data=dict(event.data))


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = {}
