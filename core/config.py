"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. csrf_secret -> CSRF_SECRET).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode fills in missing secrets with a warning; production
      mode refuses to start without them.

Security notes:
  [M6] SECRET_KEY and CSRF_SECRET shorter than 32 chars are rejected outright.
       Both back HMAC-SHA256 signatures and rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY or
       CSRF_SECRET is a hard startup failure.

  [M8] csrf_allow_header_only is the deliberate weakening for cross-origin
       deployments where the browser withholds the CSRF cookie. When True, a
       request carrying only the header token is accepted on signature + TTL
       alone (no double-submit binding). Set it to False when the frontend and
       API share an origin.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or counters/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")

# Dev-only fallback. Never valid in production -- the validator refuses it there.
DEV_CSRF_SECRET = "dev-only-csrf-secret-do-not-use-in-production-32chars!"

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'authgate_users.db'}"
_LOCAL_ORIGIN = "http://localhost:5173"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (given DEBUG=true).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The validator either
    # fills in a dev value or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Sessions and cookies
    # ------------------------------------------------------------------

    token_expire_seconds: int = 86400
    secure_cookies: bool = True
    # Cross-origin frontend (CDN -> API) needs "none"; "none" requires Secure.
    cookie_samesite: str = "none"

    # ------------------------------------------------------------------
    # CSRF
    # ------------------------------------------------------------------

    csrf_secret: str = ""
    csrf_token_ttl_seconds: int = 3600
    csrf_cookie_name: str = "XSRF-TOKEN"
    csrf_header_name: str = "X-XSRF-TOKEN"
    csrf_allow_header_only: bool = True  # [M8]

    # ------------------------------------------------------------------
    # Account lockout
    # ------------------------------------------------------------------

    lockout_max_attempts: int = 5
    lockout_window_seconds: int = 15 * 60

    # ------------------------------------------------------------------
    # Rate limiting (fixed window)
    # ------------------------------------------------------------------

    strict_rate_limit_window_ms: int = 60_000
    strict_rate_limit_max: int = 5
    relaxed_rate_limit_window_ms: int = 60_000
    relaxed_rate_limit_max: int = 30
    # X-Forwarded-For is honoured only when exactly one proxy sits in front.
    trusted_proxy_hops: int = 1

    # ------------------------------------------------------------------
    # Counter store
    # ------------------------------------------------------------------

    # Empty = no shared store; every instance counts on its own.
    redis_url: str = ""
    redis_socket_timeout_seconds: float = 2.0
    store_retry_seconds: int = 30
    store_sweep_interval_seconds: int = 5 * 60

    # ------------------------------------------------------------------
    # Request gate
    # ------------------------------------------------------------------

    request_timeout_seconds: float = 30.0
    max_body_bytes: int = 10 * 1024
    cors_origins: list[str] = [_LOCAL_ORIGIN]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the secret and origin policy [M6] [M7].

        Dev mode (DEBUG=true): SECRET_KEY is auto-generated and CSRF_SECRET
            falls back to DEV_CSRF_SECRET, each with a warning.

        Production mode: refuse to start without both secrets, and refuse the
            localhost CORS default -- a production API must name its frontend.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if not self.csrf_secret:
            if self.debug:
                self.csrf_secret = DEV_CSRF_SECRET
                logger.warning("Using the development CSRF_SECRET. Do not deploy this configuration.")
            else:
                raise ValueError("CSRF_SECRET is required in production mode (min 32 chars).")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if len(self.csrf_secret) < 32:
            raise ValueError("CSRF_SECRET must be at least 32 characters.")
        if not self.debug:
            if self.csrf_secret == DEV_CSRF_SECRET:
                raise ValueError("The development CSRF_SECRET cannot be used in production mode.")
            if _LOCAL_ORIGIN in self.cors_origins:
                raise ValueError("CORS_ORIGINS must name the production frontend, not localhost.")
        if self.cookie_samesite.lower() not in ("lax", "strict", "none"):
            raise ValueError("COOKIE_SAMESITE must be one of: lax, strict, none.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
