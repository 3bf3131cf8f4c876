"""
api/main.py -- FastAPI application entry point for AuthGate.

Run with:  uvicorn asgi:app --reload

Request gate (outermost to innermost):
  1. log_requests      -- one log line per request, X-Request-ID
  2. timeout_guard     -- 503 after REQUEST_TIMEOUT_SECONDS end-to-end
  3. security_headers  -- CSP, HSTS, nosniff, frame and referrer policy
  4. CORSMiddleware    -- configured origins, credentials allowed
  5. body_size_limit   -- 413 above MAX_BODY_BYTES
  then, per route, as dependencies in this order:
  6. rate_limit(policy) -> 7. validate_csrf -> 8. authentication -> 9. role/ownership

Starlette inserts each registered middleware at the front of the stack, so
registration below runs innermost-first.

Lifespan builds every shared object once and stores it on app.state; route
handlers and dependencies only read app.state, never module globals.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException

from api.limiter import RateLimiter
from api.middleware import body_size_limit, log_requests, security_headers, timeout_guard
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.monitoring import router as monitoring_router
from api.routes.v1.users import router as users_router
from auth.csrf import CsrfTokenEngine
from auth.lockout import LockoutTracker
from auth.provider import LocalAuthProvider
from auth.store import UserStore
from core.config import Settings, get_settings
from core.errors import BackingStoreUnavailable, GateError
from counters.failover import build_counter_store
from counters.store import CounterStore

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")

settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def configure_state(app: FastAPI, settings: Settings, user_store: UserStore, counter_store: CounterStore) -> None:
    """Wire the shared gate components onto app.state.

    Split out of lifespan so tests can build the same graph around their own
    stores.
    """
    app.state.settings = settings
    app.state.user_store = user_store
    app.state.auth_provider = LocalAuthProvider(user_store)
    app.state.counter_store = counter_store
    app.state.rate_limiter = RateLimiter.from_settings(counter_store, settings)
    app.state.lockout = LockoutTracker(
        counter_store,
        max_attempts=settings.lockout_max_attempts,
        window_seconds=settings.lockout_window_seconds,
    )
    app.state.csrf_engine = CsrfTokenEngine(settings.csrf_secret, ttl_seconds=settings.csrf_token_ttl_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup builds stores and gate components; shutdown closes them.

    The counter store's background work (memory sweep) needs the running loop,
    so start() is called here rather than at import.
    """
    logger.info("AuthGate API starting up")
    counter_store = build_counter_store(settings)
    configure_state(app, settings, UserStore(settings.database_url), counter_store)
    counter_store.start()
    logger.info("Counter store: %s", counter_store.name)
    if settings.csrf_allow_header_only:
        logger.warning(
            "CSRF header-only mode enabled: requests without the %s cookie are accepted "
            "on a valid signed %s header",
            settings.csrf_cookie_name,
            settings.csrf_header_name,
        )
    else:
        logger.info("CSRF strict double-submit mode")

    yield

    await app.state.counter_store.close()
    app.state.user_store.close()
    logger.info("AuthGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthGate API",
    description="Authentication gateway: rate limiting, account lockout and CSRF protection.",
    version=__version__,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url="/openapi.json" if settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack (registered innermost first)
# ---------------------------------------------------------------------------

app.middleware("http")(body_size_limit(settings.max_body_bytes))

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", settings.csrf_header_name, "X-Request-ID"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-Request-ID"],
    max_age=3600,
)

app.middleware("http")(security_headers)
app.middleware("http")(timeout_guard(settings.request_timeout_seconds))
app.middleware("http")(log_requests)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])
app.include_router(monitoring_router, prefix="/api/v1", tags=["Monitoring"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(GateError)
async def gate_error_handler(request: Request, exc: GateError) -> JSONResponse:
    """Render a gate rejection (CSRF, rate limit, lockout) with its headers."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, retry_after=exc.retry_after)
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 for malformed input. Field-level detail is shown in debug only."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()) if settings.debug else None,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for every HTTP exception, routing 404/405 included.

    Routes raise HTTPException with a {"code", "message"} dict as detail; use
    it as the error field directly. Plain-string details get a generic code.
    """
    if isinstance(exc.detail, dict):
        error = ErrorDetail(**exc.detail)
    else:
        error = ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=error).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The exception is logged with its traceback; the client receives only a
    generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoints
#
# Defined directly in main.py (not in a router) so they are always reachable.
# No rate limit -- load balancer probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/healthz", include_in_schema=False)
async def healthz() -> dict:
    """Bare liveness probe. Reveals nothing about the deployment."""
    return {"status": "ok"}


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API version and the state of each backing component."""
    components = {"app": "ok"}

    db_ok = await run_in_threadpool(request.app.state.user_store.ping)
    components["database"] = "ok" if db_ok else "down"

    store = request.app.state.counter_store
    try:
        await store.ping()
        components["counter_store"] = "degraded" if getattr(store, "degraded", False) else "ok"
    except BackingStoreUnavailable:
        components["counter_store"] = "down"

    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=__version__, components=components)
