"""
api/middleware.py -- HTTP middleware stages of the request gate.

Each function here is a Starlette "http" middleware (request, call_next) or a
factory returning one. They are registered in api/main.py. Stages never read
each other's state; each may short-circuit with the standard error envelope.

  timeout_guard(seconds)   503 request_timeout when the downstream stack has
                           not produced a response in time.
  security_headers         CSP, HSTS, frame/sniffing/referrer protections on
                           every response (the API serves no HTML).
  body_size_limit(max)     413 payload_too_large when Content-Length exceeds
                           the limit; 400 when Content-Length is malformed.
  log_requests             one log line per request plus an X-Request-ID header.

Chunked request bodies without Content-Length are not measured by
body_size_limit; the ASGI server's own limits apply to them.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse

logger = logging.getLogger("authgate.api")

_SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-DNS-Prefetch-Control": "off",
}

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9\-]{1,64}$")


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )


def timeout_guard(seconds: float):
    async def middleware(request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=seconds)
        except asyncio.TimeoutError:
            logger.warning("Request timed out after %.1fs: %s %s", seconds, request.method, request.url.path)
            response = _error(503, "request_timeout", "Request timeout.")
            response.headers["Connection"] = "close"
            return response

    return middleware


async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


def body_size_limit(max_bytes: int):
    async def middleware(request: Request, call_next):
        length = request.headers.get("content-length")
        if length is not None:
            if not length.isdigit():
                return _error(400, "bad_request", "Invalid Content-Length header.")
            if int(length) > max_bytes:
                return _error(413, "payload_too_large", "Request body too large.")
        return await call_next(request)

    return middleware


async def log_requests(request: Request, call_next):
    incoming = request.headers.get("x-request-id", "")
    request_id = incoming if _REQUEST_ID_RE.match(incoming) else str(uuid.uuid4())
    request.state.request_id = request_id
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s rid=%s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        request_id,
    )
    response.headers["X-Request-ID"] = request_id
    return response
