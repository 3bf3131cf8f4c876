"""
api/routes/v1/monitoring.py -- Counter-store health and recent security events.

  GET /api/v1/monitoring/store    -- backend name, status, ping latency (authenticated)
  GET /api/v1/monitoring/events   -- recent security events, newest first (admin)

Store status:
  operational  ping answered within 100 ms
  degraded     ping answered but slowly, or the failover store is serving
               requests from its in-process fallback
  down         ping failed
"""

import logging

from fastapi import APIRouter, Depends, Query, Request

from api.limiter import RELAXED, rate_limit
from api.models import SecurityEventResponse, StoreStatusResponse
from auth.dependencies import get_current_user, require_role
from auth.models import ROLE_ADMIN
from core.errors import BackingStoreUnavailable
from core.events import event_log

logger = logging.getLogger("authgate.api")

_SLOW_PING_MS = 100.0

router = APIRouter(dependencies=[Depends(rate_limit(RELAXED))])


@router.get(
    "/monitoring/store",
    response_model=StoreStatusResponse,
    dependencies=[Depends(get_current_user)],
)
async def store_status(request: Request) -> StoreStatusResponse:
    store = request.app.state.counter_store
    failover_active = bool(getattr(store, "degraded", False))
    try:
        latency_ms = await store.ping()
    except BackingStoreUnavailable as exc:
        logger.warning("Counter store ping failed: %s", exc)
        return StoreStatusResponse(backend=store.name, status="down", failover_active=failover_active)

    status = "degraded" if failover_active or latency_ms > _SLOW_PING_MS else "operational"
    return StoreStatusResponse(
        backend=store.name,
        status=status,
        latency_ms=round(latency_ms, 2),
        failover_active=failover_active,
    )


@router.get(
    "/monitoring/events",
    response_model=list[SecurityEventResponse],
    dependencies=[Depends(require_role(ROLE_ADMIN))],
)
def security_events(limit: int = Query(50, ge=1, le=200)) -> list[SecurityEventResponse]:
    return [SecurityEventResponse.from_event(e) for e in event_log.recent(limit)]
