"""Health and dependency status endpoint."""
from __future__ import annotations

from fastapi import APIRouter, Request

from dohGuard.api.models import BlocklistStatus, HealthReport, ok
from dohGuard.logging_config import get_logger
from dohGuard.relay import CircuitState

logger = get_logger("api")
router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health(request: Request):
    """
    Report proxy readiness.

    - unhealthy: no blocklist loaded
    - degraded: upstream circuit is open or half-open
    - healthy: otherwise
    """
    blocklist = getattr(request.app.state, "blocklist", None)
    resolver = getattr(request.app.state, "resolver", None)

    upstream = resolver.breaker.get_stats() if resolver is not None else None
    upstream_closed = resolver is None or resolver.breaker.state == CircuitState.CLOSED

    if blocklist is None:
        overall_status = "unhealthy"
    elif not upstream_closed:
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    report = HealthReport(
        status=overall_status,
        blocklist=BlocklistStatus(loaded=blocklist is not None, size=len(blocklist) if blocklist is not None else 0),
        upstream=upstream,
    )
    logger.debug(
        "Health check performed",
        extra={"state": overall_status, "blocklist_size": report.blocklist.size, "outcome": "success"}
    )
    return ok(report.model_dump())
