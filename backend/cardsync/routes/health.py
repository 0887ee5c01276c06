"""
CardSync Pro Backend — Health Check Route
==========================================

What:  Liveness/readiness probe for Docker and load balancers.

Status levels:
    - healthy:   database and Gemini reachable (HTTP 200)
    - degraded:  Gemini down or its circuit open; saving and listing still
                 work (HTTP 200)
    - unhealthy: database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Depends, Response

from cardsync import __version__
from cardsync.container import ServiceContainer
from cardsync.dependencies import get_services
from cardsync.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health_check(
    response: Response,
    services: ServiceContainer = Depends(get_services),
) -> HealthResponse:
    db_status = "connected"
    gemini_status = "available"
    overall = "healthy"

    try:
        await services.database.ping()
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    breaker = getattr(services.extractor, "circuit_breaker", None)
    if breaker is not None and breaker.is_open:
        gemini_status = "circuit_open"
    elif not await services.extractor.health_check():
        gemini_status = "unavailable"
    if gemini_status != "available" and overall == "healthy":
        overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        gemini=gemini_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
