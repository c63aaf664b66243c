"""
CareBridge Backend — Health Check Route
=========================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Probes the database and Redis, and reports the ledger circuit state
       without calling the ledger.

Status levels:
    healthy:   all dependencies operational (HTTP 200)
    degraded:  Redis down or ledger circuit open; signing and token
               payments fail but the rest of the API works (HTTP 200)
    unhealthy: database down (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Response, status
from sqlalchemy import text

from carebridge import __version__
from carebridge.database import engine
from carebridge.schemas.common import HealthResponse
from carebridge.services.circuit_breaker import CircuitBreaker
from carebridge.services.kv_store import kv_store
from carebridge.services.ledger_service import ledger_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    responses={503: {"description": "Database unreachable", "model": HealthResponse}},
)
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    redis_status = "connected"
    ledger_status = "available"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    try:
        await kv_store.ping()
    except Exception as e:
        redis_status = "disconnected"
        overall = "degraded" if overall != "unhealthy" else overall
        logger.warning("Health check: Redis unreachable: %s", str(e))

    if ledger_service.circuit_breaker.state == CircuitBreaker.OPEN:
        ledger_status = "circuit_open"
        overall = "degraded" if overall != "unhealthy" else overall

    if overall == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        redis=redis_status,
        ledger=ledger_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
