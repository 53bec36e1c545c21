"""Health and readiness endpoints.

  /health  liveness: is the process up, and how are its backends?
           Always 200; the body's status says "degraded" when a
           configured backend does not answer.  A restart would not fix
           a Redis outage, so liveness must not fail for it.

  /ready   readiness: can this instance take traffic right now?
           503 when a configured Redis or database is unreachable, which
           takes the instance out of the load balancer until it recovers.
           Unconfigured backends have in-memory fallbacks and do not count.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response
from sqlalchemy import text

from studyforge.db.engine import engine
from studyforge.db.redis import redis_pool
from studyforge.models.events import EVENT_SCHEMAS

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"
    return "ok"


async def _check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"
    return "ok"


async def _checks() -> dict[str, str]:
    return {"redis": await _check_redis(), "database": await _check_database()}


@router.get("/health")
async def health(request: Request) -> dict:
    checks = await _checks()
    overall = "degraded" if "degraded" in checks.values() else "ok"

    queues: dict[str, int] = {}
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is not None and overall == "ok":
        for event in EVENT_SCHEMAS:
            queues[event] = await pipeline.queue.queue_length(event)

    return {"status": overall, "checks": checks, "queues": queues}


@router.get("/ready")
async def ready() -> Response:
    checks = await _checks()
    if "degraded" in checks.values():
        return Response(status_code=503)
    return Response(status_code=200)
