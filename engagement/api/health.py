"""Health and readiness endpoints.

/health is the liveness probe and reports per-dependency status; it
returns 200 even when degraded so an orchestrator does not restart the
container over a backing-store outage.  Saves fail soft while a store is
down and succeed again on the next trigger once it recovers.
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from sqlalchemy import text

from engagement.db.engine import engine
from engagement.db.redis import redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    checks: dict[str, str] = {}
    overall = "ok"

    if redis_pool is not None:
        try:
            await redis_pool.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    if engine is not None:
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            checks["database"] = "degraded"
            overall = "degraded"
    else:
        checks["database"] = "not_configured"

    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    """Readiness probe; in-memory fallbacks keep the service usable."""
    return Response(status_code=200)
