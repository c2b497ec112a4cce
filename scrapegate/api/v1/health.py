import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text

from scrapegate.config import settings
from scrapegate.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/health",
    summary="Liveness check",
    description="Basic liveness probe that returns HTTP 200 if the application process is running.",
)
async def liveness():
    """Liveness probe: returns 200 if the process is running."""
    return {"status": "healthy"}


@router.get(
    "/health/ready",
    summary="Readiness check",
    description="Readiness probe that verifies connectivity to the database and Redis and reports the browser state. Returns HTTP 503 if the database or Redis is unavailable.",
)
async def readiness(request: Request):
    """Readiness probe: checks DB and Redis, reports browser state."""
    engine = request.app.state.engine
    checks = {}

    try:
        async with engine.db_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    # ResilientRedis swallows connection errors and returns False
    if await engine.redis.ping():
        checks["redis"] = "ok"
    else:
        checks["redis"] = "unavailable"

    # Chromium starts on first use, so "idle" is healthy
    browser_state = "ok" if engine.browser_pool.is_running else "idle"

    all_ok = all(v == "ok" for v in checks.values())
    checks["browser_pool"] = browser_state
    return JSONResponse(
        content={"status": "ready" if all_ok else "not ready", "checks": checks},
        status_code=200 if all_ok else 503,
    )


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose application metrics in Prometheus exposition format. Returns HTTP 404 if metrics collection is disabled.",
)
async def metrics():
    """Prometheus metrics endpoint."""
    if not settings.METRICS_ENABLED:
        return Response(content="Metrics disabled", status_code=404)

    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type(),
    )
