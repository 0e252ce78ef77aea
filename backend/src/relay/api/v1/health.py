"""Health check endpoints for liveness and readiness probes."""
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from relay import __version__
from relay.api.deps import get_database, get_job_queue
from relay.database import Database
from relay.queue.base import JobQueue

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> dict[str, str]:
    """
    Liveness probe.

    Returns basic health status if the process is running. Does not check
    external dependencies.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__,
    }


@router.get("/health/ready")
async def readiness_check(
    database: Database = Depends(get_database),
    queue: JobQueue = Depends(get_job_queue),
) -> JSONResponse:
    """
    Readiness probe.

    Checks database connectivity and reports queue depth. Returns 503 when
    the database is unreachable.
    """
    checks = {"database": "unknown"}
    queue_stats = None
    ready = True

    try:
        await database.ping()
        checks["database"] = "connected"
    except Exception as exc:
        logger.error("database_health_check_failed", error=str(exc))
        checks["database"] = "disconnected"
        ready = False

    if ready:
        try:
            queue_stats = (await queue.stats()).as_dict()
        except Exception as exc:
            logger.warning("queue_stats_failed", error=str(exc))

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "ready": ready,
            "checks": checks,
            "queue": queue_stats,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
