"""Health, readiness and metrics endpoints for load balancers and scrapers."""
import logging
from typing import Literal

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy import text

from mantle.database import Database, get_database
from mantle.observability.metrics import render_prometheus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthStatus(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"]
    version: str
    database: Literal["connected", "disconnected", "unchecked"]
    details: dict | None = None


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    """
    Basic health check endpoint.

    Returns 200 if the service is running; the database is not queried.
    """
    from mantle import __version__

    return HealthStatus(status="healthy", version=__version__, database="unchecked")


@router.get("/health/ready", response_model=HealthStatus)
async def readiness_check(
    response: Response,
    database: Database = Depends(get_database),
) -> HealthStatus:
    """
    Readiness check with dependency verification.

    Checks database connectivity; answers 503 when it is unreachable.
    """
    from mantle import __version__

    try:
        async with database.session() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
    except Exception as e:
        logger.warning("Database health check failed", extra={"error": str(e)})
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthStatus(
            status="unhealthy",
            version=__version__,
            database="disconnected",
            details={"database_error": str(e)},
        )

    return HealthStatus(status="healthy", version=__version__, database="connected")


@router.get("/health/live")
async def liveness_check() -> dict:
    """Liveness check - returns 200 if the process is alive."""
    return {"alive": True}


@router.get("/metrics", tags=["metrics"])
async def metrics() -> Response:
    """Prometheus exposition of the process registry."""
    payload, content_type = render_prometheus()
    return Response(content=payload, media_type=content_type)
