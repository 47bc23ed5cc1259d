"""Health check endpoints."""

from fastapi import APIRouter
from sqlalchemy import text

from convertly.core.config import settings
from convertly.core.deps import DBSession, RedisClient
from convertly.schemas.common import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(db: DBSession, r: RedisClient) -> HealthResponse:
    """
    Health check endpoint.

    Checks the database (shops, OAuth state) and Redis (secondary state tier).
    """
    checks: dict[str, str] = {}
    overall = "healthy"

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        overall = "unhealthy"
        checks["database"] = f"unhealthy: {str(e)}"

    # Redis only backs up state tokens, so losing it degrades rather than fails
    try:
        await r.ping()
        checks["redis"] = "healthy"
    except Exception as e:
        if overall == "healthy":
            overall = "degraded"
        checks["redis"] = f"unhealthy: {str(e)}"

    return HealthResponse(
        status=overall,
        version=settings.version,
        environment=settings.environment,
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """
    Liveness probe for Kubernetes/container orchestration.

    Simple check that the service is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(db: DBSession) -> dict[str, str]:
    """
    Readiness probe for Kubernetes/container orchestration.

    Checks if the service is ready to receive traffic.
    """
    await db.execute(text("SELECT 1"))

    return {"status": "ready"}
