"""Health check endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text

from funnellab.api.deps import redis_client
from funnellab.database import get_db
from funnellab.config import get_settings

router = APIRouter()
settings = get_settings()


@router.get("/health")
@router.head("/health")
async def health_check():
    """Basic health check."""
    return {"status": "healthy", "service": "funnellab-backend"}


@router.get("/health/detailed")
def detailed_health_check(db: Session = Depends(get_db)):
    """
    Detailed health check including database and Redis connectivity.

    Redis only backs the weight cache and the rate limiter, so it is reported
    as "disabled" when neither is switched on.
    """
    checks = {
        "api": "healthy",
        "database": "unknown",
        "redis": "unknown"
    }

    # Check database
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        checks["database"] = f"unhealthy: {str(e)}"

    # Check Redis
    if not (settings.cache_enabled or settings.rate_limit_enabled):
        checks["redis"] = "disabled"
    else:
        try:
            redis_client.ping()
            checks["redis"] = "healthy"
        except Exception as e:
            checks["redis"] = f"unhealthy: {str(e)}"

    # Overall status
    overall_status = "healthy" if all(
        v in ("healthy", "disabled") for v in checks.values()
    ) else "degraded"

    return {
        "status": overall_status,
        "checks": checks
    }
