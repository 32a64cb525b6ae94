from typing import Dict, Any, Literal
from fastapi import APIRouter, status, Depends
from pydantic import BaseModel, Field
from datetime import datetime
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
import time
import logging

from wallet_referrals.core.config import settings
from wallet_referrals.core.status_cache import StatusCache, get_status_cache
from wallet_referrals.core.timeutils import utcnow
from wallet_referrals.db.database import get_db

router = APIRouter()
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Basic health check response model"""
    status: Literal["healthy", "degraded", "unhealthy"] = Field(
        description="Current health status of the service"
    )
    service: str = Field(description="Name of the service")
    version: str = Field(description="Current API version")


class DetailedHealthResponse(BaseModel):
    """Detailed health check response with component status"""
    status: Literal["healthy", "degraded", "unhealthy"]
    service: str
    version: str
    timestamp: datetime
    checks: Dict[str, Dict[str, Any]]


@router.get(
    "",
    response_model=HealthResponse,
    summary="Basic health check",
    status_code=status.HTTP_200_OK
)
async def health_check() -> HealthResponse:
    """
    Liveness probe for load balancers.

    No authentication required.
    """
    return HealthResponse(status="healthy", service=settings.PROJECT_NAME, version=settings.VERSION)


@router.get(
    "/detailed",
    response_model=DetailedHealthResponse,
    summary="Detailed health check",
    status_code=status.HTTP_200_OK
)
async def detailed_health_check(
    db: AsyncSession = Depends(get_db),
    cache: StatusCache = Depends(get_status_cache),
) -> DetailedHealthResponse:
    """Database and status cache connectivity."""
    checks = {}
    overall_status = "healthy"

    try:
        start_time = time.time()
        await db.execute(text("SELECT 1"))
        checks["database"] = {
            "status": "healthy",
            "response_time_ms": int((time.time() - start_time) * 1000),
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = {"status": "unhealthy", "message": f"Database connection failed: {str(e)}"}
        overall_status = "unhealthy"

    cache_status = await cache.ping()
    checks["status_cache"] = {"status": cache_status}
    if cache_status == "unhealthy" and overall_status == "healthy":
        # Status reads fall back to the database
        overall_status = "degraded"

    return DetailedHealthResponse(
        status=overall_status,
        service=settings.PROJECT_NAME,
        version=settings.VERSION,
        timestamp=utcnow(),
        checks=checks
    )
