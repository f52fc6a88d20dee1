"""Health check endpoints."""

from datetime import datetime, timezone

import redis.asyncio as redis
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from furlong import __version__
from furlong.api.dependencies import get_redis
from furlong.config import Settings, get_settings

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: datetime


class ReadyCheck(BaseModel):
    """Individual readiness check."""

    status: str
    message: str | None = None


class ReadyResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    checks: dict[str, ReadyCheck]


@router.get("/health", response_model=HealthResponse)
async def health():
    """
    Basic health check.

    Returns healthy if the service is running.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/ready", response_model=ReadyResponse)
async def ready(
    redis_client: redis.Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings),
):
    """
    Readiness check for all dependencies.

    Checks:
    - Redis connectivity (Celery broker)
    - Data store credentials configured
    - Result provider credentials configured
    """
    checks = {}
    all_ready = True

    # Check Redis
    try:
        await redis_client.ping()
        checks["redis"] = ReadyCheck(status="ok")
    except Exception as e:
        checks["redis"] = ReadyCheck(status="error", message=str(e))
        all_ready = False

    # A run refuses to start without either set of credentials
    if settings.store_configured:
        checks["store"] = ReadyCheck(status="ok", message="Credentials configured")
    else:
        checks["store"] = ReadyCheck(status="error", message="Credentials not configured")
        all_ready = False

    if settings.provider_configured:
        checks["provider"] = ReadyCheck(status="ok", message="Credentials configured")
    else:
        checks["provider"] = ReadyCheck(status="error", message="Credentials not configured")
        all_ready = False

    return ReadyResponse(ready=all_ready, checks=checks)
