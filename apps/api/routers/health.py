"""
Health check endpoints.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import redis.asyncio as redis

from config import settings
from database import engine
from routers.connector_deps import get_provider_registry
from services.connectors.registry import ProviderRegistry

router = APIRouter()


@router.get("/health")
async def health_check(registry: ProviderRegistry = Depends(get_provider_registry)):
    """
    Health check endpoint.
    Reports database, OAuth state backend, and provider credential status.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "oauth_state_backend": settings.OAUTH_STATE_BACKEND,
        "providers": registry.config_status(),
    }

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except SQLAlchemyError as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    # Redis only matters when it holds pending OAuth states.
    if settings.OAUTH_STATE_BACKEND == "redis":
        try:
            r = redis.from_url(settings.REDIS_URL)
            await r.ping()
            await r.aclose()
            health_status["redis"] = "up"
        except redis.RedisError as e:
            health_status["redis"] = f"down: {str(e)}"
            health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check(registry: ProviderRegistry = Depends(get_provider_registry)):
    """Kubernetes-style readiness probe."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return JSONResponse(status_code=503, content={"ready": False, "missing": ["database"]})
    mode = "oauth" if any(registry.config_status().values()) else "demo"
    return {"ready": True, "mode": mode}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
