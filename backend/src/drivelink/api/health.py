"""Health check endpoints for DriveLink."""

import time

from fastapi import APIRouter, Depends

from ..core.cache_backend import RedisCacheBackend
from ..core.context import DriveLinkContext
from ..core.logging import get_logger
from ..core.rate_limiting import SERVICE_DRIVE
from ..core.response import DriveLinkResponse
from .dependencies import get_context

logger = get_logger(__name__)
router = APIRouter(prefix="/health", tags=["health"])

HEALTH_PROBE_KEY = "health_probe"


@router.get("", summary="Health check")
async def health_check(context: DriveLinkContext = Depends(get_context)):
    """Report key-value store reachability and the active Drive rate limit."""
    settings = context.settings
    health_data = {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.version,
        "environment": settings.environment,
        "checks": {},
    }

    backend_name = "redis" if isinstance(context.backend, RedisCacheBackend) else "memory"
    try:
        await context.backend.exists(HEALTH_PROBE_KEY)
        health_data["checks"]["kv_store"] = {"status": "healthy", "backend": backend_name}
    except Exception as e:
        logger.error(f"KV store health check failed: {e}")
        health_data["checks"]["kv_store"] = {"status": "unhealthy", "backend": backend_name, "error": str(e)}
        health_data["status"] = "unhealthy"

    bucket = context.rate_limiter.bucket(SERVICE_DRIVE)
    health_data["checks"]["rate_limiter"] = {
        "status": "healthy",
        "drive_queries_per_minute": round(bucket.rate * 60) if bucket else None,
        "drive_burst": bucket.burst if bucket else None,
    }

    return DriveLinkResponse.success(health_data)


@router.get("/liveness", summary="Liveness probe")
async def liveness_probe():
    return DriveLinkResponse.success({"status": "alive"})
