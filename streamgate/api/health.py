from datetime import datetime, timezone

from fastapi import APIRouter, Request
from redis.exceptions import RedisError

router = APIRouter()


async def _redis_status(request: Request) -> str:
    i18n = request.app.state.i18n
    redis = request.app.state.runtime.redis
    if not redis:
        return i18n.get("response.redis_disabled")
    try:
        await redis.ping()
        return i18n.get("response.redis_connected")
    except (RedisError, OSError):
        return i18n.get("response.redis_disconnected")


@router.get("/")
async def root(request: Request):
    """Root endpoint"""
    config = request.app.state.config
    return {
        "status": request.app.state.i18n.get("response.status_running"),
        "service": config.api.title,
        "version": config.api.version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health")
async def health_check(request: Request):
    """Lightweight health check"""
    return {
        "status": request.app.state.i18n.get("health.status"),
        "redis": await _redis_status(request)
    }


@router.get("/health/full")
async def health_check_full(request: Request):
    """Detailed health check"""
    config = request.app.state.config
    runtime = request.app.state.runtime
    limiter = request.app.state.limiter

    return {
        "status": request.app.state.i18n.get("health.status"),
        "extractor": config.extraction.binary,
        "extractor_version": runtime.extractor_version,
        "active_extractions": limiter.active,
        "max_concurrent": limiter.max_concurrent,
        "redis_status": await _redis_status(request),
        "uptime_seconds": int(datetime.now(timezone.utc).timestamp() - runtime.started_at),
    }
