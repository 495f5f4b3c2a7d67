"""Health check and monitoring endpoints."""

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from .._version import __version__
from ..config import settings

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/health", summary="Basic health check")
async def basic_health_check():
    """Basic health check endpoint that doesn't require authentication."""
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "browser-sandbox-manager",
    }


@router.get("/health/detailed", summary="Detailed health check")
async def detailed_health_check(request: Request):
    """Runtime and store reachability plus lifecycle statistics."""
    state = request.app.state
    runtime = getattr(state, "runtime", None)
    store = getattr(state, "record_store", None)
    manager = getattr(state, "lifecycle_manager", None)

    try:
        runtime_ok = await runtime.ping() if runtime is not None else False
        store_ok = await store.ping() if store is not None else False
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "error": "Health check system failure",
                "details": str(e) if settings.api_debug else "Internal error",
            },
        )

    lifecycle = manager.get_stats() if manager is not None else {"ready": False}

    if not (runtime_ok and store_ok and lifecycle.get("ready")):
        status = "unhealthy"
    elif lifecycle.get("stuck_containers"):
        status = "degraded"
    else:
        status = "healthy"

    response_data = {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "runtime": "healthy" if runtime_ok else "unhealthy",
            "store": "healthy" if store_ok else "unhealthy",
        },
        "lifecycle": lifecycle,
    }

    if status == "unhealthy":
        return JSONResponse(status_code=503, content=response_data)
    elif status == "degraded":
        return JSONResponse(
            status_code=200,
            content=response_data,
            headers={"X-Health-Status": "degraded"},
        )
    return JSONResponse(status_code=200, content=response_data)
