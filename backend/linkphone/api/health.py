"""
The Link Phone - Health Check Endpoints

System health monitoring endpoints for load balancers and monitoring.
"""

from datetime import datetime

from fastapi import APIRouter, Request

from linkphone import __version__

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
async def health_check(request: Request) -> dict:
    """
    Overall system health check.

    Returns:
        - status: "healthy" or "degraded"
        - checks: Individual component statuses
        - timestamp: Current server time
    """
    settings = request.app.state.settings
    registry = getattr(request.app.state, "registry", None)
    api_client = getattr(request.app.state, "api_client", None)

    checks = {
        "registry": {
            "status": "healthy" if registry is not None else "unavailable",
            "phones": registry.count if registry is not None else 0,
            "max_phones": settings.max_phones,
        },
        "telephony": {
            "status": "healthy",
            "provider": settings.telephony_provider,
            "simulation_enabled": settings.simulation_enabled,
        },
        "backend_api": {
            "status": "healthy" if api_client is not None else "unavailable",
            "base_url": api_client.base_url if api_client is not None else None,
        },
    }

    all_healthy = all(c.get("status") == "healthy" for c in checks.values())

    return {
        "status": "healthy" if all_healthy else "degraded",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "version": __version__,
        "environment": settings.app_env,
        "checks": checks,
    }


@router.get("/ready")
async def readiness_check(request: Request) -> dict:
    """
    Readiness probe for container orchestration.

    Ready once the phone registry has been started.
    """
    return {
        "ready": getattr(request.app.state, "registry", None) is not None,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }
