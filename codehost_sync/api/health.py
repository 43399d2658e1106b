"""Health check endpoints."""

from fastapi import APIRouter

from codehost_sync.core.config import get_settings
from codehost_sync.core.database import database
from codehost_sync.core.http import http_client_manager
from codehost_sync.models import utcnow

router = APIRouter()
settings = get_settings()


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "service": settings.service_name,
        "environment": settings.environment,
        "timestamp": utcnow().isoformat(),
    }


@router.get("/health/detailed")
async def detailed_health_check():
    """Detailed health check with database connectivity."""
    health_status = {
        "status": "healthy",
        "service": settings.service_name,
        "environment": settings.environment,
        "timestamp": utcnow().isoformat(),
        "checks": {
            "database": {"status": "unknown"},
            "http_client": {"status": "unknown"},
            "github_app": {"status": "unknown"},
        }
    }

    # Check MongoDB
    try:
        if database.client:
            await database.client.admin.command("ping")
            health_status["checks"]["database"]["status"] = "healthy"
        else:
            health_status["checks"]["database"]["status"] = "disconnected"
            health_status["status"] = "degraded"
    except Exception as e:
        health_status["checks"]["database"]["status"] = "unhealthy"
        health_status["checks"]["database"]["error"] = str(e)
        health_status["status"] = "unhealthy"

    health_status["checks"]["http_client"]["status"] = (
        "healthy" if http_client_manager.client is not None else "stopped"
    )

    # Installation tokens need both the app id and its private key
    if settings.github_app_id and settings.github_app_private_key:
        health_status["checks"]["github_app"]["status"] = "configured"
    else:
        health_status["checks"]["github_app"]["status"] = "not_configured"

    return health_status
