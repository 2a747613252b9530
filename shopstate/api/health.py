"""Health check endpoint."""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from shopstate.core.config import settings
from shopstate.core.feature_flags import feature_flags

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


def check_database_health(request: Request) -> Dict[str, Any]:
    """Run a trivial query against the storage database."""
    session_factory = request.app.state.session_factory
    try:
        with session_factory() as db:
            db.execute(text("SELECT 1"))
        return {"status": "healthy", "connected": True}
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "connected": False, "error": type(e).__name__}


def _check_rate_limit_storage() -> Dict[str, Any]:
    if settings.redis_url:
        return {"type": "redis", "configured": True}
    return {"type": "memory", "configured": True}


@router.get("/api/health")
def api_health_check(request: Request, response: Response) -> Dict[str, Any]:
    """
    Health of the service and the storage database.

    Returns 503 when the database cannot be reached.
    """
    health_status: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "version": settings.VERSION,
        "environment": {
            "name": settings.ENVIRONMENT,
            "dev_mode": settings.DEV_MODE,
            "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        },
        "services": {},
    }

    database = check_database_health(request)
    health_status["services"]["database"] = database
    if database["status"] != "healthy":
        health_status["status"] = "unhealthy"

    limiter = getattr(request.app.state, "limiter", None)
    health_status["services"]["rate_limiting"] = {
        "status": "enabled" if limiter is not None and limiter.enabled else "disabled",
        "storage": _check_rate_limit_storage(),
    }
    health_status["services"]["feature_flags"] = feature_flags.health_check()
    health_status["services"]["contexts"] = {"active_profiles": len(request.app.state.contexts)}

    if health_status["status"] == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return health_status
