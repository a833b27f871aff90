"""
Health check endpoints.

These endpoints help monitor if our application is running correctly.
Load balancers and orchestrators use them to decide whether to send traffic.
"""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import text
from typing import Dict, Any
import logging

from viewing_scheduler.api.deps import get_services
from viewing_scheduler.services.container import SchedulingServices

router = APIRouter(prefix="/health", tags=["health"])

logger = logging.getLogger(__name__)

SERVICE_NAME = "viewing-scheduler"


@router.get("/healthz")
async def health_check() -> Dict[str, str]:
    """
    Basic health check endpoint - "Is the app alive?"

    Always returns 200 OK if the process can answer; no dependencies are
    touched.

    URL: GET /health/healthz
    """
    logger.debug("Health check called")
    return {
        "status": "healthy",
        "service": SERVICE_NAME
    }


def _database_ok(services: SchedulingServices) -> bool:
    db = services.session_factory()
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database check failed: {e}")
        return False
    finally:
        db.close()


@router.get("/readyz")
def readiness_check(response: Response, services: SchedulingServices = Depends(get_services)) -> Dict[str, Any]:
    """
    Readiness check - "Can the app actually handle requests?"

    URL: GET /health/readyz

    Example response when NOT ready:
        {
            "status": "not_ready",
            "checks": {"database": false}
        }
    """
    logger.debug("Readiness check called")

    checks = {
        "database": _database_ok(services),
    }
    is_ready = all(checks.values())

    if not is_ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        logger.warning("App not ready - some checks failed")

    return {
        "status": "ready" if is_ready else "not_ready",
        "checks": checks
    }
