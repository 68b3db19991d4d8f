"""
Health check endpoints for monitoring application status.

Provides:
- Basic health check
- Readiness check (database connectivity)
- Liveness check
"""

import time
from datetime import datetime
from typing import Dict, Any

from fastapi import APIRouter, status, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from storefront import __version__
from storefront.database.connection import SessionLocal
from storefront.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/", status_code=status.HTTP_200_OK)
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint.

    Returns 200 if application is running.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "service": "storefront",
        "version": __version__,
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check(response: Response) -> Dict[str, Any]:
    """
    Readiness check endpoint.

    Verifies connectivity to the database; 503 when it is unreachable.
    """
    checks = {
        "database": _check_database(),
    }

    all_healthy = all(check["status"] == "healthy" for check in checks.values())
    if not all_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "healthy" if all_healthy else "unhealthy",
        "timestamp": datetime.utcnow().isoformat(),
        "checks": checks,
    }


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> Dict[str, str]:
    """Returns 200 while the process is running, even if dependencies are down."""
    return {
        "status": "alive",
        "timestamp": datetime.utcnow().isoformat(),
    }


def _check_database() -> Dict[str, Any]:
    start_time = time.time()

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "response_time_ms": round((time.time() - start_time) * 1000, 2),
        }
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e)[:100],
            "response_time_ms": round((time.time() - start_time) * 1000, 2),
        }
    finally:
        db.close()
