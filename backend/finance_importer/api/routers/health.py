"""Simple health and readiness endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from finance_importer.core.config import Settings, get_settings
from finance_importer.db.session import get_session_factory
from finance_importer.utils.redis_client import create_redis_client, get_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "finance-importer-api"


@router.get("/live", summary="Liveness probe")
async def live() -> dict[str, str]:
    """Indicates API process is running."""
    return {"status": "ok", "service": SERVICE_NAME}


@router.get("/ready", summary="Readiness probe")
async def ready(
    session_factory: sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Check readiness of dependencies (database, Redis, Celery broker).

    The database and Redis are required. A broker that cannot be reached is
    reported but does not fail readiness, since workers may run elsewhere.
    """
    checks: dict[str, Any] = {
        "status": "ok",
        "service": SERVICE_NAME,
        "checks": {},
    }
    all_healthy = True

    try:
        with session_factory() as session:
            session.execute(text("SELECT 1")).fetchone()
        checks["checks"]["database"] = {
            "status": "healthy",
            "message": "Database connection successful",
        }
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        checks["checks"]["database"] = {
            "status": "unhealthy",
            "message": f"Database connection failed: {str(e)}",
        }
        all_healthy = False

    try:
        get_redis_client().ping()
        checks["checks"]["redis"] = {
            "status": "healthy",
            "message": "Redis connection successful",
        }
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}", exc_info=True)
        checks["checks"]["redis"] = {
            "status": "unhealthy",
            "message": f"Redis connection failed: {str(e)}",
        }
        all_healthy = False

    broker_url = settings.celery_broker_url
    if settings.import_dispatch == "background":
        checks["checks"]["celery_broker"] = {
            "status": "skipped",
            "message": "Imports run in-process",
        }
    elif not broker_url or broker_url == settings.redis_url:
        checks["checks"]["celery_broker"] = dict(checks["checks"]["redis"])
    else:
        try:
            broker = create_redis_client(broker_url, socket_connect_timeout=2)
            broker.ping()
            broker.close()
            checks["checks"]["celery_broker"] = {
                "status": "healthy",
                "message": "Celery broker connection successful",
            }
        except RedisError as e:
            logger.warning(f"Celery broker health check failed: {e}")
            checks["checks"]["celery_broker"] = {
                "status": "unhealthy",
                "message": f"Celery broker connection failed: {str(e)}",
            }

    if not all_healthy:
        checks["status"] = "unhealthy"
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=checks,
        )

    return checks
