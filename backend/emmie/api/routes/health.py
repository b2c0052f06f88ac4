"""
Health check API routes.
"""
from fastapi import APIRouter, Depends
from datetime import datetime
import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import settings
from ...database import check_tables_exist, get_db
from ...models.schemas import HealthResponse
from ...tools.registry import get_function_tool_registry

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns:
        System health status
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        version=settings.app_version,
        services={}
    )


@router.get("/ready", response_model=HealthResponse)
async def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness check for the services a chat turn needs.

    Returns:
        Detailed service health status
    """
    services = {}
    overall_status = "healthy"

    try:
        db.execute(text("SELECT 1"))
        services["database"] = "healthy"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        services["database"] = "unhealthy"
        overall_status = "unhealthy"

    if services["database"] == "healthy":
        if check_tables_exist(db.get_bind()):
            services["tables"] = "healthy"
        else:
            services["tables"] = "missing"
            overall_status = "unhealthy"

    if settings.get_openai_api_key():
        services["openai"] = "configured"
    else:
        services["openai"] = "not_configured"
        overall_status = "degraded" if overall_status == "healthy" else overall_status

    services["function_tools"] = str(len(get_function_tool_registry()))

    return HealthResponse(
        status=overall_status,
        timestamp=datetime.utcnow(),
        version=settings.app_version,
        services=services
    )


@router.get("/live")
async def liveness_check():
    """
    Simple liveness check.

    Returns:
        Basic alive status
    """
    return {"status": "alive", "timestamp": datetime.utcnow().isoformat()}
