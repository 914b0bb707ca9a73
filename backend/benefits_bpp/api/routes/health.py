"""
Operational endpoints: health and Prometheus metrics
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from benefits_bpp.core.config import Settings, get_settings
from benefits_bpp.core.database import get_db
from benefits_bpp.core.logging_config import LoggingConfig
from benefits_bpp.core.metrics import get_metrics, get_metrics_content_type

logger = LoggingConfig.get_logger(__name__)
router = APIRouter(tags=["operations"])


@router.get("/health")
async def health_check(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Health check endpoint

    Returns:
        dict: Health status, 503 when the database is unreachable
    """
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.app_name,
        "environment": settings.app_env,
        "components": {},
    }

    try:
        db.execute(text("SELECT 1"))
        health_status["components"]["database"] = {"status": "healthy"}
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["components"]["database"] = {"status": "unhealthy"}
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@router.get("/metrics")
async def metrics():
    """Prometheus metrics in text format"""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
