"""
Health check and monitoring endpoints for production.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from call_analytics.config import config
from call_analytics.database import SessionLocal
from call_analytics.logging_config import logger

router = APIRouter(tags=["Health & Monitoring"])

SERVICE_NAME = "call-analytics"
SERVICE_VERSION = "1.0.0"


# GET /health
# Gets: nothing
# Returns: {status, service, version}
# Example:
#   curl http://localhost:8000/health
@router.get("/health")
async def health_check():
    """
    Basic health check - returns 200 if service is running.
    Use this for basic liveness probes.
    """
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION
    }


# GET /health/ready
# Gets: nothing
# Returns: dependency readiness checks; 200 when ready, 503 otherwise
# Example:
#   curl http://localhost:8000/health/ready
@router.get("/health/ready")
async def readiness_check(request: Request):
    """
    Readiness check - verifies all dependencies are available.
    Use this for Kubernetes readiness probes.

    Checks:
    - Database connectivity
    - Presence engine started
    - Delivery queue depth (reported, never fails readiness)
    """
    checks = {
        "database": False,
        "engine": False,
        "analytics_sink": "configured" if config.has_analytics_sink() else "not_configured",
        "queue_size": None,
        "ready": False
    }

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
        logger.debug("readiness_check_database", status="ok")
    except Exception as e:
        logger.warning("readiness_check_database", status="error", error=str(e))
    finally:
        db.close()

    engine = getattr(request.app.state, "engine", None)
    if engine is not None:
        checks["engine"] = True
        checks["queue_size"] = engine.queue.get_status()["queueSize"]

    checks["ready"] = checks["database"] is True and checks["engine"] is True

    status_code = 200 if checks["ready"] else 503
    return JSONResponse(content=checks, status_code=status_code)


# GET /health/info
# Gets: nothing
# Returns: service configuration summary
# Example:
#   curl http://localhost:8000/health/info
@router.get("/health/info")
async def system_info():
    """
    System information and configuration status.
    """
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "configuration": {
            "report_timezone": config.REPORT_TIMEZONE,
            "idle_threshold_seconds": config.IDLE_THRESHOLD_SECONDS,
            "reminder_tick_seconds": config.REMINDER_TICK_SECONDS,
            "default_reminder_interval_minutes": config.DEFAULT_REMINDER_INTERVAL_MINUTES,
            "queue_batch_size": config.QUEUE_BATCH_SIZE,
            "analytics_sink_configured": config.has_analytics_sink(),
            "debug_mode": config.DEBUG
        },
        "features": {
            "realtime_dashboard": True,
            "idle_reminders": True,
            "database_persistence": True,
            "analytics_sink": config.has_analytics_sink(),
            "daily_export": config.has_analytics_sink(),
        }
    }
