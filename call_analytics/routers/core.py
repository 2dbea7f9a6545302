from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from call_analytics.health import SERVICE_VERSION

router = APIRouter(tags=["Core"])


# GET /
# Gets: nothing
# Returns: basic API metadata and a map of key endpoints
# Example:
#   curl http://localhost:8000/
@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Call Analytics Server - live agent presence, talk time and idle reminders",
        "version": SERVICE_VERSION,
        "endpoints": {
            "websocket": "/ws",
            "dashboard": "/api/dashboard/live",
            "stats": "/api/stats",
            "agents": "/api/agents",
            "agent_history": "/api/agent/{agent_code}/history",
            "idle_sessions": "/api/idle-sessions",
            "reminder_settings": "/api/reminder-settings",
            "queue_status": "/api/queue/status",
            "health": "/health",
            "metrics": "/metrics",
        },
        "features": [
            "Live agent presence",
            "Daily talk time",
            "Idle session tracking",
            "Idle reminders",
            "Analytics export",
        ],
    }


# GET /metrics
# Gets: nothing
# Returns: Prometheus text exposition
# Example:
#   curl http://localhost:8000/metrics
@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
