from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from call_analytics.database import get_db
from call_analytics.dependencies import get_engine
from call_analytics.engine import PresenceEngine
from call_analytics.services import DailyTalkTimeService, IdleSessionService
from call_analytics.timeutil import format_duration

router = APIRouter(prefix="/api", tags=["Dashboard"])


# GET /api/dashboard/live
# Gets: nothing
# Returns: the same snapshot pushed as `dashboard_update`
#   {agentsTalkTime: [...], agentsOnCall: [...], agentsIdleTime: [...], lastUpdated}
# Example:
#   curl http://localhost:8000/api/dashboard/live
@router.get("/dashboard/live")
async def dashboard_live(engine: PresenceEngine = Depends(get_engine)):
    """Current dashboard snapshot."""
    return engine.snapshot().to_wire()


# GET /api/stats
# Gets: nothing
# Returns: today's totals, connection counts and delivery queue status
# Example:
#   curl http://localhost:8000/api/stats
@router.get("/stats")
async def stats(request: Request, engine: PresenceEngine = Depends(get_engine)):
    return {**engine.stats(), "connectedClients": request.app.state.hub.count()}


# GET /api/queue/status
# Gets: nothing
# Returns: {queueSize, isProcessing, oldestItemAgeMs, retryAt, delivered, failures}
# Example:
#   curl http://localhost:8000/api/queue/status
@router.get("/queue/status")
async def queue_status(engine: PresenceEngine = Depends(get_engine)):
    return engine.queue.get_status()


# POST /api/queue/process
# Gets: nothing
# Returns: {processed: int, status: {...}}
# Example:
#   curl -X POST http://localhost:8000/api/queue/process
@router.post("/queue/process")
async def queue_process(engine: PresenceEngine = Depends(get_engine)):
    """Drain one batch now, ignoring any retry backoff."""
    processed = await engine.queue.force_process()
    return {"processed": processed, "status": engine.queue.get_status()}


# GET /api/agent/{agent_code}/history?start_date=YYYY-MM-DD&end_date=YYYY-MM-DD
# Gets: path agent_code, query start_date and end_date (both required)
# Returns: {agentCode, startDate, endDate, totalTalkTime, formattedTalkTime, history: [...]}
# Example:
#   curl 'http://localhost:8000/api/agent/A1/history?start_date=2024-01-01&end_date=2024-01-31'
@router.get("/agent/{agent_code}/history")
def agent_history(
    agent_code: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    """Daily talk time of one agent over a date range."""
    if start_date is None or end_date is None:
        raise HTTPException(status_code=400, detail="start_date and end_date are required")
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")

    entries = DailyTalkTimeService.agent_history(db, agent_code, start_date, end_date)
    total = sum(entry.total_talk_time_seconds for entry in entries)

    return {
        "agentCode": agent_code,
        "startDate": start_date.isoformat(),
        "endDate": end_date.isoformat(),
        "totalTalkTime": total,
        "formattedTalkTime": format_duration(total),
        "totalCalls": sum(entry.call_count for entry in entries),
        "history": [
            {
                "date": entry.date.isoformat(),
                "totalTalkTime": entry.total_talk_time_seconds,
                "formattedTalkTime": format_duration(entry.total_talk_time_seconds),
                "callCount": entry.call_count,
            }
            for entry in entries
        ],
    }


# GET /api/idle-sessions?agent_code=&start_date=&end_date=&skip=0&limit=20
# Gets: optional filters and paging
# Returns: {total, skip, limit, sessions: [IdleSession...]}
# Example:
#   curl 'http://localhost:8000/api/idle-sessions?agent_code=A1'
@router.get("/idle-sessions")
def idle_sessions(
    agent_code: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = 0,
    limit: int = 20,
    db: Session = Depends(get_db),
):
    if limit < 1 or limit > 500:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 500")

    sessions, total = IdleSessionService.list_sessions(
        db, agent_code=agent_code, start_date=start_date, end_date=end_date, skip=skip, limit=limit,
    )
    return {
        "total": total,
        "skip": skip,
        "limit": limit,
        "sessions": [session.to_wire() for session in sessions],
    }
