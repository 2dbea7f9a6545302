"""
Async job processing with Celery.
Runs the nightly export of per-agent daily stats to the analytics tables.

    celery -A call_analytics.celery_tasks worker --beat
"""

from datetime import date as date_type
from typing import Optional

from celery import Celery
from celery.schedules import crontab

from call_analytics.config import config

# Initialize Celery with Redis broker
celery_app = Celery(
    'call_analytics',
    broker=config.REDIS_URL,
    backend=config.REDIS_URL
)

# Celery configuration
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone=config.REPORT_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    beat_schedule={
        'export-daily-stats': {
            'task': 'export_daily_stats',
            'schedule': crontab(hour=config.DAILY_EXPORT_HOUR, minute=config.DAILY_EXPORT_MINUTE),
        },
    },
)


def build_daily_rows(agents, entries, day: date_type) -> list[dict]:
    """One row per agent; agents without activity that day get zeros."""
    by_code = {entry.agent_code: entry for entry in entries}
    rows = []
    for agent in agents:
        entry = by_code.get(agent.code)
        seconds = entry.total_talk_time_seconds if entry else 0
        rows.append({
            "agentCode": agent.code,
            "agentName": agent.name,
            "date": day.isoformat(),
            "talktimeMinutes": round(seconds / 60, 2),
            "totalCalls": entry.call_count if entry else 0,
        })
    return rows


@celery_app.task(name='export_daily_stats')
def export_daily_stats_task(date: Optional[str] = None):
    """
    Export every active agent's talk time for one reporting day.

    Args:
        date: ISO date (YYYY-MM-DD); defaults to today in REPORT_TIMEZONE

    Returns:
        dict: {status, date, agents, exported}; status is "partial" when the
        row-by-row fallback wrote only some rows
    """
    from call_analytics.database import SessionLocal
    from call_analytics.logging_config import logger
    from call_analytics.services import AgentService, DailyTalkTimeService
    from call_analytics.sinks import post_daily_stats, upsert_daily_stats
    from call_analytics.timeutil import Clock, reporting_date

    day = date_type.fromisoformat(date) if date else reporting_date(Clock().now(), config.REPORT_TIMEZONE)

    db = SessionLocal()
    try:
        agents = [AgentService.to_domain(row) for row in AgentService.list_agents(db, include_removed=False)]
        entries = DailyTalkTimeService.for_date(db, day)
    finally:
        db.close()

    rows = build_daily_rows(agents, entries, day)

    if not config.has_analytics_sink():
        logger.warning("daily_export_skipped", date=day.isoformat(), reason="analytics_sink_not_configured", agents=len(rows))
        return {"status": "skipped", "date": day.isoformat(), "agents": len(rows), "exported": 0}

    try:
        exported = post_daily_stats(rows)
    except Exception as e:
        # Bulk create failed: retry row by row, updating rows that already exist
        logger.warning("daily_export_bulk_failed", date=day.isoformat(), error=str(e))
        try:
            exported = upsert_daily_stats(rows)
        except Exception as fallback_error:
            logger.error("daily_export_failed", date=day.isoformat(), error=str(fallback_error))
            return {"status": "error", "date": day.isoformat(), "agents": len(rows), "exported": 0,
                    "message": str(fallback_error)}

        if rows and not exported:
            logger.error("daily_export_failed", date=day.isoformat(), error=str(e))
            return {"status": "error", "date": day.isoformat(), "agents": len(rows), "exported": 0, "message": str(e)}

        status = "success" if exported == len(rows) else "partial"
        logger.info("daily_export_completed", date=day.isoformat(), exported=exported, fallback=True)
        return {"status": status, "date": day.isoformat(), "agents": len(rows), "exported": exported, "fallback": True}

    logger.info("daily_export_completed", date=day.isoformat(), exported=exported)
    return {"status": "success", "date": day.isoformat(), "agents": len(rows), "exported": exported}
