"""
Service layer for database operations.
The presence engine keeps its working state in memory; these services are
its durable side.
"""

from typing import List, Optional
from sqlalchemy.orm import Session
from datetime import date, datetime, timezone

from call_analytics.db_models import DBAgent, DBCall, DBIdleSession, DBDailyTalkTime
from call_analytics.models import Agent, AgentStatus, CallRecord, DailyTalkTime, IdleSession, ReminderConfig
from call_analytics.logging_config import get_logger

logger = get_logger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AgentService:
    """Service for managing agents."""

    @staticmethod
    def to_domain(row: DBAgent) -> Agent:
        return Agent(
            code=row.code,
            name=row.name,
            status=row.status or AgentStatus.OFFLINE,
            reminder_config=ReminderConfig(
                enabled=bool(row.reminders_enabled),
                interval_minutes=row.reminder_interval_minutes or 5,
            ),
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
            last_seen=_as_utc(row.last_seen),
        )

    @staticmethod
    def upsert(db: Session, agent: Agent) -> DBAgent:
        """Insert or overwrite an agent row from its in-memory state."""
        row = db.query(DBAgent).filter(DBAgent.code == agent.code).first()
        created = row is None
        if created:
            row = DBAgent(code=agent.code, created_at=agent.created_at)
            db.add(row)

        row.name = agent.name
        row.status = agent.status
        row.reminders_enabled = agent.reminder_config.enabled
        row.reminder_interval_minutes = agent.reminder_config.interval_minutes
        row.last_seen = agent.last_seen
        row.updated_at = agent.updated_at

        db.commit()
        db.refresh(row)

        logger.info("agent_saved", agent_code=agent.code, status=agent.status.value, created=created)
        return row

    @staticmethod
    def get(db: Session, code: str) -> Optional[DBAgent]:
        """Get agent by code."""
        return db.query(DBAgent).filter(DBAgent.code == code).first()

    @staticmethod
    def list_agents(db: Session, include_removed: bool = True) -> List[DBAgent]:
        """List agents ordered by code."""
        query = db.query(DBAgent)

        if not include_removed:
            query = query.filter(DBAgent.status != AgentStatus.REMOVED)

        return query.order_by(DBAgent.code).all()


class CallService:
    """Service for call history."""

    @staticmethod
    def record_call(db: Session, record: CallRecord) -> DBCall:
        """
        Append a completed call. Replays of the same call are ignored.

        A call is identified by agent, number and its start and end times, so
        calls reported without both times cannot be told apart and are always
        inserted.
        """
        if record.start_time and record.end_time:
            existing = db.query(DBCall).filter(
                DBCall.agent_code == record.agent_code,
                DBCall.phone_number == record.phone_number,
                DBCall.start_time == record.start_time,
                DBCall.end_time == record.end_time,
            ).first()
            if existing:
                logger.info("call_already_recorded", agent_code=record.agent_code, call_id=existing.id)
                return existing

        call = DBCall(
            agent_code=record.agent_code,
            agent_name=record.agent_name,
            phone_number=record.phone_number,
            contact_name=record.contact_name,
            call_type=record.call_type,
            talk_duration=record.talk_duration,
            total_duration=record.total_duration,
            call_date=record.call_date,
            start_time=record.start_time,
            end_time=record.end_time,
        )
        db.add(call)
        db.commit()
        db.refresh(call)

        logger.info("call_recorded", agent_code=record.agent_code, call_id=call.id, talk_duration=record.talk_duration)
        return call

    @staticmethod
    def count_for_date(db: Session, day: date) -> int:
        return db.query(DBCall).filter(DBCall.call_date == day).count()


class IdleSessionService:
    """Service for idle session history."""

    @staticmethod
    def record(db: Session, session: IdleSession) -> DBIdleSession:
        """Append an idle session. Replays of the same session are ignored."""
        start_time = _as_utc(session.start_time)
        existing = db.query(DBIdleSession).filter(
            DBIdleSession.agent_code == session.agent_code,
            DBIdleSession.start_time == start_time,
        ).first()
        if existing:
            logger.info("idle_session_already_recorded", agent_code=session.agent_code, session_id=existing.id)
            return existing

        row = DBIdleSession(
            agent_code=session.agent_code,
            agent_name=session.agent_name,
            start_time=start_time,
            end_time=_as_utc(session.end_time),
            duration_seconds=session.duration_seconds,
            session_date=session.date,
        )
        db.add(row)
        db.commit()
        db.refresh(row)

        logger.info("idle_session_recorded", agent_code=session.agent_code, duration_seconds=session.duration_seconds)
        return row

    @staticmethod
    def list_sessions(
        db: Session,
        agent_code: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[List[IdleSession], int]:
        """Page through idle sessions, newest first. Returns (page, total)."""
        query = db.query(DBIdleSession)

        if agent_code:
            query = query.filter(DBIdleSession.agent_code == agent_code)
        if start_date:
            query = query.filter(DBIdleSession.session_date >= start_date)
        if end_date:
            query = query.filter(DBIdleSession.session_date <= end_date)

        total = query.count()
        rows = query.order_by(DBIdleSession.start_time.desc()).offset(skip).limit(limit).all()

        sessions = [
            IdleSession(
                agent_code=row.agent_code,
                agent_name=row.agent_name or "Unknown",
                start_time=_as_utc(row.start_time),
                end_time=_as_utc(row.end_time),
                duration_seconds=row.duration_seconds,
                date=row.session_date,
            )
            for row in rows
        ]
        return sessions, total


class DailyTalkTimeService:
    """Service for per-day talk time totals."""

    @staticmethod
    def to_domain(row: DBDailyTalkTime) -> DailyTalkTime:
        return DailyTalkTime(
            agent_code=row.agent_code,
            agent_name=row.agent_name,
            date=row.date,
            total_talk_time_seconds=row.total_talk_time_seconds or 0,
            call_count=row.call_count or 0,
            last_updated=_as_utc(row.last_updated),
        )

    @staticmethod
    def upsert(db: Session, entry: DailyTalkTime) -> DBDailyTalkTime:
        """Store the latest total for (agent, date). Last write wins."""
        row = db.query(DBDailyTalkTime).filter(
            DBDailyTalkTime.agent_code == entry.agent_code,
            DBDailyTalkTime.date == entry.date,
        ).first()
        if row is None:
            row = DBDailyTalkTime(agent_code=entry.agent_code, date=entry.date)
            db.add(row)

        row.agent_name = entry.agent_name
        row.total_talk_time_seconds = entry.total_talk_time_seconds
        row.call_count = entry.call_count
        row.last_updated = entry.last_updated

        db.commit()
        db.refresh(row)

        logger.info(
            "daily_talk_time_saved",
            agent_code=entry.agent_code,
            date=entry.date.isoformat(),
            total_talk_time_seconds=entry.total_talk_time_seconds,
        )
        return row

    @staticmethod
    def for_date(db: Session, day: date) -> List[DailyTalkTime]:
        rows = db.query(DBDailyTalkTime).filter(DBDailyTalkTime.date == day).order_by(DBDailyTalkTime.agent_code).all()
        return [DailyTalkTimeService.to_domain(row) for row in rows]

    @staticmethod
    def agent_history(db: Session, agent_code: str, start_date: date, end_date: date) -> List[DailyTalkTime]:
        rows = db.query(DBDailyTalkTime).filter(
            DBDailyTalkTime.agent_code == agent_code,
            DBDailyTalkTime.date >= start_date,
            DBDailyTalkTime.date <= end_date,
        ).order_by(DBDailyTalkTime.date).all()
        return [DailyTalkTimeService.to_domain(row) for row in rows]
