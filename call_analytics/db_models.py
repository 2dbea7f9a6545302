"""
SQLAlchemy database models.
Durable side of the presence engine: agents, call history, idle sessions
and daily talk time.
"""

from sqlalchemy import Column, Integer, String, DateTime, Date, Boolean, UniqueConstraint, Enum as SQLEnum
from datetime import datetime, timezone

from call_analytics.database import Base
from call_analytics.models import AgentStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DBAgent(Base):
    """Agent database model. Rows are never deleted; removal is a status."""
    __tablename__ = "agents"

    code = Column(String(50), primary_key=True)
    name = Column(String(100), nullable=False)
    status = Column(SQLEnum(AgentStatus), default=AgentStatus.OFFLINE, index=True)

    reminders_enabled = Column(Boolean, default=True)
    reminder_interval_minutes = Column(Integer, default=5)

    last_seen = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class DBCall(Base):
    """Completed call history."""
    __tablename__ = "calls"
    __table_args__ = (
        UniqueConstraint("agent_code", "phone_number", "start_time", "end_time", name="uq_calls_natural_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    agent_code = Column(String(50), nullable=False, index=True)
    agent_name = Column(String(100))
    phone_number = Column(String(50))
    contact_name = Column(String(100))
    call_type = Column(String(20), nullable=False)
    talk_duration = Column(Integer, default=0)
    total_duration = Column(Integer, default=0)
    call_date = Column(Date, nullable=False, index=True)
    # Device-reported clock strings, kept verbatim.
    start_time = Column(String(50))
    end_time = Column(String(50))

    created_at = Column(DateTime(timezone=True), default=_utcnow)


class DBIdleSession(Base):
    """Idle interval between two calls of one agent."""
    __tablename__ = "idle_sessions"
    __table_args__ = (
        UniqueConstraint("agent_code", "start_time", name="uq_idle_sessions_agent_start"),
    )

    id = Column(Integer, primary_key=True, index=True)
    agent_code = Column(String(50), nullable=False, index=True)
    agent_name = Column(String(100))
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    duration_seconds = Column(Integer, nullable=False)
    session_date = Column(Date, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)


class DBDailyTalkTime(Base):
    """Latest cumulative talk time reported by an agent's device for a day."""
    __tablename__ = "daily_talk_time"
    __table_args__ = (
        UniqueConstraint("agent_code", "date", name="uq_daily_talk_time_agent_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    agent_code = Column(String(50), nullable=False, index=True)
    agent_name = Column(String(100))
    date = Column(Date, nullable=False, index=True)
    total_talk_time_seconds = Column(Integer, default=0)
    call_count = Column(Integer, default=0)
    last_updated = Column(DateTime(timezone=True), default=_utcnow)
