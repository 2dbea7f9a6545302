"""Data models for the Call Analytics server.

Wire payloads use camelCase keys (``agentCode``), Python code uses snake_case.
Every model accepts either spelling on input and dumps camelCase with
``model_dump(by_alias=True)``.
"""

import enum
import datetime as dt
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool
from pydantic.alias_generators import to_camel


class AgentStatus(str, enum.Enum):
    """Agent status enum."""
    ONLINE = "online"
    OFFLINE = "offline"
    ON_CALL = "on_call"
    REMOVED = "removed"


class CallType(str, enum.Enum):
    """Call direction reported by the agent's device."""
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "CallType":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, frozen=True)


# ---------------------------------------------------------------------------
# Domain
# ---------------------------------------------------------------------------


class ReminderConfig(FrozenCamelModel):
    """Per-agent idle reminder settings."""
    enabled: bool = True
    interval_minutes: int = Field(default=5, gt=0)


class Agent(CamelModel):
    """A call-center representative, identified by a unique code."""
    code: str
    name: str
    status: AgentStatus = AgentStatus.OFFLINE
    reminder_config: ReminderConfig = Field(default_factory=ReminderConfig)
    created_at: dt.datetime
    updated_at: dt.datetime
    last_seen: Optional[dt.datetime] = None


class CallRef(FrozenCamelModel):
    """The call an agent is currently on."""
    phone_number: str = "Unknown"
    contact_name: Optional[str] = None
    call_type: CallType = CallType.UNKNOWN
    start_time: dt.datetime


class PresenceFact(FrozenCamelModel):
    """Ephemeral facts about a connected agent."""
    agent_code: str
    agent_name: Optional[str] = None
    status: AgentStatus = AgentStatus.OFFLINE
    current_call: Optional[CallRef] = None
    last_call_end: Optional[dt.datetime] = None
    socket_ref: Optional[str] = None
    updated_at: Optional[dt.datetime] = None


class IdleSession(FrozenCamelModel):
    """An idle interval between a call ending and the next call starting."""
    record_type: ClassVar[str] = "idle_session"

    agent_code: str
    agent_name: str
    start_time: dt.datetime
    end_time: dt.datetime
    duration_seconds: int
    date: dt.date


class CallRecord(FrozenCamelModel):
    """A completed call, appended to call history."""
    record_type: ClassVar[str] = "call"

    agent_code: str
    agent_name: Optional[str] = None
    phone_number: str = "Unknown"
    contact_name: Optional[str] = None
    call_type: str = CallType.UNKNOWN.value
    talk_duration: int = 0
    total_duration: int = 0
    call_date: dt.date
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class DailyTalkTime(CamelModel):
    """Talk time of one agent on one local reporting day."""
    agent_code: str
    agent_name: Optional[str] = None
    date: dt.date
    total_talk_time_seconds: int = 0
    call_count: int = 0
    last_updated: Optional[dt.datetime] = None


# ---------------------------------------------------------------------------
# Dashboard snapshot
# ---------------------------------------------------------------------------


class TalkTimeEntry(CamelModel):
    agent_code: str
    agent_name: Optional[str] = None
    total_talk_time: int
    formatted_talk_time: str
    call_count: int
    last_updated: Optional[dt.datetime] = None


class OnCallEntry(CamelModel):
    agent_code: str
    agent_name: str
    phone_number: str
    call_start_time: dt.datetime
    call_type: CallType


class IdleEntry(CamelModel):
    agent_code: str
    agent_name: str
    minutes_since_last_call: int
    last_call_end: dt.datetime


class Snapshot(CamelModel):
    """Full read-model pushed to dashboard observers."""
    agents_talk_time: list[TalkTimeEntry] = Field(default_factory=list)
    agents_on_call: list[OnCallEntry] = Field(default_factory=list)
    agents_idle_time: list[IdleEntry] = Field(default_factory=list)
    last_updated: dt.datetime


# ---------------------------------------------------------------------------
# Inbound socket events
# ---------------------------------------------------------------------------


class AgentOnlineEvent(CamelModel):
    agent_code: str = Field(min_length=1)
    agent_name: str = Field(min_length=1)


class AgentOfflineEvent(CamelModel):
    agent_code: Optional[str] = None


class CallStartedEvent(CamelModel):
    agent_code: str = Field(min_length=1)
    agent_name: Optional[str] = None
    phone_number: Optional[str] = None
    call_type: Optional[str] = None


class CallData(CamelModel):
    phone_number: Optional[str] = None
    contact_name: Optional[str] = None
    call_type: Optional[str] = None
    talk_duration: int = Field(default=0, ge=0)
    total_duration: int = Field(default=0, ge=0)
    call_date: Optional[dt.date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    agent_name: Optional[str] = None


class CallEndedEvent(CamelModel):
    agent_code: str = Field(min_length=1)
    call_data: CallData
    today_total_talk_time: Optional[int] = Field(default=None, ge=0)


class ManualReminderRequest(CamelModel):
    agent_code: str = Field(min_length=1)
    agent_name: Optional[str] = None


class ReminderAcknowledgedEvent(CamelModel):
    agent_code: Optional[str] = None
    timestamp: Optional[str] = None
    action: Optional[str] = None


# ---------------------------------------------------------------------------
# HTTP request bodies
# ---------------------------------------------------------------------------


class ReminderSettingsUpdate(BaseModel):
    """Request model for POST /api/reminder-settings/{agent_code}."""
    reminder_interval_minutes: int = Field(ge=1)
    reminders_enabled: StrictBool


class BulkReminderSetting(ReminderSettingsUpdate):
    model_config = ConfigDict(populate_by_name=True)

    agent_code: str = Field(alias="agentCode", min_length=1)


class BulkReminderSettingsRequest(BaseModel):
    """Request model for POST /api/reminder-settings-bulk."""
    settings: list[BulkReminderSetting]
