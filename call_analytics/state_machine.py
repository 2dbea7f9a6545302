"""Per-agent session state machine.

States: offline -> online -> on_call -> online (idle) -> ... -> offline.

Each transition runs synchronously against the registry, the presence store
and the talk-time store, then returns the effects the caller still has to
carry out (reply to the sender, persist, enqueue, broadcast). Nothing here
awaits, so a transition is never interleaved with another one.
"""

from datetime import datetime, timedelta
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from call_analytics.agent_registry import AgentRegistry
from call_analytics.logging_config import get_logger
from call_analytics.models import (
    Agent,
    AgentOfflineEvent,
    AgentOnlineEvent,
    AgentStatus,
    CallEndedEvent,
    CallRecord,
    CallRef,
    CallStartedEvent,
    CallType,
    DailyTalkTime,
    IdleSession,
)
from call_analytics.presence_store import PresenceStore
from call_analytics.talk_time import DailyTalkTimeStore
from call_analytics.timeutil import Clock, reporting_date

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


class Effect(BaseModel):
    model_config = ConfigDict(frozen=True)


class Reply(Effect):
    """Send an event back to the connection that caused the transition."""
    event: str
    data: dict


class PersistAgent(Effect):
    agent: Agent


class PersistTalkTime(Effect):
    entry: DailyTalkTime


class EnqueueRecord(Effect):
    record: Union[IdleSession, CallRecord]


class BroadcastSnapshot(Effect):
    pass


class SessionStateMachine:

    def __init__(
        self,
        registry: AgentRegistry,
        presence: PresenceStore,
        talk_time: DailyTalkTimeStore,
        idle_threshold_seconds: int = 30,
        tz_name: str = "UTC",
        clock: Optional[Clock] = None,
    ):
        self.registry = registry
        self.presence = presence
        self.talk_time = talk_time
        self.idle_threshold_seconds = idle_threshold_seconds
        self.tz_name = tz_name
        self.clock = clock or Clock()

        self._connection_by_agent: dict[str, str] = {}
        self._agent_by_connection: dict[str, str] = {}
        # Soft state: lost on restart, only feeds idle session history.
        self._idle_since: dict[str, datetime] = {}

    # -- transitions --------------------------------------------------------

    def agent_online(self, connection_id: str, event: AgentOnlineEvent) -> list[Effect]:
        now = self.clock.now()
        code = event.agent_code
        self._bind(code, connection_id)

        fact = self.presence.get(code)
        if fact is not None and fact.status == AgentStatus.ON_CALL:
            # Reconnected mid-call: keep the call, just move the socket.
            status = AgentStatus.ON_CALL
            self.presence.set(code, agent_name=event.agent_name, socket_ref=connection_id)
        else:
            status = AgentStatus.ONLINE
            self.presence.set(
                code,
                agent_name=event.agent_name,
                status=AgentStatus.ONLINE,
                current_call=None,
                socket_ref=connection_id,
            )

        agent = self.registry.upsert(code, event.agent_name, status, now)
        logger.info("agent_online", agent_code=code, connection_id=connection_id, status=status.value)

        return [
            Reply(event="agent_status", data={"status": "connected", "agentCode": code}),
            PersistAgent(agent=agent),
            BroadcastSnapshot(),
        ]

    def agent_offline(self, connection_id: str, event: AgentOfflineEvent) -> list[Effect]:
        code = event.agent_code or self._agent_by_connection.get(connection_id)
        if not code or not (self.registry.exists(code) or self.presence.get(code)):
            logger.warning("agent_offline_unknown_agent", agent_code=code, connection_id=connection_id)
            return []

        return self._go_offline(code, self.clock.now())

    def disconnect(self, connection_id: str) -> list[Effect]:
        code = self._agent_by_connection.pop(connection_id, None)
        if code is None:
            return []

        if self._connection_by_agent.get(code) != connection_id:
            # The agent already re-registered on a newer connection.
            logger.info("stale_connection_closed", agent_code=code, connection_id=connection_id)
            return []

        logger.info("agent_disconnected", agent_code=code, connection_id=connection_id)
        return self._go_offline(code, self.clock.now())

    def call_started(self, connection_id: str, event: CallStartedEvent) -> list[Effect]:
        now = self.clock.now()
        code = event.agent_code
        name = event.agent_name or self.name_for(code)
        effects: list[Effect] = []

        idle_session = self._close_idle_interval(code, name, now)
        if idle_session is not None:
            effects.append(EnqueueRecord(record=idle_session))

        call = CallRef(
            phone_number=event.phone_number or "Unknown",
            call_type=CallType.parse(event.call_type),
            start_time=now,
        )
        # Any previous CallRef is stale at this point and simply replaced.
        self.presence.set(code, agent_name=name, status=AgentStatus.ON_CALL, current_call=call)

        agent = self._set_registry_status(code, AgentStatus.ON_CALL, now)
        if agent is not None:
            effects.append(PersistAgent(agent=agent))

        logger.info(
            "call_started",
            agent_code=code,
            call_type=call.call_type.value,
            phone_number=call.phone_number,
            idle_session_seconds=idle_session.duration_seconds if idle_session else None,
        )

        effects.append(BroadcastSnapshot())
        return effects

    def call_ended(self, connection_id: str, event: CallEndedEvent) -> list[Effect]:
        now = self.clock.now()
        code = event.agent_code
        data = event.call_data
        name = data.agent_name or self.name_for(code)
        effects: list[Effect] = []

        fact = self.presence.get(code)
        if fact is None or fact.current_call is None:
            logger.warning("call_ended_without_call", agent_code=code)

        entry = self.talk_time.record(code, name, event.today_total_talk_time, now)
        effects.append(PersistTalkTime(entry=entry))

        record = CallRecord(
            agent_code=code,
            agent_name=name,
            phone_number=data.phone_number or (fact.current_call.phone_number if fact and fact.current_call else "Unknown"),
            contact_name=data.contact_name,
            call_type=(data.call_type or CallType.UNKNOWN.value).strip().lower(),
            talk_duration=data.talk_duration,
            total_duration=data.total_duration,
            call_date=data.call_date or reporting_date(now, self.tz_name),
            start_time=data.start_time,
            end_time=data.end_time,
        )
        effects.append(EnqueueRecord(record=record))

        self.presence.set(
            code,
            agent_name=name,
            status=AgentStatus.ONLINE,
            current_call=None,
            last_call_end=now,
        )
        self._idle_since[code] = now

        agent = self._set_registry_status(code, AgentStatus.ONLINE, now)
        if agent is not None:
            effects.append(PersistAgent(agent=agent))

        logger.info(
            "call_ended",
            agent_code=code,
            talk_duration=data.talk_duration,
            today_total_talk_time=event.today_total_talk_time,
        )

        effects.append(BroadcastSnapshot())
        return effects

    # -- management ---------------------------------------------------------

    def remove_agent(self, code: str) -> Optional[list[Effect]]:
        """Tombstone an agent and clear its live state. None when unknown."""
        now = self.clock.now()
        agent = self.registry.remove(code, now)
        if agent is None:
            return None

        self._unbind(code)
        self._idle_since.pop(code, None)
        self.presence.set(code, status=AgentStatus.REMOVED, current_call=None, socket_ref=None)

        logger.info("agent_removed", agent_code=code)
        return [PersistAgent(agent=agent), BroadcastSnapshot()]

    def restore_agent(self, code: str) -> Optional[list[Effect]]:
        now = self.clock.now()
        agent = self.registry.restore(code, now)
        if agent is None:
            return None

        self.presence.set(code, status=AgentStatus.OFFLINE, current_call=None)

        logger.info("agent_restored", agent_code=code)
        return [PersistAgent(agent=agent), BroadcastSnapshot()]

    # -- lookups ------------------------------------------------------------

    def connection_for(self, code: str) -> Optional[str]:
        return self._connection_by_agent.get(code)

    def agent_for(self, connection_id: str) -> Optional[str]:
        return self._agent_by_connection.get(connection_id)

    def connected_agents(self) -> int:
        return len(self._connection_by_agent)

    def idle_since(self, code: str) -> Optional[datetime]:
        return self._idle_since.get(code)

    def idle_tracking_status(self) -> dict[str, dict]:
        now = self.clock.now()
        return {
            code: {
                "idleSince": started.isoformat(),
                "minutesIdle": int((now - started).total_seconds() // 60),
            }
            for code, started in self._idle_since.items()
        }

    def name_for(self, code: str) -> str:
        fact = self.presence.get(code)
        if fact is not None and fact.agent_name:
            return fact.agent_name
        agent = self.registry.get(code)
        if agent is not None:
            return agent.name
        return "Unknown"

    # -- internals ----------------------------------------------------------

    def _go_offline(self, code: str, now: datetime) -> list[Effect]:
        self._unbind(code)
        self._idle_since.pop(code, None)
        effects: list[Effect] = []

        fact = self.presence.get(code)
        if fact is None or fact.status != AgentStatus.REMOVED:
            self.presence.set(code, status=AgentStatus.OFFLINE, current_call=None, socket_ref=None)

        agent = self._set_registry_status(code, AgentStatus.OFFLINE, now)
        if agent is not None:
            effects.append(PersistAgent(agent=agent))

        logger.info("agent_offline", agent_code=code)
        effects.append(BroadcastSnapshot())
        return effects

    def _set_registry_status(self, code: str, status: AgentStatus, now: datetime) -> Optional[Agent]:
        agent = self.registry.get(code)
        if agent is None or agent.status == AgentStatus.REMOVED:
            return None
        return self.registry.set_status(code, status, now)

    def _close_idle_interval(self, code: str, name: str, now: datetime) -> Optional[IdleSession]:
        started = self._idle_since.pop(code, None)
        if started is None:
            return None

        duration = int((now - started).total_seconds())
        if duration <= self.idle_threshold_seconds:
            return None

        return IdleSession(
            agent_code=code,
            agent_name=name,
            start_time=started,
            end_time=started + timedelta(seconds=duration),
            duration_seconds=duration,
            date=reporting_date(started, self.tz_name),
        )

    def _bind(self, code: str, connection_id: str) -> None:
        previous = self._connection_by_agent.get(code)
        if previous is not None and previous != connection_id:
            self._agent_by_connection.pop(previous, None)

        other_agent = self._agent_by_connection.get(connection_id)
        if other_agent is not None and other_agent != code:
            self._connection_by_agent.pop(other_agent, None)

        self._connection_by_agent[code] = connection_id
        self._agent_by_connection[connection_id] = code

    def _unbind(self, code: str) -> None:
        connection_id = self._connection_by_agent.pop(code, None)
        if connection_id is not None:
            self._agent_by_connection.pop(connection_id, None)
