"""
Presence engine: the single owner of live agent state.

Inbound socket events are validated, run through the session state machine,
and the effects it returns are applied afterwards: replies go to the sender,
agent and talk-time rows are persisted in the background, analytics records
go through the delivery queue, and every state change ends with one dashboard
broadcast. The delivery queue worker and the reminder loop are started and
stopped here.
"""

import asyncio
from typing import Any, Callable, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from call_analytics.agent_registry import AgentRegistry
from call_analytics.broadcaster import DashboardBroadcaster
from call_analytics.config import config
from call_analytics.database import SessionLocal
from call_analytics.delivery_queue import DeliveryQueue
from call_analytics.logging_config import get_logger
from call_analytics.metrics import socket_events_total
from call_analytics.models import (
    Agent,
    AgentOfflineEvent,
    AgentOnlineEvent,
    AgentStatus,
    BulkReminderSetting,
    CallEndedEvent,
    CallStartedEvent,
    DailyTalkTime,
    ManualReminderRequest,
    ReminderAcknowledgedEvent,
    Snapshot,
)
from call_analytics.presence_store import PresenceStore
from call_analytics.reminders import ReminderScheduler
from call_analytics.services import AgentService, DailyTalkTimeService
from call_analytics.state_machine import (
    BroadcastSnapshot,
    Effect,
    EnqueueRecord,
    PersistAgent,
    PersistTalkTime,
    Reply,
    SessionStateMachine,
)
from call_analytics.talk_time import DailyTalkTimeStore
from call_analytics.timeutil import Clock

logger = get_logger(__name__)


def describe_validation_error(event: str, exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "data"
    return f"Invalid {event} payload: {location}: {first.get('msg', 'invalid value')}"


class PresenceEngine:

    def __init__(
        self,
        transport,
        sink,
        registry: Optional[AgentRegistry] = None,
        presence: Optional[PresenceStore] = None,
        talk_time: Optional[DailyTalkTimeStore] = None,
        clock: Optional[Clock] = None,
        session_factory: Optional[Callable[[], Session]] = SessionLocal,
        idle_threshold_seconds: int = 30,
        tz_name: str = "UTC",
        reminder_tick_seconds: float = 60.0,
        queue_batch_size: int = 5,
        queue_backoff_seconds: float = 5.0,
        queue_poll_seconds: float = 2.0,
    ):
        """
        Args:
            transport: anything with ``send(connection_id, event, data)`` and
                ``broadcast(event, data)`` coroutines
            sink: analytics sink behind the delivery queue
            session_factory: SQLAlchemy session factory for agent and talk
                time rows; None keeps the engine purely in memory
        """
        self.clock = clock or Clock()
        self.transport = transport
        self.sink = sink
        self.session_factory = session_factory
        self.tz_name = tz_name

        self.registry = registry or AgentRegistry(clock=self.clock)
        self.presence = presence or PresenceStore(clock=self.clock)
        self.talk_time = talk_time or DailyTalkTimeStore(tz_name, clock=self.clock)

        self.state_machine = SessionStateMachine(
            self.registry,
            self.presence,
            self.talk_time,
            idle_threshold_seconds=idle_threshold_seconds,
            tz_name=tz_name,
            clock=self.clock,
        )
        self.queue = DeliveryQueue(
            sink,
            batch_size=queue_batch_size,
            backoff_seconds=queue_backoff_seconds,
            poll_interval=queue_poll_seconds,
            clock=self.clock,
        )
        self.broadcaster = DashboardBroadcaster(
            self.registry, self.presence, self.talk_time, transport, clock=self.clock,
        )
        self.reminders = ReminderScheduler(
            self.registry,
            self.presence,
            self.state_machine.connection_for,
            transport,
            tick_seconds=reminder_tick_seconds,
            clock=self.clock,
        )

        self._background: set[asyncio.Task] = set()
        # Row writes happen one at a time, in the order transitions produced them.
        self._persist_lock = asyncio.Lock()
        self._transitions = {
            "agent_online": (AgentOnlineEvent, self.state_machine.agent_online),
            "agent_offline": (AgentOfflineEvent, self.state_machine.agent_offline),
            "call_started": (CallStartedEvent, self.state_machine.call_started),
            "call_ended": (CallEndedEvent, self.state_machine.call_ended),
        }

    @classmethod
    def from_config(cls, transport, sink, **kwargs) -> "PresenceEngine":
        clock = kwargs.pop("clock", None) or Clock()
        return cls(
            transport,
            sink,
            registry=AgentRegistry(config.DEFAULT_REMINDER_INTERVAL_MINUTES, clock=clock),
            presence=PresenceStore(config.PRESENCE_TTL_SECONDS, clock=clock),
            talk_time=DailyTalkTimeStore(config.REPORT_TIMEZONE, clock=clock),
            clock=clock,
            idle_threshold_seconds=config.IDLE_THRESHOLD_SECONDS,
            tz_name=config.REPORT_TIMEZONE,
            reminder_tick_seconds=config.REMINDER_TICK_SECONDS,
            queue_batch_size=config.QUEUE_BATCH_SIZE,
            queue_backoff_seconds=config.QUEUE_BACKOFF_SECONDS,
            queue_poll_seconds=config.QUEUE_POLL_SECONDS,
            **kwargs,
        )

    # -- lifecycle ----------------------------------------------------------

    def load_from_database(self) -> None:
        """Seed the registry and today's talk time from SQL."""
        if self.session_factory is None:
            return

        db = self.session_factory()
        try:
            agents = []
            for row in AgentService.list_agents(db):
                agent = AgentService.to_domain(row)
                if agent.status in (AgentStatus.ONLINE, AgentStatus.ON_CALL):
                    # Nobody is connected right after a restart.
                    agent = agent.model_copy(update={"status": AgentStatus.OFFLINE})
                agents.append(agent)
            today = DailyTalkTimeService.for_date(db, self.talk_time.current_date())
        finally:
            db.close()

        self.registry.load(agents)
        self.talk_time.load(today)
        logger.info("engine_state_loaded", agents=len(agents), talk_time_entries=len(today))

    def start(self) -> None:
        self.queue.start()
        self.reminders.start()
        logger.info("presence_engine_started")

    async def stop(self) -> None:
        await self.reminders.stop()
        await self.flush()
        await self.queue.stop()
        close = getattr(self.sink, "aclose", None)
        if close is not None:
            await close()
        logger.info("presence_engine_stopped", queue_size=len(self.queue.pending()))

    async def flush(self) -> None:
        """Wait for every background persistence task started so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -- socket events ------------------------------------------------------

    async def connect(self, connection_id: str) -> None:
        """A client connected: it gets the current dashboard right away."""
        await self.broadcaster.send_to(connection_id)

    async def disconnect(self, connection_id: str) -> None:
        effects = self.state_machine.disconnect(connection_id)
        await self._apply(None, effects)

    async def handle(self, connection_id: str, event: str, data: Any) -> None:
        """Dispatch one inbound event. Errors are reported to the sender only."""
        try:
            if event in self._transitions:
                model, transition = self._transitions[event]
                payload = model.model_validate(data)
                await self._apply(connection_id, transition(connection_id, payload))
            elif event == "send_manual_reminder":
                await self._manual_reminder(connection_id, ManualReminderRequest.model_validate(data))
            elif event == "reminder_acknowledged":
                await self._reminder_acknowledged(connection_id, ReminderAcknowledgedEvent.model_validate(data or {}))
            elif event == "ping":
                await self.transport.send(connection_id, "pong", {"timestamp": self.clock.now().isoformat()})
            else:
                socket_events_total.labels(event="unknown", outcome="rejected").inc()
                logger.warning("unknown_socket_event", socket_event=event, connection_id=connection_id)
                await self.transport.send(connection_id, "error", {"message": f"Unknown event: {event}"})
                return
        except ValidationError as e:
            socket_events_total.labels(event=event, outcome="invalid").inc()
            message = describe_validation_error(event, e)
            logger.warning("socket_event_rejected", socket_event=event, connection_id=connection_id, reason=message)
            await self.transport.send(connection_id, "error", {"message": message})
            return
        except Exception as e:
            socket_events_total.labels(event=event, outcome="error").inc()
            logger.error("socket_event_failed", socket_event=event, connection_id=connection_id, error=str(e), exc_info=True)
            await self.transport.send(connection_id, "error", {"message": f"Failed to process {event}"})
            return

        socket_events_total.labels(event=event, outcome="ok").inc()

    async def _manual_reminder(self, connection_id: str, request: ManualReminderRequest) -> None:
        success = await self.reminders.send_manual(request.agent_code, request.agent_name)
        response = {
            "success": success,
            "agentCode": request.agent_code,
            "timestamp": self.clock.now().isoformat(),
        }
        if not success:
            response["error"] = "Agent not connected"
        await self.transport.send(connection_id, "manual_reminder_response", response)

    async def _reminder_acknowledged(self, connection_id: str, ack: ReminderAcknowledgedEvent) -> None:
        agent_code = ack.agent_code or self.state_machine.agent_for(connection_id)
        logger.info("reminder_acknowledged", agent_code=agent_code, action=ack.action, client_timestamp=ack.timestamp)
        await self.transport.send(connection_id, "reminder_ack_received", {
            "agentCode": agent_code,
            "timestamp": self.clock.now().isoformat(),
        })

    # -- effects ------------------------------------------------------------

    async def _apply(self, connection_id: Optional[str], effects: list[Effect]) -> None:
        broadcast = False
        for effect in effects:
            if isinstance(effect, Reply):
                if connection_id is not None:
                    await self.transport.send(connection_id, effect.event, effect.data)
            elif isinstance(effect, PersistAgent):
                self._spawn(self._persist_agent(effect.agent))
            elif isinstance(effect, PersistTalkTime):
                self._spawn(self._persist_talk_time(effect.entry))
            elif isinstance(effect, EnqueueRecord):
                self.queue.enqueue(effect.record)
            elif isinstance(effect, BroadcastSnapshot):
                broadcast = True

        if broadcast:
            await self.broadcaster.broadcast()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _persist_agent(self, agent: Agent) -> None:
        if self.session_factory is None:
            return
        try:
            async with self._persist_lock:
                await asyncio.to_thread(self._run_in_session, AgentService.upsert, agent)
        except Exception as e:
            logger.error("agent_persist_failed", agent_code=agent.code, error=str(e))

    async def _persist_talk_time(self, entry: DailyTalkTime) -> None:
        if self.session_factory is None:
            return
        try:
            async with self._persist_lock:
                await asyncio.to_thread(self._run_in_session, DailyTalkTimeService.upsert, entry)
        except Exception as e:
            logger.error(
                "daily_talk_time_persist_failed",
                agent_code=entry.agent_code,
                date=entry.date.isoformat(),
                error=str(e),
            )

    def _run_in_session(self, operation, item) -> None:
        db = self.session_factory()
        try:
            operation(db, item)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # -- management ---------------------------------------------------------

    def snapshot(self) -> Snapshot:
        return self.broadcaster.snapshot()

    def set_reminder_config(self, agent_code: str, interval_minutes: int, enabled: bool) -> Optional[Agent]:
        agent = self.registry.set_reminder_config(agent_code, interval_minutes, enabled)
        if agent is None:
            return None

        self._spawn(self._persist_agent(agent))
        logger.info(
            "reminder_settings_updated",
            agent_code=agent_code,
            interval_minutes=interval_minutes,
            enabled=enabled,
        )
        return agent

    def bulk_set_reminder_config(self, settings: list[BulkReminderSetting]) -> dict:
        updated, not_found = [], []
        for setting in settings:
            agent = self.set_reminder_config(
                setting.agent_code, setting.reminder_interval_minutes, setting.reminders_enabled,
            )
            if agent is None:
                not_found.append(setting.agent_code)
            else:
                updated.append(agent.code)
        return {"updated": updated, "notFound": not_found}

    async def remove_agent(self, agent_code: str) -> Optional[Agent]:
        effects = self.state_machine.remove_agent(agent_code)
        if effects is None:
            return None
        await self._apply(None, effects)
        return self.registry.get(agent_code)

    async def restore_agent(self, agent_code: str) -> Optional[Agent]:
        effects = self.state_machine.restore_agent(agent_code)
        if effects is None:
            return None
        await self._apply(None, effects)
        return self.registry.get(agent_code)

    def stats(self) -> dict:
        snapshot = self.snapshot()
        return {
            "totalAgents": len(self.registry.active()),
            "removedAgents": self.registry.count() - len(self.registry.active()),
            "connectedAgents": self.state_machine.connected_agents(),
            "agentsOnCall": len(snapshot.agents_on_call),
            "agentsIdle": len(snapshot.agents_idle_time),
            "totalTalkTimeToday": sum(entry.total_talk_time for entry in snapshot.agents_talk_time),
            "totalCallsToday": sum(entry.call_count for entry in snapshot.agents_talk_time),
            "reportingDate": self.talk_time.current_date().isoformat(),
            "queue": self.queue.get_status(),
            "idleTracking": self.state_machine.idle_tracking_status(),
        }
