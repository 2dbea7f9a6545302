"""Idle reminders.

Every tick, each online agent with reminders enabled and a known last call
end gets a reminder when its idle minutes reach a multiple of its interval
(5, 10, 15, ... for a 5 minute interval). A bounded set of
``(agent_code, minutes_idle)`` marks keeps a reminder from firing twice for
the same minute. Manual reminders from the dashboard bypass all of this.
"""

import asyncio
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel

from call_analytics.agent_registry import AgentRegistry
from call_analytics.logging_config import get_logger
from call_analytics.metrics import reminders_sent_total, reminders_undelivered_total
from call_analytics.models import AgentStatus
from call_analytics.presence_store import PresenceStore
from call_analytics.timeutil import Clock

logger = get_logger(__name__)


class ReminderMarks:
    """Recency set of fired reminders; the oldest entries go first once full."""

    def __init__(self, capacity: int = 100, evict_count: int = 20):
        self.capacity = capacity
        self.evict_count = evict_count
        self._marks: OrderedDict[tuple[str, int], None] = OrderedDict()

    def add(self, agent_code: str, minutes_idle: int) -> bool:
        """Record a mark. False when it was already there."""
        key = (agent_code, minutes_idle)
        if key in self._marks:
            return False

        self._marks[key] = None
        if len(self._marks) > self.capacity:
            for _ in range(min(self.evict_count, len(self._marks))):
                self._marks.popitem(last=False)
        return True

    def discard_agent(self, agent_code: str) -> None:
        for key in [key for key in self._marks if key[0] == agent_code]:
            del self._marks[key]

    def __contains__(self, key: tuple[str, int]) -> bool:
        return key in self._marks

    def __len__(self) -> int:
        return len(self._marks)


class DueReminder(BaseModel):
    agent_code: str
    agent_name: str
    minutes_idle: int
    interval_minutes: int


def should_fire(minutes_idle: int, interval_minutes: int) -> bool:
    return minutes_idle >= interval_minutes and minutes_idle % interval_minutes == 0


class ReminderScheduler:

    def __init__(
        self,
        registry: AgentRegistry,
        presence: PresenceStore,
        connection_for: Callable[[str], Optional[str]],
        transport,
        tick_seconds: float = 60.0,
        clock: Optional[Clock] = None,
        marks: Optional[ReminderMarks] = None,
    ):
        self.registry = registry
        self.presence = presence
        self.connection_for = connection_for
        self.transport = transport
        self.tick_seconds = tick_seconds
        self.clock = clock or Clock()
        self.marks = marks or ReminderMarks()

        # last_call_end each agent's marks belong to
        self._anchors: dict[str, datetime] = {}
        self._task: Optional[asyncio.Task] = None

    def due_reminders(self, now: Optional[datetime] = None) -> list[DueReminder]:
        """Work out which automatic reminders fire now, and mark them as fired."""
        now = now or self.clock.now()
        due = []

        for agent in self.registry.enabled_reminder_agents():
            fact = self.presence.get(agent.code)
            if fact is None or fact.status != AgentStatus.ONLINE or fact.current_call is not None:
                continue
            if fact.last_call_end is None:
                continue

            if self._anchors.get(agent.code) != fact.last_call_end:
                # New idle interval: minute counts start over.
                self.marks.discard_agent(agent.code)
                self._anchors[agent.code] = fact.last_call_end

            minutes_idle = int((now - fact.last_call_end).total_seconds() // 60)
            interval = agent.reminder_config.interval_minutes
            if not should_fire(minutes_idle, interval):
                continue
            if not self.marks.add(agent.code, minutes_idle):
                continue

            due.append(DueReminder(
                agent_code=agent.code,
                agent_name=fact.agent_name or agent.name,
                minutes_idle=minutes_idle,
                interval_minutes=interval,
            ))

        return due

    async def tick(self) -> list[DueReminder]:
        """One sweep: fire due reminders. Returns the reminders that were due."""
        due = self.due_reminders()
        for reminder in due:
            await self._deliver(reminder)
        return due

    async def _deliver(self, reminder: DueReminder) -> bool:
        payload = {
            "action": "show_reminder",
            "message": (
                f"It's been {reminder.minutes_idle} minutes since your last call. "
                "Time to make another call!"
            ),
            "idleTime": f"{reminder.minutes_idle} minutes",
            "intervalMinutes": reminder.interval_minutes,
            "agentCode": reminder.agent_code,
            "agentName": reminder.agent_name,
            "timestamp": self.clock.now().isoformat(),
        }
        return await self._send(reminder.agent_code, payload, kind="automatic", minutes_idle=reminder.minutes_idle)

    async def send_manual(self, agent_code: str, agent_name: Optional[str] = None) -> bool:
        """Operator-initiated reminder. No interval check, no dedup, no marks."""
        agent = self.registry.get(agent_code)
        payload = {
            "action": "show_reminder",
            "message": "Manual reminder: Time to make another call!",
            "idleTime": "Manual trigger",
            "intervalMinutes": 0,
            "agentCode": agent_code,
            "agentName": agent_name or (agent.name if agent else "Unknown"),
            "timestamp": self.clock.now().isoformat(),
            "isManual": True,
        }
        return await self._send(agent_code, payload, kind="manual")

    async def _send(self, agent_code: str, payload: dict, kind: str, **log_fields) -> bool:
        connection_id = self.connection_for(agent_code)
        if connection_id is None:
            reminders_undelivered_total.labels(kind=kind).inc()
            logger.warning("reminder_not_delivered", agent_code=agent_code, kind=kind, reason="not_connected", **log_fields)
            return False

        sent = await self.transport.send(connection_id, "reminder_trigger", payload)
        if sent:
            reminders_sent_total.labels(kind=kind).inc()
            logger.info("reminder_sent", agent_code=agent_code, kind=kind, **log_fields)
        else:
            reminders_undelivered_total.labels(kind=kind).inc()
            logger.warning("reminder_not_delivered", agent_code=agent_code, kind=kind, reason="send_failed", **log_fields)
        return sent

    # -- timer --------------------------------------------------------------

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name="reminder-scheduler")
        logger.info("reminder_scheduler_started", tick_seconds=self.tick_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("reminder_scheduler_stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            try:
                await self.tick()
            except Exception as e:
                logger.error("reminder_tick_failed", error=str(e), exc_info=True)
