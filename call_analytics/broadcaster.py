"""Dashboard read model.

The snapshot is recomputed from scratch on every state change. Agent counts
are in the tens, so a full rebuild is cheaper than keeping an incremental
model correct.
"""

from datetime import datetime
from typing import Optional

from call_analytics.agent_registry import AgentRegistry
from call_analytics.logging_config import get_logger
from call_analytics.metrics import dashboard_broadcasts_total
from call_analytics.models import AgentStatus, IdleEntry, OnCallEntry, Snapshot, TalkTimeEntry
from call_analytics.presence_store import PresenceStore
from call_analytics.talk_time import DailyTalkTimeStore
from call_analytics.timeutil import Clock, format_duration

logger = get_logger(__name__)


def build_snapshot(
    registry: AgentRegistry,
    presence: PresenceStore,
    talk_time: DailyTalkTimeStore,
    now: datetime,
) -> Snapshot:
    """
    Assemble the dashboard snapshot. Reads only; the talk time store is not
    rolled over here, so a store still holding yesterday shows no talk time.

    On-call always wins: an agent with a CallRef never shows up as idle.
    Removed agents are left out of every list.
    """
    removed = {agent.code for agent in registry.all() if agent.status == AgentStatus.REMOVED}
    facts = presence.get_all()

    agents_talk_time = [
        TalkTimeEntry(
            agent_code=entry.agent_code,
            agent_name=entry.agent_name,
            total_talk_time=entry.total_talk_time_seconds,
            formatted_talk_time=format_duration(entry.total_talk_time_seconds),
            call_count=entry.call_count,
            last_updated=entry.last_updated,
        )
        for entry in talk_time.entries_for(talk_time.current_date(now))
        if entry.agent_code not in removed
    ]

    agents_on_call = []
    on_call_codes = set()
    for code, fact in sorted(facts.items()):
        if code in removed or fact.status != AgentStatus.ON_CALL or fact.current_call is None:
            continue
        on_call_codes.add(code)
        agents_on_call.append(OnCallEntry(
            agent_code=code,
            agent_name=fact.agent_name or "Unknown",
            phone_number=fact.current_call.phone_number,
            call_start_time=fact.current_call.start_time,
            call_type=fact.current_call.call_type,
        ))

    agents_idle_time = []
    for agent in registry.active():
        if agent.code in on_call_codes:
            continue
        fact = facts.get(agent.code)
        if fact is None or fact.status != AgentStatus.ONLINE or fact.current_call is not None:
            continue
        if fact.last_call_end is None:
            continue

        minutes = int((now - fact.last_call_end).total_seconds() // 60)
        if minutes < 0:
            continue
        agents_idle_time.append(IdleEntry(
            agent_code=agent.code,
            agent_name=fact.agent_name or agent.name,
            minutes_since_last_call=minutes,
            last_call_end=fact.last_call_end,
        ))

    agents_idle_time.sort(key=lambda entry: entry.minutes_since_last_call, reverse=True)

    return Snapshot(
        agents_talk_time=agents_talk_time,
        agents_on_call=agents_on_call,
        agents_idle_time=agents_idle_time,
        last_updated=now,
    )


class DashboardBroadcaster:
    """Pushes ``dashboard_update`` to every open connection."""

    def __init__(
        self,
        registry: AgentRegistry,
        presence: PresenceStore,
        talk_time: DailyTalkTimeStore,
        transport,
        clock: Optional[Clock] = None,
    ):
        self.registry = registry
        self.presence = presence
        self.talk_time = talk_time
        self.transport = transport
        self.clock = clock or Clock()

    def snapshot(self) -> Snapshot:
        now = self.clock.now()
        self.talk_time.roll_over(now)
        return build_snapshot(self.registry, self.presence, self.talk_time, now)

    async def broadcast(self) -> Snapshot:
        snapshot = self.snapshot()
        await self.transport.broadcast("dashboard_update", snapshot.to_wire())
        dashboard_broadcasts_total.inc()
        logger.debug(
            "dashboard_broadcast",
            talk_time=len(snapshot.agents_talk_time),
            on_call=len(snapshot.agents_on_call),
            idle=len(snapshot.agents_idle_time),
        )
        return snapshot

    async def send_to(self, connection_id: str) -> bool:
        """Initial snapshot for a freshly opened connection."""
        return await self.transport.send(connection_id, "dashboard_update", self.snapshot().to_wire())
