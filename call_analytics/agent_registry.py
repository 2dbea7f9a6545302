"""In-memory registry of known agents.

The registry is the authoritative view the engine works against. It is loaded
from the database at startup and every change is handed back to the caller
so it can be persisted after the transition commits.
"""

from datetime import datetime
from typing import Optional

from call_analytics.models import Agent, AgentStatus, ReminderConfig
from call_analytics.timeutil import Clock


class AgentRegistry:
    """Agents keyed by code. Stored agents are replaced, never mutated."""

    def __init__(self, default_interval_minutes: int = 5, clock: Optional[Clock] = None):
        self._agents: dict[str, Agent] = {}
        self._default_reminder = ReminderConfig(enabled=True, interval_minutes=default_interval_minutes)
        self._clock = clock or Clock()

    def load(self, agents: list[Agent]) -> None:
        for agent in agents:
            self._agents[agent.code] = agent

    def upsert(self, code: str, name: str, status: AgentStatus = AgentStatus.ONLINE,
               now: Optional[datetime] = None) -> Agent:
        """Create the agent or refresh its name and status. Reminder settings survive."""
        now = now or self._clock.now()
        existing = self._agents.get(code)

        if existing is None:
            agent = Agent(
                code=code,
                name=name,
                status=status,
                reminder_config=self._default_reminder,
                created_at=now,
                updated_at=now,
                last_seen=now,
            )
        else:
            agent = existing.model_copy(update={
                "name": name,
                "status": status,
                "updated_at": now,
                "last_seen": now,
            })

        self._agents[code] = agent
        return agent

    def set_status(self, code: str, status: AgentStatus, now: Optional[datetime] = None) -> Optional[Agent]:
        existing = self._agents.get(code)
        if existing is None:
            return None

        now = now or self._clock.now()
        agent = existing.model_copy(update={"status": status, "updated_at": now, "last_seen": now})
        self._agents[code] = agent
        return agent

    def set_reminder_config(self, code: str, interval_minutes: int, enabled: bool,
                            now: Optional[datetime] = None) -> Optional[Agent]:
        existing = self._agents.get(code)
        if existing is None:
            return None

        agent = existing.model_copy(update={
            "reminder_config": ReminderConfig(enabled=enabled, interval_minutes=int(interval_minutes)),
            "updated_at": now or self._clock.now(),
        })
        self._agents[code] = agent
        return agent

    def remove(self, code: str, now: Optional[datetime] = None) -> Optional[Agent]:
        """Tombstone an agent. History keeps referring to it."""
        return self.set_status(code, AgentStatus.REMOVED, now)

    def restore(self, code: str, now: Optional[datetime] = None) -> Optional[Agent]:
        """Bring a removed agent back as offline; it goes online when it connects."""
        return self.set_status(code, AgentStatus.OFFLINE, now)

    def get(self, code: str) -> Optional[Agent]:
        return self._agents.get(code)

    def exists(self, code: str) -> bool:
        return code in self._agents

    def all(self) -> list[Agent]:
        return sorted(self._agents.values(), key=lambda agent: agent.code)

    def active(self) -> list[Agent]:
        return [agent for agent in self.all() if agent.status != AgentStatus.REMOVED]

    def enabled_reminder_agents(self) -> list[Agent]:
        return [agent for agent in self.active() if agent.reminder_config.enabled]

    def count(self) -> int:
        return len(self._agents)
