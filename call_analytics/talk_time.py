"""Per-day talk time totals.

The agent's device is the source of truth for its own running total: every
``call_ended`` carries the cumulative talk time for today and the store keeps
the latest value. Days are local to the reporting timezone; only the current
day is held in memory and a new day starts empty.
"""

from datetime import date, datetime
from typing import Optional

from call_analytics.models import DailyTalkTime
from call_analytics.timeutil import Clock, reporting_date


class DailyTalkTimeStore:

    def __init__(self, tz_name: str, clock: Optional[Clock] = None):
        self._tz_name = tz_name
        self._clock = clock or Clock()
        self._day: Optional[date] = None
        self._entries: dict[str, DailyTalkTime] = {}

    def current_date(self, now: Optional[datetime] = None) -> date:
        return reporting_date(now or self._clock.now(), self._tz_name)

    def load(self, entries: list[DailyTalkTime], now: Optional[datetime] = None) -> None:
        """Seed today's totals (e.g. from the database after a restart)."""
        today = self.roll_over(now)
        for entry in entries:
            if entry.date == today:
                self._entries[entry.agent_code] = entry

    def record(self, agent_code: str, agent_name: Optional[str], total_seconds: Optional[int],
               now: Optional[datetime] = None) -> DailyTalkTime:
        """Count one finished call and, when given, take the device's cumulative total."""
        now = now or self._clock.now()
        today = self.roll_over(now)
        previous = self._entries.get(agent_code)

        entry = DailyTalkTime(
            agent_code=agent_code,
            agent_name=agent_name or (previous.agent_name if previous else None),
            date=today,
            total_talk_time_seconds=(
                int(total_seconds) if total_seconds is not None
                else (previous.total_talk_time_seconds if previous else 0)
            ),
            call_count=(previous.call_count if previous else 0) + 1,
            last_updated=now,
        )
        self._entries[agent_code] = entry
        return entry

    def get(self, agent_code: str, now: Optional[datetime] = None) -> Optional[DailyTalkTime]:
        self.roll_over(now)
        return self._entries.get(agent_code)

    def today(self, now: Optional[datetime] = None) -> list[DailyTalkTime]:
        return self.entries_for(self.roll_over(now))

    def entries_for(self, day: date) -> list[DailyTalkTime]:
        """Totals held for `day`, by agent code. Never starts a new day."""
        if self._day != day:
            return []
        return sorted(self._entries.values(), key=lambda entry: entry.agent_code)

    def roll_over(self, now: Optional[datetime] = None) -> date:
        """Start a new day if local midnight has passed. Returns the current day."""
        today = self.current_date(now)
        if self._day != today:
            # Local midnight passed: yesterday's totals live on in the database only.
            self._day = today
            self._entries = {}
        return today
