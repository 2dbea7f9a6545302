"""Clock and time helpers shared by the presence engine."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


class Clock:
    """Wall clock. Engines take one so tests can drive time by hand."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def reporting_date(moment: datetime, tz_name: str) -> date:
    """Calendar date of ``moment`` in the reporting timezone."""
    return moment.astimezone(ZoneInfo(tz_name)).date()


def format_duration(seconds: int) -> str:
    """Render seconds as ``1h 2m 3s``, ``2m 3s`` or ``3s``."""
    seconds = max(int(seconds or 0), 0)
    hours, remainder = divmod(seconds, 3600)
    minutes, remaining_seconds = divmod(remainder, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {remaining_seconds}s"
    if minutes > 0:
        return f"{minutes}m {remaining_seconds}s"
    return f"{remaining_seconds}s"
