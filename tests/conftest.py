import os
import tempfile
from datetime import datetime, timedelta, timezone

# Point the database at a throwaway file before anything imports call_analytics.database.
os.environ.setdefault("DATABASE_URL", f"sqlite:///{tempfile.mkdtemp(prefix='call-analytics-tests-')}/test.db")
os.environ.setdefault("ANALYTICS_SINK_URL", "")

import pytest


class FakeClock:
    """Hand-driven clock. Starts at 2024-01-15 06:00 UTC (11:30 in Asia/Kolkata)."""

    def __init__(self, start=None):
        self.current = start or datetime(2024, 1, 15, 6, 0, 0, tzinfo=timezone.utc)

    def now(self):
        return self.current

    def advance(self, seconds=0, minutes=0, hours=0):
        self.current = self.current + timedelta(seconds=seconds, minutes=minutes, hours=hours)
        return self.current


class RecordingTransport:
    """Captures every frame instead of writing to sockets."""

    def __init__(self):
        self.sent = []
        self.broadcasts = []
        self.closed = set()

    async def send(self, connection_id, event, data):
        if connection_id in self.closed:
            return False
        self.sent.append((connection_id, event, data))
        return True

    async def broadcast(self, event, data):
        self.broadcasts.append((event, data))
        return 1

    def events(self, connection_id, event=None):
        return [
            data for conn, name, data in self.sent
            if conn == connection_id and (event is None or name == event)
        ]

    def last_snapshot(self):
        assert self.broadcasts, "no dashboard_update was broadcast"
        event, data = self.broadcasts[-1]
        assert event == "dashboard_update"
        return data


class FlakySink:
    """Analytics sink that fails on demand."""

    def __init__(self):
        self.written = []
        self.attempts = 0
        self.fail_on = None
        self.down = False

    async def write(self, record):
        self.attempts += 1
        if self.down or (self.fail_on is not None and record == self.fail_on):
            raise ConnectionError("analytics sink unavailable")
        self.written.append(record)

    def recover(self):
        self.fail_on = None
        self.down = False


@pytest.fixture(autouse=True)
def _safe_test_config(monkeypatch):
    """Force deterministic, offline-safe config for tests.

    The repo loads .env on import; these overrides keep the external
    analytics API disabled and the background loops quiet.
    """
    from call_analytics.config import config, Config

    overrides = {
        "ANALYTICS_SINK_URL": "",
        "ANALYTICS_SINK_TOKEN": "",
        "REPORT_TIMEZONE": "Asia/Kolkata",
        "IDLE_THRESHOLD_SECONDS": 30,
        "DEFAULT_REMINDER_INTERVAL_MINUTES": 5,
        # Reminder sweeps are driven by hand in tests.
        "REMINDER_TICK_SECONDS": 3600,
        "QUEUE_BATCH_SIZE": 5,
        "QUEUE_BACKOFF_SECONDS": 5,
        "QUEUE_POLL_SECONDS": 0.05,
        "CORS_ORIGINS": "*",
    }
    for name, value in overrides.items():
        monkeypatch.setattr(Config, name, value, raising=False)
        # Keep the instance in sync for any code that reads instance attributes directly.
        monkeypatch.setattr(config, name, value, raising=False)

    return config


@pytest.fixture(autouse=True)
def _fresh_database():
    """Every test starts from empty tables."""
    from call_analytics.database import Base, engine, init_db

    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def sink():
    return FlakySink()


@pytest.fixture
def db():
    from call_analytics.database import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
