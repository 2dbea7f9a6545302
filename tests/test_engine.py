"""Tests for the presence engine: event dispatch, effects and management."""

import asyncio

import pytest

from call_analytics.database import SessionLocal
from call_analytics.engine import PresenceEngine
from call_analytics.models import AgentStatus, BulkReminderSetting, CallRecord, IdleSession
from call_analytics.services import AgentService, DailyTalkTimeService


@pytest.fixture
def engine(clock, transport, sink):
    return PresenceEngine(transport, sink, clock=clock, session_factory=None, tz_name="Asia/Kolkata")


CALL_ENDED = {
    "agentCode": "A1",
    "callData": {
        "phoneNumber": "+15550001",
        "callType": "outgoing",
        "talkDuration": 120,
        "totalDuration": 125,
        "startTime": "11:30:00",
        "endTime": "11:32:05",
    },
    "todayTotalTalkTime": 125,
}


def test_agent_online_replies_and_broadcasts(engine, transport):
    asyncio.run(engine.handle("c1", "agent_online", {"agentCode": "A1", "agentName": "Alice"}))

    assert transport.events("c1", "agent_status") == [{"status": "connected", "agentCode": "A1"}]
    assert len(transport.broadcasts) == 1
    assert transport.last_snapshot()["agentsOnCall"] == []


def test_malformed_event_errors_to_sender_only(engine, transport):
    asyncio.run(engine.handle("c1", "agent_online", {"agentCode": "A1"}))

    (error,) = transport.events("c1", "error")
    assert "agent_online" in error["message"]
    assert transport.broadcasts == []
    assert engine.registry.count() == 0


def test_non_dict_payload_is_rejected(engine, transport):
    asyncio.run(engine.handle("c1", "call_started", None))

    assert len(transport.events("c1", "error")) == 1


def test_call_ended_requires_call_data(engine, transport):
    asyncio.run(engine.handle("c1", "call_ended", {"agentCode": "A1"}))

    assert len(transport.events("c1", "error")) == 1
    assert engine.queue.pending() == []


def test_unknown_event(engine, transport):
    asyncio.run(engine.handle("c1", "teleport", {}))

    assert transport.events("c1", "error") == [{"message": "Unknown event: teleport"}]


def test_ping_and_reminder_ack(engine, transport, clock):
    asyncio.run(engine.handle("c1", "ping", None))
    asyncio.run(engine.handle("c1", "reminder_acknowledged", {"agentCode": "A1", "action": "dismissed"}))

    assert transport.events("c1", "pong") == [{"timestamp": clock.now().isoformat()}]
    assert transport.events("c1", "reminder_ack_received") == [
        {"agentCode": "A1", "timestamp": clock.now().isoformat()},
    ]


def test_full_call_cycle_enqueues_records(engine, transport, clock):
    async def scenario():
        await engine.handle("c1", "agent_online", {"agentCode": "A1", "agentName": "Alice"})
        await engine.handle("c1", "call_started", {"agentCode": "A1", "phoneNumber": "+15550001", "callType": "outgoing"})
        clock.advance(seconds=125)
        await engine.handle("c1", "call_ended", CALL_ENDED)
        clock.advance(seconds=90)
        await engine.handle("c1", "call_started", {"agentCode": "A1", "phoneNumber": "+15550002", "callType": "incoming"})

    asyncio.run(scenario())

    pending = engine.queue.pending()
    assert [type(record) for record in pending] == [CallRecord, IdleSession]
    assert pending[1].duration_seconds == 90

    snapshot = transport.last_snapshot()
    assert [entry["agentCode"] for entry in snapshot["agentsOnCall"]] == ["A1"]
    assert snapshot["agentsIdleTime"] == []
    assert snapshot["agentsTalkTime"][0]["totalTalkTime"] == 125
    assert len(transport.broadcasts) == 4


def test_queue_delivers_to_sink(engine, sink, clock):
    async def scenario():
        await engine.handle("c1", "agent_online", {"agentCode": "A1", "agentName": "Alice"})
        await engine.handle("c1", "call_ended", CALL_ENDED)
        clock.advance(seconds=60)
        await engine.handle("c1", "call_started", {"agentCode": "A1"})
        return await engine.queue.process()

    assert asyncio.run(scenario()) == 2
    assert [type(record) for record in sink.written] == [CallRecord, IdleSession]


def test_disconnect_takes_agent_offline(engine, transport):
    async def scenario():
        await engine.handle("c1", "agent_online", {"agentCode": "A1", "agentName": "Alice"})
        await engine.handle("c1", "call_ended", CALL_ENDED)
        await engine.disconnect("c1")

    asyncio.run(scenario())

    assert engine.presence.get("A1").status == AgentStatus.OFFLINE
    assert engine.state_machine.connection_for("A1") is None
    snapshot = transport.last_snapshot()
    assert snapshot["agentsOnCall"] == []
    assert snapshot["agentsIdleTime"] == []


def test_connect_sends_current_snapshot(engine, transport):
    asyncio.run(engine.connect("dash"))

    assert len(transport.events("dash", "dashboard_update")) == 1


def test_manual_reminder_over_socket(engine, transport):
    async def scenario():
        await engine.handle("c1", "agent_online", {"agentCode": "A1", "agentName": "Alice"})
        await engine.handle("dash", "send_manual_reminder", {"agentCode": "A1"})
        await engine.handle("dash", "send_manual_reminder", {"agentCode": "B2"})

    asyncio.run(scenario())

    (trigger,) = transport.events("c1", "reminder_trigger")
    assert trigger["isManual"] is True
    assert trigger["agentName"] == "Alice"

    ok, failed = transport.events("dash", "manual_reminder_response")
    assert ok["success"] is True and ok["agentCode"] == "A1"
    assert failed["success"] is False and failed["error"] == "Agent not connected"


def test_remove_and_restore_agent(engine, transport):
    async def scenario():
        await engine.handle("c1", "agent_online", {"agentCode": "A1", "agentName": "Alice"})
        removed = await engine.remove_agent("A1")
        restored = await engine.restore_agent("A1")
        missing = await engine.remove_agent("nobody")
        return removed, restored, missing

    removed, restored, missing = asyncio.run(scenario())

    assert removed.status == AgentStatus.REMOVED
    assert restored.status == AgentStatus.OFFLINE
    assert missing is None
    assert len(transport.broadcasts) == 3


def test_bulk_reminder_settings(engine):
    async def scenario():
        await engine.handle("c1", "agent_online", {"agentCode": "A1", "agentName": "Alice"})
        return engine.bulk_set_reminder_config([
            BulkReminderSetting(agentCode="A1", reminder_interval_minutes=10, reminders_enabled=False),
            BulkReminderSetting(agentCode="B2", reminder_interval_minutes=10, reminders_enabled=True),
        ])

    result = asyncio.run(scenario())

    assert result == {"updated": ["A1"], "notFound": ["B2"]}
    config = engine.registry.get("A1").reminder_config
    assert config.interval_minutes == 10
    assert config.enabled is False


def test_stats(engine, clock):
    async def scenario():
        await engine.handle("c1", "agent_online", {"agentCode": "A1", "agentName": "Alice"})
        await engine.handle("c2", "agent_online", {"agentCode": "B2", "agentName": "Bob"})
        await engine.handle("c1", "call_ended", CALL_ENDED)
        await engine.handle("c2", "call_started", {"agentCode": "B2"})

    asyncio.run(scenario())
    stats = engine.stats()

    assert stats["totalAgents"] == 2
    assert stats["connectedAgents"] == 2
    assert stats["agentsOnCall"] == 1
    assert stats["agentsIdle"] == 1
    assert stats["totalTalkTimeToday"] == 125
    assert stats["totalCallsToday"] == 1
    assert stats["reportingDate"] == "2024-01-15"
    assert stats["queue"]["queueSize"] == 1


def test_persists_agents_and_talk_time(clock, transport, sink):
    engine = PresenceEngine(transport, sink, clock=clock, session_factory=SessionLocal, tz_name="Asia/Kolkata")

    async def scenario():
        await engine.handle("c1", "agent_online", {"agentCode": "A1", "agentName": "Alice"})
        await engine.handle("c1", "call_ended", CALL_ENDED)
        await engine.flush()

    asyncio.run(scenario())

    db = SessionLocal()
    try:
        row = AgentService.get(db, "A1")
        assert row.name == "Alice"
        assert row.status == AgentStatus.ONLINE
        (talk,) = DailyTalkTimeService.for_date(db, engine.talk_time.current_date())
        assert talk.total_talk_time_seconds == 125
    finally:
        db.close()

    # A fresh engine picks the state back up; nobody is connected after a restart.
    reloaded = PresenceEngine(transport, sink, clock=clock, session_factory=SessionLocal, tz_name="Asia/Kolkata")
    reloaded.load_from_database()

    assert reloaded.registry.get("A1").status == AgentStatus.OFFLINE
    assert reloaded.talk_time.get("A1").total_talk_time_seconds == 125


def test_persistence_failure_is_logged_not_raised(clock, transport, sink):
    def broken_session():
        raise RuntimeError("database is down")

    engine = PresenceEngine(transport, sink, clock=clock, session_factory=broken_session)

    async def scenario():
        await engine.handle("c1", "agent_online", {"agentCode": "A1", "agentName": "Alice"})
        await engine.flush()

    asyncio.run(scenario())

    assert engine.registry.get("A1").status == AgentStatus.ONLINE
    assert transport.events("c1", "agent_status")
