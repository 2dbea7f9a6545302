"""Tests for the daily stats export task."""

from datetime import date, datetime, timezone

from call_analytics import celery_tasks
from call_analytics.config import Config, config
from call_analytics.models import Agent, AgentStatus, DailyTalkTime
from call_analytics.services import AgentService, DailyTalkTimeService

NOW = datetime(2024, 1, 15, 6, 0, tzinfo=timezone.utc)


def seed(db):
    for code, name, status in (("A1", "Alice", AgentStatus.ONLINE), ("B2", "Bob", AgentStatus.OFFLINE),
                               ("C3", "Carol", AgentStatus.REMOVED)):
        AgentService.upsert(db, Agent(code=code, name=name, status=status, created_at=NOW, updated_at=NOW))
    DailyTalkTimeService.upsert(db, DailyTalkTime(
        agent_code="A1", agent_name="Alice", date=date(2024, 1, 15), total_talk_time_seconds=125, call_count=3,
    ))


def test_build_daily_rows_fills_in_idle_agents():
    agents = [
        Agent(code="A1", name="Alice", created_at=NOW, updated_at=NOW),
        Agent(code="B2", name="Bob", created_at=NOW, updated_at=NOW),
    ]
    entries = [DailyTalkTime(agent_code="A1", date=date(2024, 1, 15), total_talk_time_seconds=90, call_count=2)]

    rows = celery_tasks.build_daily_rows(agents, entries, date(2024, 1, 15))

    assert rows == [
        {"agentCode": "A1", "agentName": "Alice", "date": "2024-01-15", "talktimeMinutes": 1.5, "totalCalls": 2},
        {"agentCode": "B2", "agentName": "Bob", "date": "2024-01-15", "talktimeMinutes": 0.0, "totalCalls": 0},
    ]


def test_export_skipped_without_analytics_sink(db):
    seed(db)

    result = celery_tasks.export_daily_stats_task.run(date="2024-01-15")

    assert result == {"status": "skipped", "date": "2024-01-15", "agents": 2, "exported": 0}


def test_export_posts_active_agents(db, monkeypatch):
    seed(db)
    monkeypatch.setattr(Config, "ANALYTICS_SINK_URL", "https://analytics.example", raising=False)
    monkeypatch.setattr(config, "ANALYTICS_SINK_URL", "https://analytics.example", raising=False)

    posted = []

    def fake_post(rows, client=None):
        posted.extend(rows)
        return len(rows)

    from call_analytics import sinks
    monkeypatch.setattr(sinks, "post_daily_stats", fake_post)

    result = celery_tasks.export_daily_stats_task.run(date="2024-01-15")

    assert result["status"] == "success"
    assert result["exported"] == 2
    assert [row["agentCode"] for row in posted] == ["A1", "B2"]
    assert posted[0]["talktimeMinutes"] == 2.08
    assert posted[0]["totalCalls"] == 3


def test_export_reports_sink_errors(db, monkeypatch):
    seed(db)
    monkeypatch.setattr(Config, "ANALYTICS_SINK_URL", "https://analytics.example", raising=False)
    monkeypatch.setattr(config, "ANALYTICS_SINK_URL", "https://analytics.example", raising=False)

    def failing_post(rows, client=None):
        raise ConnectionError("analytics sink unavailable")

    from call_analytics import sinks
    monkeypatch.setattr(sinks, "post_daily_stats", failing_post)
    monkeypatch.setattr(sinks, "upsert_daily_stats", lambda rows, client=None: 0)

    result = celery_tasks.export_daily_stats_task.run(date="2024-01-15")

    assert result["status"] == "error"
    assert "unavailable" in result["message"]


def test_export_falls_back_to_row_upserts_when_bulk_create_fails(db, monkeypatch):
    seed(db)
    monkeypatch.setattr(Config, "ANALYTICS_SINK_URL", "https://analytics.example", raising=False)
    monkeypatch.setattr(config, "ANALYTICS_SINK_URL", "https://analytics.example", raising=False)

    upserted = []

    def failing_post(rows, client=None):
        raise ConnectionError("bulk create rejected")

    def fake_upsert(rows, client=None):
        upserted.extend(rows)
        return len(rows)

    from call_analytics import sinks
    monkeypatch.setattr(sinks, "post_daily_stats", failing_post)
    monkeypatch.setattr(sinks, "upsert_daily_stats", fake_upsert)

    result = celery_tasks.export_daily_stats_task.run(date="2024-01-15")

    assert result == {"status": "success", "date": "2024-01-15", "agents": 2, "exported": 2, "fallback": True}
    assert [row["agentCode"] for row in upserted] == ["A1", "B2"]


def test_export_reports_partial_fallback(db, monkeypatch):
    seed(db)
    monkeypatch.setattr(Config, "ANALYTICS_SINK_URL", "https://analytics.example", raising=False)
    monkeypatch.setattr(config, "ANALYTICS_SINK_URL", "https://analytics.example", raising=False)

    def failing_post(rows, client=None):
        raise ConnectionError("bulk create rejected")

    from call_analytics import sinks
    monkeypatch.setattr(sinks, "post_daily_stats", failing_post)
    monkeypatch.setattr(sinks, "upsert_daily_stats", lambda rows, client=None: 1)

    result = celery_tasks.export_daily_stats_task.run(date="2024-01-15")

    assert result["status"] == "partial"
    assert result["exported"] == 1


def test_beat_schedule_runs_nightly():
    entry = celery_tasks.celery_app.conf.beat_schedule["export-daily-stats"]

    assert entry["task"] == "export_daily_stats"
    assert entry["schedule"].hour == {23}
    assert entry["schedule"].minute == {55}
