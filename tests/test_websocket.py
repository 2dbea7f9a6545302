"""End-to-end tests over the /ws socket."""

import pytest
from fastapi.testclient import TestClient

from call_analytics.main import create_app


@pytest.fixture
def client(sink):
    app = create_app(sink=sink)
    with TestClient(app) as test_client:
        yield test_client


def receive_until(ws, event):
    """Skip frames until `event` arrives (dashboard updates interleave with replies)."""
    for _ in range(20):
        frame = ws.receive_json()
        if frame["event"] == event:
            return frame["data"]
    raise AssertionError(f"no {event} frame received")


def test_connect_receives_dashboard_snapshot(client):
    with client.websocket_connect("/ws") as ws:
        frame = ws.receive_json()

    assert frame["event"] == "dashboard_update"
    assert frame["data"]["agentsOnCall"] == []


def test_agent_call_cycle_updates_dashboard(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_json({"event": "agent_online", "data": {"agentCode": "A1", "agentName": "Alice"}})
        assert receive_until(ws, "agent_status") == {"status": "connected", "agentCode": "A1"}

        ws.send_json({"event": "call_started", "data": {
            "agentCode": "A1", "agentName": "Alice", "phoneNumber": "+15550001", "callType": "incoming",
        }})
        snapshot = receive_until(ws, "dashboard_update")
        while not snapshot["agentsOnCall"]:
            snapshot = receive_until(ws, "dashboard_update")
        (on_call,) = snapshot["agentsOnCall"]
        assert on_call["agentCode"] == "A1"
        assert on_call["phoneNumber"] == "+15550001"
        assert on_call["callType"] == "incoming"

        ws.send_json({"event": "call_ended", "data": {
            "agentCode": "A1",
            "callData": {"phoneNumber": "+15550001", "callType": "incoming", "talkDuration": 42, "totalDuration": 50},
            "todayTotalTalkTime": 42,
        }})
        snapshot = receive_until(ws, "dashboard_update")
        assert snapshot["agentsOnCall"] == []
        assert [entry["agentCode"] for entry in snapshot["agentsIdleTime"]] == ["A1"]
        assert snapshot["agentsTalkTime"][0]["formattedTalkTime"] == "42s"

    live = client.get("/api/dashboard/live").json()
    assert live["agentsTalkTime"][0]["totalTalkTime"] == 42
    assert client.get("/api/queue/status").json()["queueSize"] + len(client.app.state.engine.sink.written) == 1


def test_invalid_frames_get_errors(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_text("not json")
        assert "JSON" in receive_until(ws, "error")["message"]

        ws.send_json(["agent_online"])
        assert receive_until(ws, "error")["message"]

        ws.send_json({"event": "agent_online", "data": {"agentCode": ""}})
        assert "agent_online" in receive_until(ws, "error")["message"]


def test_binary_frames_get_errors_and_keep_the_agent_online(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"event": "agent_online", "data": {"agentCode": "A1", "agentName": "Alice"}})
        receive_until(ws, "agent_status")

        ws.send_bytes(b"\x00\x01")
        assert "Binary" in receive_until(ws, "error")["message"]

        ws.send_json({"event": "ping"})
        assert "timestamp" in receive_until(ws, "pong")
        assert client.get("/api/agents").json()[0]["status"] == "online"


def test_ping_pong(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"event": "ping"})
        assert "timestamp" in receive_until(ws, "pong")


def test_manual_reminder_between_sockets(client):
    with client.websocket_connect("/ws") as agent_ws, client.websocket_connect("/ws") as dashboard_ws:
        agent_ws.receive_json()
        dashboard_ws.receive_json()

        agent_ws.send_json({"event": "agent_online", "data": {"agentCode": "A1", "agentName": "Alice"}})
        receive_until(agent_ws, "agent_status")

        dashboard_ws.send_json({"event": "send_manual_reminder", "data": {"agentCode": "A1"}})
        response = receive_until(dashboard_ws, "manual_reminder_response")
        assert response["success"] is True

        trigger = receive_until(agent_ws, "reminder_trigger")
        assert trigger["isManual"] is True
        assert trigger["agentCode"] == "A1"

        agent_ws.send_json({"event": "reminder_acknowledged", "data": {"agentCode": "A1"}})
        assert receive_until(agent_ws, "reminder_ack_received")["agentCode"] == "A1"


def test_closing_socket_takes_agent_offline(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"event": "agent_online", "data": {"agentCode": "A1", "agentName": "Alice"}})
        receive_until(ws, "agent_status")

    engine = client.app.state.engine
    # The server handles the close on its own loop; a follow-up request lets it finish.
    for _ in range(50):
        client.get("/health")
        if engine.state_machine.connection_for("A1") is None:
            break

    assert engine.state_machine.connection_for("A1") is None
    assert client.get("/api/stats").json()["connectedAgents"] == 0
