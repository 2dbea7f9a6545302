import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from call_analytics.logging_config import get_logger

router = APIRouter(tags=["Realtime"])
logger = get_logger(__name__)


# WS /ws
# Gets: JSON frames {"event": "agent_online" | "agent_offline" | "call_started" | "call_ended"
#       | "send_manual_reminder" | "reminder_acknowledged" | "ping", "data": {...}}
# Sends: JSON frames {"event": ..., "data": {...}}; a `dashboard_update` right after connecting
# Example:
#   websocat ws://localhost:8000/ws
#   {"event": "agent_online", "data": {"agentCode": "A1", "agentName": "Alice"}}
@router.websocket("/ws")
async def presence_socket(websocket: WebSocket):
    """Agent devices and dashboards share this socket."""
    hub = websocket.app.state.hub
    engine = websocket.app.state.engine

    await websocket.accept()
    connection_id = hub.register(websocket)
    try:
        await engine.connect(connection_id)
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            raw = message.get("text")
            if raw is None:
                await hub.send(connection_id, "error", {"message": "Binary frames are not supported"})
                continue

            try:
                frame = json.loads(raw)
            except ValueError:
                await hub.send(connection_id, "error", {"message": "Frames must be JSON"})
                continue

            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                await hub.send(connection_id, "error", {"message": "Frames must look like {\"event\": ..., \"data\": ...}"})
                continue

            await engine.handle(connection_id, frame["event"], frame.get("data"))
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(connection_id)
        await engine.disconnect(connection_id)
