from fastapi import APIRouter, Depends, HTTPException

from call_analytics.dependencies import get_engine
from call_analytics.engine import PresenceEngine
from call_analytics.models import Agent, BulkReminderSettingsRequest, ReminderSettingsUpdate

router = APIRouter(prefix="/api", tags=["Agents"])


def _reminder_settings(agent: Agent) -> dict:
    return {
        "agentCode": agent.code,
        "agentName": agent.name,
        "status": agent.status.value,
        "reminderIntervalMinutes": agent.reminder_config.interval_minutes,
        "remindersEnabled": agent.reminder_config.enabled,
    }


# GET /api/agents?include_removed=false
# Gets: optional include_removed flag
# Returns: JSON array of agents
# Example:
#   curl http://localhost:8000/api/agents
@router.get("/agents")
async def list_agents(include_removed: bool = False, engine: PresenceEngine = Depends(get_engine)):
    """List known agents."""
    agents = engine.registry.all() if include_removed else engine.registry.active()
    return [agent.to_wire() for agent in agents]


# POST /api/agents/{agent_code}/remove
# Gets: path agent_code
# Returns: {success: true, agent: {...}}; 404 for unknown agents
# Example:
#   curl -X POST http://localhost:8000/api/agents/A1/remove
@router.post("/agents/{agent_code}/remove")
async def remove_agent(agent_code: str, engine: PresenceEngine = Depends(get_engine)):
    """Hide an agent from the dashboard. Its history is kept."""
    agent = await engine.remove_agent(agent_code)
    if agent is None:
        raise HTTPException(status_code=404, detail=f"Agent {agent_code} not found")
    return {"success": True, "agent": agent.to_wire()}


# POST /api/agents/{agent_code}/restore
# Gets: path agent_code
# Returns: {success: true, agent: {...}}; 404 for unknown agents
# Example:
#   curl -X POST http://localhost:8000/api/agents/A1/restore
@router.post("/agents/{agent_code}/restore")
async def restore_agent(agent_code: str, engine: PresenceEngine = Depends(get_engine)):
    agent = await engine.restore_agent(agent_code)
    if agent is None:
        raise HTTPException(status_code=404, detail=f"Agent {agent_code} not found")
    return {"success": True, "agent": agent.to_wire()}


# GET /api/reminder-settings
# Gets: nothing
# Returns: JSON array of {agentCode, agentName, status, reminderIntervalMinutes, remindersEnabled}
# Example:
#   curl http://localhost:8000/api/reminder-settings
@router.get("/reminder-settings")
async def list_reminder_settings(engine: PresenceEngine = Depends(get_engine)):
    return [_reminder_settings(agent) for agent in engine.registry.active()]


# GET /api/reminder-settings/{agent_code}
# Gets: path agent_code
# Returns: reminder settings of one agent; 404 for unknown agents
# Example:
#   curl http://localhost:8000/api/reminder-settings/A1
@router.get("/reminder-settings/{agent_code}")
async def get_reminder_settings(agent_code: str, engine: PresenceEngine = Depends(get_engine)):
    agent = engine.registry.get(agent_code)
    if agent is None:
        raise HTTPException(status_code=404, detail=f"Agent {agent_code} not found")
    return _reminder_settings(agent)


# POST /api/reminder-settings/{agent_code}
# Gets: JSON body {reminder_interval_minutes: int >= 1, reminders_enabled: bool}
# Returns: {success: true, settings: {...}}; 404 for unknown agents, 422 for a bad body
# Example:
#   curl -X POST http://localhost:8000/api/reminder-settings/A1 \
#     -H 'Content-Type: application/json' \
#     -d '{"reminder_interval_minutes": 10, "reminders_enabled": true}'
@router.post("/reminder-settings/{agent_code}")
async def update_reminder_settings(
    agent_code: str,
    request: ReminderSettingsUpdate,
    engine: PresenceEngine = Depends(get_engine),
):
    """Change one agent's idle reminder interval / on-off switch."""
    agent = engine.set_reminder_config(agent_code, request.reminder_interval_minutes, request.reminders_enabled)
    if agent is None:
        raise HTTPException(status_code=404, detail=f"Agent {agent_code} not found")
    return {"success": True, "settings": _reminder_settings(agent)}


# POST /api/reminder-settings-bulk
# Gets: JSON body {settings: [{agentCode, reminder_interval_minutes, reminders_enabled}, ...]}
# Returns: {success: true, updated: [codes], notFound: [codes]}
# Example:
#   curl -X POST http://localhost:8000/api/reminder-settings-bulk \
#     -H 'Content-Type: application/json' \
#     -d '{"settings": [{"agentCode": "A1", "reminder_interval_minutes": 15, "reminders_enabled": false}]}'
@router.post("/reminder-settings-bulk")
async def bulk_update_reminder_settings(
    request: BulkReminderSettingsRequest,
    engine: PresenceEngine = Depends(get_engine),
):
    if not request.settings:
        raise HTTPException(status_code=400, detail="settings must not be empty")

    result = engine.bulk_set_reminder_config(request.settings)
    return {"success": True, **result}


# POST /api/reminders/{agent_code}/send
# Gets: path agent_code
# Returns: {success: bool, agentCode, timestamp}; success is false when the agent has no live connection
# Example:
#   curl -X POST http://localhost:8000/api/reminders/A1/send
@router.post("/reminders/{agent_code}/send")
async def send_manual_reminder(agent_code: str, engine: PresenceEngine = Depends(get_engine)):
    """Remind an agent right now, outside the automatic schedule."""
    if engine.registry.get(agent_code) is None:
        raise HTTPException(status_code=404, detail=f"Agent {agent_code} not found")

    success = await engine.reminders.send_manual(agent_code)
    response = {
        "success": success,
        "agentCode": agent_code,
        "timestamp": engine.clock.now().isoformat(),
    }
    if not success:
        response["error"] = "Agent not connected"
    return response
