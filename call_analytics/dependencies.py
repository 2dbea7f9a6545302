"""FastAPI dependencies shared by the routers."""

from fastapi import Request

from call_analytics.engine import PresenceEngine


def get_engine(request: Request) -> PresenceEngine:
    """The app's presence engine (created by ``create_app``)."""
    return request.app.state.engine
