"""Main FastAPI application."""

import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from call_analytics.config import config
from call_analytics.connections import ConnectionHub
from call_analytics.database import SessionLocal, init_db
from call_analytics.engine import PresenceEngine
from call_analytics.health import SERVICE_VERSION, router as health_router
from call_analytics.logging_config import logger
from call_analytics.metrics import api_request_duration, api_requests_total
from call_analytics.routers.agents import router as agents_router
from call_analytics.routers.core import router as core_router
from call_analytics.routers.dashboard import router as dashboard_router
from call_analytics.routers.ws import router as ws_router
from call_analytics.sinks import build_default_sink
from call_analytics.timeutil import Clock


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    engine: PresenceEngine = app.state.engine

    # Startup
    logger.info("application_starting", version=SERVICE_VERSION)
    try:
        init_db()
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e), exc_info=True)
        raise
    logger.info("database_initialized")

    engine.load_from_database()
    engine.start()
    logger.info("analytics_sink_configured", configured=config.has_analytics_sink())
    logger.info("report_timezone", timezone=config.REPORT_TIMEZONE)

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await engine.stop()


def create_app(
    sink=None,
    clock: Optional[Clock] = None,
    session_factory: Optional[Callable[[], Session]] = SessionLocal,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Call Analytics API",
        description="Real-time agent presence, talk time and idle reminders for call centers",
        version=SERVICE_VERSION,
        lifespan=lifespan
    )

    hub = ConnectionHub()
    app.state.hub = hub
    app.state.engine = PresenceEngine.from_config(
        hub,
        sink if sink is not None else build_default_sink(),
        clock=clock,
        session_factory=session_factory,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        api_requests_total.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
        api_request_duration.observe(time.perf_counter() - started)
        return response

    app.include_router(core_router)
    app.include_router(health_router)
    app.include_router(dashboard_router)
    app.include_router(agents_router)
    app.include_router(ws_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
