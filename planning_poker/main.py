"""Read-only FastAPI status API for active planning sessions."""

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from . import config
from .logging_config import setup_logging
from .registry import SessionRegistry
from .telemetry import instrument_httpx, is_telemetry_enabled, setup_telemetry

logger = logging.getLogger(__name__)


class TaskInfo(BaseModel):
    """The task currently being estimated."""
    id: str
    title: str
    link: str
    estimate_minutes: Optional[int] = None


class SessionSnapshot(BaseModel):
    """Progress of one planning session."""
    room_id: str
    state: str
    moderator: str
    tasklist: Optional[str] = None
    participants: list[str] = Field(default_factory=list)
    total: int = 0
    completed: int = 0
    skipped: int = 0
    pending: int = 0
    current_task: Optional[TaskInfo] = None
    estimating: list[str] = Field(default_factory=list)


def configure_observability() -> None:
    """Set up logging and optional tracing. Call once at startup."""
    setup_logging()
    if setup_telemetry():
        instrument_httpx()


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def create_app(registry: SessionRegistry) -> FastAPI:
    """Build the status API around a session registry."""
    app = FastAPI(title="Planning Poker API")
    app.state.registry = registry

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "service": "Planning Poker API",
            "telemetry": is_telemetry_enabled(),
        }

    @app.get("/api/sessions", response_model=list[SessionSnapshot])
    async def list_sessions(request: Request):
        """List active sessions."""
        return [session.snapshot() for session in _registry(request).sessions.values()]

    @app.get("/api/sessions/{room_id}", response_model=SessionSnapshot)
    async def get_session(room_id: str, request: Request):
        """Get one active session by room id."""
        session = _registry(request).get(room_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session.snapshot()

    @app.get("/api/summaries")
    async def list_summaries(request: Request) -> list[dict[str, Any]]:
        """Results of sessions released since startup."""
        return [summary.to_dict() for summary in _registry(request).summaries]

    @app.post("/api/config/reload")
    async def reload_config_endpoint():
        """Re-read configuration from the environment."""
        return config.reload_config()

    return app


async def serve_status_api(registry: SessionRegistry, host: str = "0.0.0.0", port: int | None = None) -> None:
    """
    Run the status API inside the bot's event loop.

    Configures logging and tracing first. When the server exits, every running
    planning session is stopped.
    """
    import uvicorn

    configure_observability()

    server = uvicorn.Server(uvicorn.Config(
        create_app(registry),
        host=host,
        port=port or config.POKER_API_PORT,
        log_config=None,
    ))
    logger.info("Starting status API. Host: %s, Port: %d", host, server.config.port)

    try:
        await server.serve()
    finally:
        await registry.shutdown()
