"""FastAPI server that accepts browser terminal connections.

Each WebSocket on /terminal is authenticated, checked against the
session limit, and then bridged to a fresh shell for its lifetime::

    GET /health      -> {"status": "ok", "sessions": 1, "max_sessions": 0}
    GET /sessions    -> [{"session_id": "...", "state": "active", ...}]
    WS  /terminal    <- {"type": "command", "payload": "ls\\n"}
                     <- {"type": "resize", "cols": 120, "rows": 40}
                     -> raw shell output (binary frames)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, WebSocket
from pydantic import BaseModel

from termbridge.bridge.connection import (
    CLOSE_POLICY_VIOLATION,
    CLOSE_TRY_AGAIN_LATER,
    WebSocketConnection,
)
from termbridge.bridge.errors import SessionLimitError
from termbridge.bridge.process import ProcessSupervisor
from termbridge.bridge.registry import SessionRegistry
from termbridge.bridge.session import Session
from termbridge.config.settings import BridgeConfig, Settings
from termbridge.domain.models import MAX_DIMENSION, SessionInfo, TerminalGeometry
from termbridge.endpoint.auth import Authenticator, TokenAuthenticator

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str = "ok"
    sessions: int = 0
    max_sessions: int = 0


def create_app(
    settings: Settings | None = None,
    supervisor: ProcessSupervisor | None = None,
    authenticator: Authenticator | None = None,
    registry: SessionRegistry | None = None,
) -> FastAPI:
    """Create the terminal bridge application.

    Args:
        settings: Configuration; defaults are used if omitted.
        supervisor: Optional pre-configured ProcessSupervisor (for testing).
        authenticator: Identity provider; defaults to a TokenAuthenticator
                       using ``server.auth_token``.
        registry: Optional pre-built registry (for testing). A fresh empty
                  one is created otherwise and drained at shutdown.
    """
    settings = settings or Settings()
    bridge: BridgeConfig = settings.bridge

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Startup
        logger.info(
            "Terminal bridge started (shell=%s, max_sessions=%s)",
            app.state.supervisor.shell_command, bridge.max_sessions or "unlimited",
        )
        yield
        # Shutdown
        await app.state.registry.close_all("server shutdown")
        logger.info("Terminal bridge stopped")

    app = FastAPI(
        title="termbridge",
        description="WebSocket bridge between browser terminals and local shells",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    if registry is None:
        registry = SessionRegistry(max_sessions=bridge.max_sessions)
    app.state.registry = registry
    app.state.supervisor = supervisor or ProcessSupervisor(
        shell_command=bridge.shell_command,
        environment=bridge.environment,
        working_directory=bridge.working_directory,
        term=bridge.term,
        grace_period=bridge.termination_grace_period,
    )
    app.state.authenticator = authenticator or TokenAuthenticator(
        settings.server.auth_token.get_secret_value()
    )

    @app.get("/health")
    async def health_check() -> HealthResponse:
        reg: SessionRegistry = app.state.registry
        return HealthResponse(
            status="ok",
            sessions=len(reg),
            max_sessions=bridge.max_sessions,
        )

    @app.get("/sessions")
    async def list_sessions() -> list[SessionInfo]:
        reg: SessionRegistry = app.state.registry
        return reg.snapshot()

    @app.websocket("/terminal")
    async def terminal(websocket: WebSocket) -> None:
        reg: SessionRegistry = app.state.registry

        identity = await app.state.authenticator.authenticate(websocket)
        if identity is None:
            await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="authentication required")
            return
        if not reg.has_capacity():
            logger.warning("Rejecting terminal for %s: session limit reached", identity)
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="too many sessions")
            return

        await websocket.accept()
        session = Session(
            connection=WebSocketConnection(websocket),
            supervisor=app.state.supervisor,
            registry=reg,
            identity=identity,
            geometry=_requested_geometry(websocket, bridge),
            read_size=bridge.read_chunk_size,
            send_timeout=bridge.send_timeout,
            drain_timeout=bridge.drain_timeout,
        )
        try:
            reg.register(session)
        except SessionLimitError:
            logger.warning("Rejecting terminal for %s: session limit reached", identity)
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="too many sessions")
            return
        await session.run()

    return app


def _requested_geometry(websocket: WebSocket, bridge: BridgeConfig) -> TerminalGeometry:
    """Initial size from ``?cols=&rows=``, falling back to the configured default."""
    cols = _dimension(websocket.query_params.get("cols"), bridge.default_cols)
    rows = _dimension(websocket.query_params.get("rows"), bridge.default_rows)
    return TerminalGeometry(cols=cols, rows=rows)


def _dimension(value: str | None, default: int) -> int:
    """Parse a cols/rows query value; anything outside 1..65535 means ``default``."""
    try:
        parsed = int(value) if value is not None else default
    except ValueError:
        return default
    return parsed if 0 < parsed <= MAX_DIMENSION else default


def main(settings: Settings | None = None) -> None:
    """Entry point for running the server standalone."""
    settings = settings or Settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
