"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Initialize shared resources (credential store, connection manager)
- Start the connection at boot, tear it down on exit
- Register routes
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import AppConfig

from connection.manager import ConnectionManager
from connection.projector import StatusProjector
from connection.retry import ReconnectPolicy

from observability.logger import configure as configure_logging
from observability.logger import log_event

from server.routes import register_routes

from session.engine_session import engine_session_factory
from session.protocols import SessionFactory, SessionStore
from session.store import FileSessionStore


def create_app(
    config: AppConfig | None = None,
    *,
    store: SessionStore | None = None,
    session_factory: SessionFactory | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with injected stores and fake sessions
    - Environment-specific setup
    - ASGI server compatibility
    """
    config = config or AppConfig.load_from_env()
    configure_logging(enabled=config.enable_json_logs)

    manager = ConnectionManager(
        store=store or FileSessionStore(config.session_dir),
        session_factory=session_factory or engine_session_factory(
            url=config.engine_url,
            token=config.engine_token,
        ),
        policy=build_policy(config),
        print_pairing_code=config.print_qr_in_terminal,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.started_at = time.monotonic()
        log_event({
            "event_type": "BRIDGE_STARTING",
            "env": config.env,
            "session_dir": config.session_dir,
            "engine_url": config.engine_url,
        })
        await manager.start()
        try:
            yield
        finally:
            await manager.shutdown()

    app = FastAPI(title="Messaging Bridge API", lifespan=lifespan)

    app.state.config = config
    app.state.manager = manager
    app.state.projector = StatusProjector(lambda: manager.state)
    app.state.started_at = time.monotonic()

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # dashboard is served from another origin
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app


def build_policy(config: AppConfig) -> ReconnectPolicy:
    """Build the reconnect policy from configuration."""
    return ReconnectPolicy(
        max_attempts=config.max_reconnect_attempts,
        base_delay_ms=config.reconnect_base_delay_ms,
        max_delay_ms=config.reconnect_max_delay_ms,
        fresh_restart_delay_ms=config.fresh_restart_delay_ms,
    )
