"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Own the process-wide VoiceSession (opened on startup, closed on shutdown)
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import AppConfig
from observability.logger import configure
from server.broadcast import EventBroadcaster
from server.routes import register_routes
from session.voice_session import VoiceSession


SessionFactory = Callable[[AppConfig], VoiceSession]


def create_app(
    config: AppConfig | None = None,
    session_factory: SessionFactory | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with injected config and session (fake adapters)
    - ASGI server compatibility
    """
    config = config or AppConfig.load_from_env()
    configure(level=config.log_level, enabled=config.enable_json_logs)
    build_session = session_factory or (lambda cfg: VoiceSession(config=cfg))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        session = build_session(config)
        broadcaster = EventBroadcaster()
        broadcaster.attach(session)

        app.state.session = session
        app.state.broadcaster = broadcaster

        await session.open()
        try:
            yield
        finally:
            broadcaster.detach()
            await session.close()

    app = FastAPI(title="Voice Client API", lifespan=lifespan)

    app.state.config = config

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # local presentation layer only
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
