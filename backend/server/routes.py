"""
Route registration for the local voice client API.

Responsibilities:
- Map HTTP endpoints onto the orchestrator boundary (start/stop/interrupt/threshold)
- Push phase / transcript / message / connection events over /events
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from context.serialization import connection_event, phase_event
from observability.logger import log_event
from server.broadcast import EventBroadcaster
from session.voice_session import VoiceSession


class SilenceThresholdBody(BaseModel):
    ms: int


def _session(request: Request) -> VoiceSession:
    return request.app.state.session


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/status")
    async def status(request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        return _session(request).status()

    @app.post("/conversation/start")
    async def conversation_start(request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = _session(request)
        if not await session.start_conversation():
            raise HTTPException(
                status_code=409,
                detail=f"Gateway not connected ({session.gateway.state.value})",
            )
        return {"phase": session.orchestrator.get_phase().value}

    @app.post("/conversation/stop")
    async def conversation_stop(request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = _session(request)
        await session.orchestrator.stop()
        return {"phase": session.orchestrator.get_phase().value}

    @app.post("/conversation/interrupt")
    async def conversation_interrupt(request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = _session(request)
        interrupted = await session.orchestrator.interrupt()
        return {
            "interrupted": interrupted,
            "phase": session.orchestrator.get_phase().value,
        }

    @app.put("/settings/silence-threshold")
    async def silence_threshold( # pyright: ignore[reportUnusedFunction]
        body: SilenceThresholdBody,
        request: Request,
    ) -> dict[str, int]:
        applied = await _session(request).orchestrator.set_silence_threshold(body.ms)
        return {"silence_threshold_ms": applied}

    @app.websocket("/events")
    async def events(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        session: VoiceSession = app.state.session
        broadcaster: EventBroadcaster = app.state.broadcaster
        queue = broadcaster.subscribe()
        sender: asyncio.Task[None] | None = None

        try:
            # Current snapshot first, then live updates.
            await ws.send_json(phase_event(session.orchestrator.get_phase().value))
            await ws.send_json(connection_event(session.gateway.state.value))

            sender = asyncio.create_task(_pump(ws, queue), name="events_sender")

            # Inbound messages are ignored; reading detects the disconnect.
            while True:
                msg = await ws.receive()
                if msg["type"] == "websocket.disconnect":
                    break

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "events_ws_fatal_error",
                "session_id": session.session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            broadcaster.unsubscribe(queue)
            if sender is not None:
                sender.cancel()
                await asyncio.gather(sender, return_exceptions=True)


async def _pump(ws: WebSocket, queue: asyncio.Queue[dict[str, Any]]) -> None:
    """Forward broadcast events to one client until cancelled."""
    while True:
        event = await queue.get()
        await ws.send_json(event)
