"""
Fan-out of orchestrator and gateway notifications to /events clients.

Each WebSocket client gets its own bounded queue. A slow client loses
its oldest events rather than stalling the orchestrator.
"""

from __future__ import annotations

import asyncio
from typing import Any

from context.conversation import ChatMessage
from context.serialization import (
    connection_event,
    message_event,
    phase_event,
    transcript_event,
)
from observability.logger import log_event
from orchestrator.enums.phase import ConversationPhase
from session.connection_status import ConnectionState
from session.listeners import Unsubscribe
from session.voice_session import VoiceSession


EVENT_QUEUE_MAXSIZE = 256


class EventBroadcaster:
    def __init__(self, maxsize: int = EVENT_QUEUE_MAXSIZE) -> None:
        self._maxsize = maxsize
        self._queues: set[asyncio.Queue[dict[str, Any]]] = set()
        self._unsubscribers: list[Unsubscribe] = []

    def attach(self, session: VoiceSession) -> None:
        """Subscribe to the session's notification sources."""
        self._unsubscribers = [
            session.orchestrator.on_phase_change(self._on_phase),
            session.orchestrator.on_transcript(self._on_transcript),
            session.orchestrator.on_new_message(self._on_message),
            session.gateway.on_state_change(self._on_connection),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._maxsize)
        self._queues.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        self._queues.discard(queue)

    @property
    def client_count(self) -> int:
        return len(self._queues)

    def publish(self, event: dict[str, Any]) -> None:
        for queue in list(self._queues):
            if queue.full():
                queue.get_nowait()
                log_event({
                    "level": "WARNING",
                    "event_type": "events_client_lagging",
                    "dropped": 1,
                })
            queue.put_nowait(event)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _on_phase(self, phase: ConversationPhase) -> None:
        self.publish(phase_event(phase.value))

    def _on_transcript(self, text: str, is_final: bool) -> None:
        self.publish(transcript_event(text, is_final))

    def _on_message(self, message: ChatMessage) -> None:
        self.publish(message_event(message))

    def _on_connection(self, state: ConnectionState) -> None:
        self.publish(connection_event(state.value))
