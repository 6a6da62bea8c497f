"""
Voice session: composition root for one hands-free conversation client.

Owns:
- Transcription adapter (microphone + Whisper)
- Synthesis adapter (Speechmatics + speaker)
- Gateway client
- Conversation orchestrator

Lifecycle:
    open()  -> load the transcription model, connect the gateway
    close() -> stop the conversation, release audio, disconnect

Contains no turn-taking logic; that lives in the orchestrator.
"""

from __future__ import annotations

import uuid
from typing import Any

from adapters.asr.base import TranscriptionAdapter
from adapters.asr.streaming import MicrophoneTranscriptionAdapter
from adapters.tts.base import SynthesisAdapter
from adapters.tts.speechmatics import SpeechmaticsSynthesisAdapter
from config import AppConfig, ConfigError
from context.serialization import serialize_history
from observability.logger import log_event
from orchestrator.conversation import ConversationOrchestrator
from session.gateway import GatewayClient


class VoiceSession:
    """Wires config -> adapters -> gateway -> orchestrator."""

    def __init__(
        self,
        *,
        config: AppConfig,
        transcription: TranscriptionAdapter | None = None,
        synthesis: SynthesisAdapter | None = None,
        gateway: GatewayClient | None = None,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.config = config

        self.transcription = transcription or MicrophoneTranscriptionAdapter(
            model=config.whisper_model,
            device=config.whisper_device,
            compute_type=config.whisper_compute_type,
            session_id=self.session_id,
        )
        self.synthesis = synthesis or self._build_synthesis(config)
        self.gateway = gateway or GatewayClient(session_id=self.session_id)

        self.orchestrator = ConversationOrchestrator(
            transcription=self.transcription,
            synthesis=self.synthesis,
            gateway=self.gateway,
            silence_threshold_ms=config.silence_threshold_ms,
            session_id=self.session_id,
        )
        self._opened = False

    def _build_synthesis(self, config: AppConfig) -> SynthesisAdapter:
        if not config.speechmatics_api_key:
            raise ConfigError("SPEECHMATICS_API_KEY is required")
        return SpeechmaticsSynthesisAdapter(
            api_key=config.speechmatics_api_key,
            voice=config.speechmatics_voice,
            rate=config.tts_rate,
            session_id=self.session_id,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def can_start(self) -> bool:
        """A conversation may only start while the gateway is connected."""
        return self.gateway.is_connected

    async def open(self) -> None:
        if self._opened:
            return
        self._opened = True

        log_event({
            "event_type": "voice_session_opening",
            "session_id": self.session_id,
            "env": self.config.env,
        })

        await self.transcription.initialize()
        await self.gateway.connect(self.config.gateway)

    async def start_conversation(self) -> bool:
        """Start listening; returns False (no-op) when the gateway is not connected."""
        if not self.can_start:
            log_event({
                "level": "WARNING",
                "event_type": "conversation_start_refused",
                "session_id": self.session_id,
                "connection": self.gateway.state.value,
            })
            return False
        await self.orchestrator.start()
        return True

    async def close(self) -> None:
        if not self._opened:
            return
        self._opened = False

        await self.orchestrator.shutdown()
        await self.gateway.disconnect()

        log_event({
            "event_type": "voice_session_closed",
            "session_id": self.session_id,
        })

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "phase": self.orchestrator.get_phase().value,
            "connection": self.gateway.state.value,
            "silence_threshold_ms": self.orchestrator.silence_threshold_ms,
            "messages": serialize_history(self.orchestrator.messages),
        }
