"""
Conversation orchestrator: the caller-facing boundary of the turn-taking core.

Responsibilities:
- Translate caller actions (start/stop/interrupt/threshold) into events
- Feed gateway replies into the runtime
- Fan out phase / transcript / message notifications to subscribers
- Own the bounded message history

Non-responsibilities:
- Turn-taking decisions (reducer)
- Side-effect execution (runtime)
- Transport or rendering
"""

from __future__ import annotations

import time
import uuid
from typing import Callable, Protocol

from context.conversation import ChatMessage, MessageHistory
from config import clamp_silence_threshold_ms
from orchestrator.commands import StopSynthesis
from orchestrator.enums.phase import ConversationPhase
from orchestrator.events import (
    ConversationStart,
    ConversationStop,
    EventType,
    GatewayReply,
    Interrupt,
    SilenceThresholdChanged,
)
from orchestrator.runtime import Runtime, TimerOwnerProtocol
from orchestrator.runtime_context import (
    RuntimeExecutionContext,
    SynthesisAdapterProtocol,
    TranscriptionAdapterProtocol,
)
from orchestrator.state_dataclass import ConversationState
from session.listeners import Listeners, Unsubscribe
from spec import SILENCE_THRESHOLD_DEFAULT_MS


PhaseListener = Callable[[ConversationPhase], None]
TranscriptListener = Callable[[str, bool], None]
MessageListener = Callable[[ChatMessage], None]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class GatewayProtocol(Protocol):
    """What the orchestrator needs from the gateway client."""

    async def send_message(self, text: str) -> None: ...

    def on_reply(
        self, handler: Callable[[str, str | None], None]
    ) -> Unsubscribe: ...


class ConversationOrchestrator:
    """
    Hands-free conversation loop: Idle -> Listening -> Processing -> Speaking.

    All public coroutines return promptly: long-running work (capture,
    gateway round-trips, speech) happens in runtime-owned tasks. None of
    them raise on adapter or gateway failure; failures surface as phase
    changes.
    """

    def __init__(
        self,
        *,
        transcription: TranscriptionAdapterProtocol,
        synthesis: SynthesisAdapterProtocol,
        gateway: GatewayProtocol,
        silence_threshold_ms: int = SILENCE_THRESHOLD_DEFAULT_MS,
        history: MessageHistory | None = None,
        session_id: str | None = None,
        timers: TimerOwnerProtocol | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self._history = (
            history if history is not None else MessageHistory(session_id=self.session_id)
        )

        self._phase_listeners = Listeners("phase", self.session_id)
        self._transcript_listeners = Listeners("transcript", self.session_id)
        self._message_listeners = Listeners("message", self.session_id)

        ctx = RuntimeExecutionContext(
            session_id=self.session_id,
            transcription=transcription,
            synthesis=synthesis,
            gateway=gateway,
            history=self._history,
            notify_phase=self._phase_listeners.emit,
            notify_transcript=self._transcript_listeners.emit,
            notify_message=self._message_listeners.emit,
        )
        self._runtime = Runtime(
            context=ctx,
            initial_state=ConversationState(
                silence_threshold_ms=clamp_silence_threshold_ms(silence_threshold_ms)
            ),
            timers=timers,
        )
        self._unsubscribe_reply = gateway.on_reply(self._on_gateway_reply)

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def init(
        self,
        on_phase_change: PhaseListener | None = None,
        on_transcript: TranscriptListener | None = None,
        on_new_message: MessageListener | None = None,
    ) -> None:
        """Register the three caller callbacks in one call."""
        if on_phase_change is not None:
            self.on_phase_change(on_phase_change)
        if on_transcript is not None:
            self.on_transcript(on_transcript)
        if on_new_message is not None:
            self.on_new_message(on_new_message)

    def on_phase_change(self, listener: PhaseListener) -> Unsubscribe:
        return self._phase_listeners.add(listener)

    def on_transcript(self, listener: TranscriptListener) -> Unsubscribe:
        return self._transcript_listeners.add(listener)

    def on_new_message(self, listener: MessageListener) -> Unsubscribe:
        return self._message_listeners.add(listener)

    # ------------------------------------------------------------------
    # Caller actions
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Begin listening. No-op unless Idle."""
        await self._runtime.handle_event(
            ConversationStart(event_type=EventType.CONVERSATION_START, ts_ms=_now_ms())
        )

    async def stop(self) -> None:
        """Stop everything and return to Idle. Valid in any phase; idempotent."""
        await self._runtime.handle_event(
            ConversationStop(event_type=EventType.CONVERSATION_STOP, ts_ms=_now_ms())
        )

    async def interrupt(self) -> bool:
        """
        Cut assistant speech short and listen again.

        Returns False (and does nothing) unless the phase is Speaking when
        the interrupt is applied; speech that ends first wins.
        """
        if self.get_phase() is not ConversationPhase.SPEAKING:
            return False
        commands = await self._runtime.handle_event(
            Interrupt(event_type=EventType.INTERRUPT, ts_ms=_now_ms())
        )
        return any(isinstance(cmd, StopSynthesis) for cmd in commands)

    async def set_silence_threshold(self, ms: int) -> int:
        """Clamp to the allowed range and apply from the next silence countdown."""
        clamped = clamp_silence_threshold_ms(ms)
        await self._runtime.handle_event(
            SilenceThresholdChanged(
                event_type=EventType.SILENCE_THRESHOLD_CHANGED,
                ts_ms=_now_ms(),
                threshold_ms=clamped,
            )
        )
        return clamped

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_phase(self) -> ConversationPhase:
        return self._runtime.state.phase

    @property
    def state(self) -> ConversationState:
        return self._runtime.state

    @property
    def runtime(self) -> Runtime:
        return self._runtime

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return self._history.snapshot()

    @property
    def silence_threshold_ms(self) -> int:
        return self._runtime.state.silence_threshold_ms

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Stop the conversation and release everything. Not restartable."""
        self._unsubscribe_reply()
        await self.stop()
        await self._runtime.shutdown()
        self._phase_listeners.clear()
        self._transcript_listeners.clear()
        self._message_listeners.clear()

    # ------------------------------------------------------------------
    # Gateway inbound
    # ------------------------------------------------------------------

    def _on_gateway_reply(self, text: str, message_id: str | None) -> None:
        # Called from the gateway reader task; hand off so the reader never
        # waits on the runtime lock.
        self._runtime.spawn_event(
            GatewayReply(
                event_type=EventType.GATEWAY_REPLY,
                ts_ms=_now_ms(),
                text=text,
                message_id=message_id,
            )
        )
