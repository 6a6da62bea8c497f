"""
Unified event definitions for the conversation reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Timer events are ServiceEvents: they carry the run_id of the operation
they guard, so a timer that fires into a later run is ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from orchestrator.enums.service import Service


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (phase, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # User control
    # ------------------------------------------------------------------
    CONVERSATION_START = "CONVERSATION_START"
    CONVERSATION_STOP = "CONVERSATION_STOP"
    INTERRUPT = "INTERRUPT"
    SILENCE_THRESHOLD_CHANGED = "SILENCE_THRESHOLD_CHANGED"

    # ------------------------------------------------------------------
    # Capture / transcription
    # ------------------------------------------------------------------
    CAPTURE_STARTED = "CAPTURE_STARTED"
    CAPTURE_FAILED = "CAPTURE_FAILED"
    TRANSCRIPT_PARTIAL = "TRANSCRIPT_PARTIAL"
    CAPTURE_FINISHED = "CAPTURE_FINISHED"
    SILENCE_TIMEOUT = "SILENCE_TIMEOUT"
    NO_SPEECH_TIMEOUT = "NO_SPEECH_TIMEOUT"

    # ------------------------------------------------------------------
    # Gateway
    # ------------------------------------------------------------------
    SEND_ACCEPTED = "SEND_ACCEPTED"
    SEND_FAILED = "SEND_FAILED"
    RESPONSE_TIMEOUT = "RESPONSE_TIMEOUT"
    GATEWAY_REPLY = "GATEWAY_REPLY"

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------
    SYNTHESIS_DONE = "SYNTHESIS_DONE"
    SYNTHESIS_FAILED = "SYNTHESIS_FAILED"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


@dataclass(frozen=True)
class ServiceEvent(Event):
    """
    Base class for events scoped to a versioned operation.

    The reducer MUST ignore events whose run_id does not match the
    current run for that service.
    """

    service: Service
    run_id: int


# =============================================================================
# User Control Events
# =============================================================================

@dataclass(frozen=True)
class ConversationStart(Event):
    """User started the conversation (main action)."""


@dataclass(frozen=True)
class ConversationStop(Event):
    """User stopped the conversation (global stop, valid in any phase)."""


@dataclass(frozen=True)
class Interrupt(Event):
    """User interrupted assistant speech."""


@dataclass(frozen=True)
class SilenceThresholdChanged(Event):
    """New silence countdown length (already clamped)."""
    threshold_ms: int


# =============================================================================
# Capture Events
# =============================================================================

@dataclass(frozen=True)
class CaptureStarted(ServiceEvent):
    """Transcription session is live."""


@dataclass(frozen=True)
class CaptureFailed(ServiceEvent):
    """Transcription session could not be started."""
    reason: str


@dataclass(frozen=True)
class TranscriptPartial(ServiceEvent):
    """
    Incremental transcript for the current capture run.

    Replaces (does not append to) any earlier partial.
    """
    text: str


@dataclass(frozen=True)
class CaptureFinished(ServiceEvent):
    """
    Capture stopped and drained.

    text is the recognizer's final text (may be empty).
    """
    text: str


@dataclass(frozen=True)
class SilenceTimeout(ServiceEvent):
    """No transcript update for the silence threshold after speech was seen."""


@dataclass(frozen=True)
class NoSpeechTimeout(ServiceEvent):
    """Capture run produced no speech at all within the guard window."""


# =============================================================================
# Gateway Events
# =============================================================================

@dataclass(frozen=True)
class SendAccepted(ServiceEvent):
    """Gateway acknowledged chat.send."""


@dataclass(frozen=True)
class SendFailed(ServiceEvent):
    """chat.send was rejected, timed out, or the connection was lost."""
    reason: str


@dataclass(frozen=True)
class ResponseTimeout(ServiceEvent):
    """No reply arrived within the response wait window."""


@dataclass(frozen=True)
class GatewayReply(Event):
    """
    Assistant reply pushed by the gateway.

    Not run-scoped: the gateway does not thread a turn id through the
    protocol. Correct only while at most one turn is outstanding.
    """
    text: str
    message_id: str | None = None


# =============================================================================
# Synthesis Events
# =============================================================================

@dataclass(frozen=True)
class SynthesisDone(ServiceEvent):
    """Speech finished (or was stopped; a stopped utterance still completes)."""


@dataclass(frozen=True)
class SynthesisFailed(ServiceEvent):
    """Speech could not be produced."""
    reason: str
