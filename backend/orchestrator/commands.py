"""
Side-effect command definitions for the conversation orchestrator.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
- Reducer logic remains pure and deterministic.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
    - Commands are immutable value objects emitted by the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from context.conversation import ChatMessage
from orchestrator.enums.phase import ConversationPhase
from orchestrator.events import EventType

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging and runtime dispatch.
    """

    # Capture
    START_CAPTURE = "START_CAPTURE"
    STOP_CAPTURE = "STOP_CAPTURE"

    # Gateway
    SEND_TEXT = "SEND_TEXT"

    # Synthesis
    START_SYNTHESIS = "START_SYNTHESIS"
    STOP_SYNTHESIS = "STOP_SYNTHESIS"

    # Timers
    START_TIMER = "START_TIMER"
    CANCEL_TIMER = "CANCEL_TIMER"
    CANCEL_ALL_TIMERS = "CANCEL_ALL_TIMERS"

    # Caller notifications
    NOTIFY_PHASE = "NOTIFY_PHASE"
    NOTIFY_TRANSCRIPT = "NOTIFY_TRANSCRIPT"
    APPEND_MESSAGE = "APPEND_MESSAGE"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Capture Commands
# =============================================================================

@dataclass(frozen=True)
class StartCapture(Command):
    """Open a new transcription session for run_id."""
    run_id: int
    command_type: CommandType = CommandType.START_CAPTURE


@dataclass(frozen=True)
class StopCapture(Command):
    """
    Close the transcription session for run_id.

    drain=True: wait for the final transcript and report CaptureFinished.
    drain=False: discard whatever the recognizer still holds.
    """
    run_id: int
    drain: bool
    command_type: CommandType = CommandType.STOP_CAPTURE


# =============================================================================
# Gateway Commands
# =============================================================================

@dataclass(frozen=True)
class SendText(Command):
    """Dispatch a finalized turn to the gateway (chat.send)."""
    run_id: int
    text: str
    command_type: CommandType = CommandType.SEND_TEXT


# =============================================================================
# Synthesis Commands
# =============================================================================

@dataclass(frozen=True)
class StartSynthesis(Command):
    """Speak text; completion is reported as SynthesisDone(run_id)."""
    run_id: int
    text: str
    command_type: CommandType = CommandType.START_SYNTHESIS


@dataclass(frozen=True)
class StopSynthesis(Command):
    """Stop audio output for run_id and discard remaining content."""
    run_id: int
    command_type: CommandType = CommandType.STOP_SYNTHESIS


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartTimer(Command):
    """
    Arm a named timer. Arming a name that is already armed replaces it.

    On expiry the runtime emits timeout_event_type scoped to run_id.
    """
    timer_id: str
    duration_ms: int
    timeout_event_type: EventType
    run_id: int
    command_type: CommandType = CommandType.START_TIMER


@dataclass(frozen=True)
class CancelTimer(Command):
    """Disarm a named timer (no-op if not armed)."""
    timer_id: str
    command_type: CommandType = CommandType.CANCEL_TIMER


@dataclass(frozen=True)
class CancelAllTimers(Command):
    """Disarm every timer. Emitted on every phase exit."""
    command_type: CommandType = CommandType.CANCEL_ALL_TIMERS


# =============================================================================
# Caller Notifications
# =============================================================================

@dataclass(frozen=True)
class NotifyPhase(Command):
    phase: ConversationPhase
    command_type: CommandType = CommandType.NOTIFY_PHASE


@dataclass(frozen=True)
class NotifyTranscript(Command):
    text: str
    is_final: bool
    command_type: CommandType = CommandType.NOTIFY_TRANSCRIPT


@dataclass(frozen=True)
class AppendMessage(Command):
    """Append to history and notify message listeners."""
    message: ChatMessage
    command_type: CommandType = CommandType.APPEND_MESSAGE


# =============================================================================
# Observability
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Structured log line; runtime adds session fields."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
