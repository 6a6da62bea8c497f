"""
Runtime execution context.

Provides Runtime with live access to the imperative resources it needs for
command execution (adapters, gateway, history, caller notifications).

This module contains:
- Narrow Protocols (capabilities, not implementations)
- Zero orchestration logic
- Zero state mutation
"""

from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

from context.conversation import ChatMessage, MessageHistory
from orchestrator.enums.phase import ConversationPhase


# ---------------------------------------------------------------------
# Adapter Protocols
# ---------------------------------------------------------------------

@runtime_checkable
class TranscriptionSessionProtocol(Protocol):
    async def stop(self) -> str: ...
    def abort(self) -> None: ...


@runtime_checkable
class TranscriptionAdapterProtocol(Protocol):
    async def start(
        self, on_partial: Callable[[str], None]
    ) -> TranscriptionSessionProtocol: ...

    async def force_stop(self) -> None:
        """
        Hard teardown of any live session (shutdown path).
        """


@runtime_checkable
class SynthesisAdapterProtocol(Protocol):
    async def speak(self, text: str) -> None: ...
    async def stop(self) -> None: ...


@runtime_checkable
class GatewaySenderProtocol(Protocol):
    """
    Outbound half of the gateway client.

    send_message resolves when the gateway acknowledges the message and
    raises when it is rejected, times out, or the connection is lost.
    """

    async def send_message(self, text: str) -> None: ...


# ---------------------------------------------------------------------
# Runtime Execution Context
# ---------------------------------------------------------------------

class RuntimeExecutionContext:
    """
    Imperative execution context for Runtime.

    Runtime is allowed to:
    - Call adapters and the gateway
    - Append to history
    - Invoke caller notification sinks

    Runtime is NOT allowed to:
    - Perform orchestration decisions
    """

    def __init__(
        self,
        *,
        session_id: str,
        transcription: TranscriptionAdapterProtocol,
        synthesis: SynthesisAdapterProtocol,
        gateway: GatewaySenderProtocol,
        history: MessageHistory,
        notify_phase: Callable[[ConversationPhase], None],
        notify_transcript: Callable[[str, bool], None],
        notify_message: Callable[[ChatMessage], None],
    ) -> None:
        self.session_id = session_id
        self.transcription = transcription
        self.synthesis = synthesis
        self.gateway = gateway
        self.history = history
        self.notify_phase = notify_phase
        self.notify_transcript = notify_transcript
        self.notify_message = notify_message
