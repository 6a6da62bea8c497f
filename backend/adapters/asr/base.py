"""
Transcription adapter contract.

This module defines the *interface only*: no buffering policy, no timers,
no orchestration decisions live here.

Key invariants:
- Run IDs are owned by the orchestrator. Adapters never see them; the
  runtime maps one TranscriptionSession to one capture run.
- initialize() must complete before start().
- At most one session is live at a time; start() while one is live raises
  TranscriptionBusy.
- Partial callbacks are delivered on the event loop thread.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable


PartialCallback = Callable[[str], None]


class TranscriptionError(Exception):
    """Base class for transcription adapter failures."""


class TranscriptionNotReady(TranscriptionError):
    """start() called before initialize() completed."""


class TranscriptionBusy(TranscriptionError):
    """start() called while a session is still live."""


class TranscriptionSession(ABC):
    """One capture run: microphone open from start() until stop()."""

    @abstractmethod
    async def stop(self) -> str:
        """
        Close the microphone and return the final transcript.

        Contract:
        - After stop() returns no further partials are delivered.
        - Returns "" when nothing intelligible was heard.
        - Idempotent: a second call returns "" without side effects.
        """
        raise NotImplementedError

    @abstractmethod
    def abort(self) -> None:
        """
        Close the microphone and discard buffered audio without a final
        transcription. Idempotent; a later stop() returns "".
        """
        raise NotImplementedError


class TranscriptionAdapter(ABC):
    """
    Abstract interface for an on-device speech-to-text capability.

    Implementations are responsible for:
    - Loading the recognizer (initialize)
    - Capturing audio and producing incremental text (start -> on_partial)
    - Producing the final text when a session stops

    Non-responsibilities:
    - No silence detection policy (the reducer's silence timer owns that)
    - No state machine logic
    - No direct interaction with the gateway or UI
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Load the model. Idempotent."""
        raise NotImplementedError

    @abstractmethod
    async def start(self, on_partial: PartialCallback) -> TranscriptionSession:
        """
        Open the microphone and begin transcribing.

        on_partial receives the full transcript-so-far each time it changes
        (replacement semantics, not deltas).

        Raises:
            TranscriptionNotReady: initialize() has not completed.
            TranscriptionBusy: a session is already live.
            TranscriptionError: the audio device could not be opened.
        """
        raise NotImplementedError

    @abstractmethod
    async def force_stop(self) -> None:
        """Tear down any live session without producing a final result. Idempotent."""
        raise NotImplementedError

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        raise NotImplementedError

    @property
    @abstractmethod
    def is_listening(self) -> bool:
        raise NotImplementedError
