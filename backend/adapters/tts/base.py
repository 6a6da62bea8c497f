"""
Speech synthesis adapter contract.

This module defines the *interface only*: no chunking, no retries, no timers,
no orchestration decisions live here.

Key invariants:
- speak() completes when audio output finishes OR when stop() is called.
  An interrupted utterance still completes; it does not raise.
- stop() is idempotent and safe to call when nothing is playing.
- speak() raises SynthesisError only when speech could not be produced.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class SynthesisError(Exception):
    """Speech could not be produced (provider or audio device failure)."""


class SynthesisAdapter(ABC):
    """
    Abstract interface for a text-to-speech capability.

    Implementations are responsible for:
    - Turning text into audible output
    - Signalling completion by returning from speak()
    - Stopping playback promptly on stop()

    Non-responsibilities:
    - No state machine logic (IDLE/LISTENING/etc.)
    - No timers owned by the reducer
    - No direct interaction with the gateway or UI
    """

    @abstractmethod
    async def speak(self, text: str) -> None:
        """Speak text; returns when playback finishes or is stopped."""
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:
        """Stop playback immediately and discard remaining audio."""
        raise NotImplementedError

    @property
    @abstractmethod
    def is_speaking(self) -> bool:
        raise NotImplementedError
