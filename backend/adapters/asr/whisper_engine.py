# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownArgumentType=false
"""
Whisper inference wrapper (faster-whisper).

This module is deliberately "dumb":
- Accepts a float32 mono 16 kHz signal
- Runs transcription
- Returns text (+ segment timestamps)

Must NOT:
- Own the microphone or the audio buffer
- Perform silence detection
- Emit orchestrator events
- Make orchestration decisions

Implementation notes:
- Whisper is not truly streaming; "partial" text is a best-effort re-decode
  of the current buffer by the caller.
- transcribe() is blocking; callers run it in a worker thread.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from faster_whisper import WhisperModel

from spec import AUDIO_SAMPLE_RATE_HZ


# =============================================================================
# Public result types
# =============================================================================

@dataclass(frozen=True)
class WhisperSegment:
    """
    One timestamped segment of recognized speech.

    Times are in milliseconds relative to the start of the provided audio.
    """
    start_ms: int
    end_ms: int
    text: str


@dataclass(frozen=True)
class WhisperResult:
    """
    Result of a transcription pass.

    text:
        Full recognized text for the provided audio.

    segments:
        Timestamped segments (may be empty).

    audio_ms:
        Duration of the decoded audio.
    """
    text: str
    segments: tuple[WhisperSegment, ...] = ()
    audio_ms: int = 0


class WhisperBackendError(RuntimeError):
    """Raised when the model cannot be loaded or a decode fails."""


class WhisperEngine:
    """
    Minimal Whisper inference wrapper (mechanism only).

    Assumptions:
    - Input is float32, 16 kHz, mono (caller converts)
    - Inference is NOT bitwise-deterministic (temperature=0 helps)
    """

    def __init__(
        self,
        *,
        model: str = "tiny",
        device: str | None = None,
        compute_type: str | None = None,
        language: str | None = None,
    ) -> None:
        self._language = language

        kwargs: dict[str, Any] = {}
        if device is not None:
            kwargs["device"] = device
        if compute_type is not None:
            kwargs["compute_type"] = compute_type

        try:
            self._model = WhisperModel(model, **kwargs)
        except Exception as e:
            raise WhisperBackendError(f"Failed to load Whisper model {model!r}: {e!r}") from e

    def transcribe(
        self,
        audio: np.ndarray,
        *,
        prompt: str | None = None,
        temperature: float = 0.0,
    ) -> WhisperResult:
        """
        Transcribe a whole signal.

        Notes:
        - Empty input returns empty text without touching the model
        - Blocking call (tens to hundreds of ms for the tiny model)
        - vad_filter=False: silence policy is not this module's job
        """
        audio_ms = int(audio.shape[0] * 1000 / AUDIO_SAMPLE_RATE_HZ)
        if audio.size == 0:
            return WhisperResult(text="", segments=(), audio_ms=0)

        kwargs: dict[str, Any] = {
            "language": self._language,
            "beam_size": 1,
            "temperature": temperature,
            "vad_filter": False,
        }
        if prompt:
            kwargs["initial_prompt"] = prompt

        try:
            segments_iter, _info = self._model.transcribe(audio, **kwargs)

            segments: list[WhisperSegment] = []
            text_parts: list[str] = []

            for seg in segments_iter:
                seg_text = str(getattr(seg, "text", "")).strip()
                if seg_text:
                    text_parts.append(seg_text)
                segments.append(
                    WhisperSegment(
                        start_ms=int(seg.start * 1000),
                        end_ms=int(seg.end * 1000),
                        text=seg_text,
                    )
                )
        except Exception as e:
            raise WhisperBackendError(f"Whisper transcription failed: {e!r}") from e

        return WhisperResult(
            text=" ".join(text_parts).strip(),
            segments=tuple(segments),
            audio_ms=audio_ms,
        )
