"""
Microphone transcription adapter (sounddevice + faster-whisper).

This adapter owns the ASR-layer mechanics:
- microphone capture (sounddevice input stream, 16 kHz mono PCM16)
- buffering (bounded recording window, oldest audio trimmed)
- partial decode cadence (rate-limited, energy-gated re-decode)
- final decode on stop()

It must NOT:
- decide when a turn ends (the reducer's silence timer does)
- know about run IDs, sessions, or the gateway

Design notes:
- Whisper is not truly streaming; partials are best-effort re-decodes of the
  whole buffered recording.
- transcribe() is blocking; it runs in a worker thread.
- sounddevice delivers blocks on its own thread; they are handed to the
  event loop with call_soon_threadsafe, so all session state is loop-owned.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Protocol

import numpy as np
from numpy.typing import NDArray

from adapters.asr.base import (
    PartialCallback,
    TranscriptionAdapter,
    TranscriptionBusy,
    TranscriptionError,
    TranscriptionNotReady,
    TranscriptionSession,
)
from adapters.asr.whisper_engine import WhisperBackendError, WhisperEngine
from audio.pcm import pcm16le_to_float32, rms
from observability.logger import log_event
from spec import (
    AUDIO_CHANNELS,
    AUDIO_SAMPLE_RATE_HZ,
    AUDIO_SAMPLES_PER_BLOCK,
    PARTIAL_DECODE_MIN_INTERVAL_MS,
    SPEECH_RMS_THRESHOLD,
    TRANSCRIBE_MAX_WINDOW_S,
    WHISPER_LANGUAGE,
    WHISPER_MODEL_DEFAULT,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


class InputStreamLike(Protocol):
    def start(self) -> None: ...
    def stop(self) -> None: ...
    def close(self) -> None: ...


BlockSink = Callable[[bytes], None]
StreamFactory = Callable[[BlockSink], InputStreamLike]


def open_microphone(device: int | str | None = None) -> StreamFactory:
    """Return a factory for sounddevice raw input streams on `device`."""

    def _factory(sink: BlockSink) -> InputStreamLike:
        import sounddevice as sd  # pylint: disable=import-outside-toplevel

        def _callback(indata: Any, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
            if status:
                log_event({
                    "level": "DEBUG",
                    "event_type": "microphone_status",
                    "status": str(status),
                })
            # Copy: sounddevice reuses the buffer after the callback returns.
            sink(bytes(indata))

        return sd.RawInputStream(
            samplerate=AUDIO_SAMPLE_RATE_HZ,
            channels=AUDIO_CHANNELS,
            dtype="int16",
            blocksize=AUDIO_SAMPLES_PER_BLOCK,
            device=device,
            callback=_callback,
        )

    return _factory


class _MicrophoneSession(TranscriptionSession):
    """
    One recording: microphone open from start() until stop().

    All methods run on the event loop thread.
    """

    def __init__(
        self,
        *,
        adapter: MicrophoneTranscriptionAdapter,
        engine: WhisperEngine,
        on_partial: PartialCallback,
    ) -> None:
        self._adapter = adapter
        self._engine = engine
        self._on_partial = on_partial
        self._stream: InputStreamLike | None = None

        self._chunks: list[NDArray[np.float32]] = []
        self._samples = 0
        self._speech_seen = False
        self._last_decode_ts_ms = 0
        self._last_partial = ""
        self._decode_task: asyncio.Task[None] | None = None
        self._closed = False

    def attach_stream(self, stream: InputStreamLike) -> None:
        self._stream = stream

    # ------------------------------------------------------------------
    # Audio ingress
    # ------------------------------------------------------------------

    def feed(self, pcm_bytes: bytes) -> None:
        """Append one captured block; may schedule a partial decode."""
        if self._closed:
            return

        block = pcm16le_to_float32(pcm_bytes)
        self._chunks.append(block)
        self._samples += int(block.shape[0])
        self._trim_window()

        if not self._speech_seen and rms(block) >= SPEECH_RMS_THRESHOLD:
            self._speech_seen = True

        if not self._speech_seen:
            return

        now = _now_ms()
        if (now - self._last_decode_ts_ms) < PARTIAL_DECODE_MIN_INTERVAL_MS:
            return
        if self._decode_task is not None and not self._decode_task.done():
            return

        self._last_decode_ts_ms = now
        self._decode_task = asyncio.create_task(self._partial_decode_task())

    def _trim_window(self) -> None:
        max_samples = int(TRANSCRIBE_MAX_WINDOW_S * AUDIO_SAMPLE_RATE_HZ)
        while self._chunks and self._samples > max_samples:
            head = self._chunks[0]
            excess = self._samples - max_samples
            if head.shape[0] <= excess:
                self._chunks.pop(0)
                self._samples -= int(head.shape[0])
            else:
                self._chunks[0] = head[excess:]
                self._samples -= excess

    def _audio(self) -> NDArray[np.float32]:
        if not self._chunks:
            return np.zeros((0,), dtype=np.float32)
        return np.concatenate(self._chunks, axis=0)

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    async def _partial_decode_task(self) -> None:
        audio = self._audio()
        try:
            result = await asyncio.to_thread(self._engine.transcribe, audio)
        except WhisperBackendError as e:
            log_event({
                "level": "WARNING",
                "event_type": "transcription_partial_failed",
                "error": str(e),
            })
            return

        if self._closed:
            return

        text = result.text.strip()
        if not text or text == self._last_partial:
            return

        self._last_partial = text
        self._on_partial(text)

    # ------------------------------------------------------------------
    # TranscriptionSession
    # ------------------------------------------------------------------

    async def stop(self) -> str:
        if self._closed:
            return ""
        self._close()

        if not self._speech_seen:
            return ""

        audio = self._audio()
        try:
            result = await asyncio.to_thread(self._engine.transcribe, audio)
        except WhisperBackendError as e:
            raise TranscriptionError(str(e)) from e

        log_event({
            "event_type": "transcription_final",
            "audio_ms": result.audio_ms,
            "text_len": len(result.text),
        })
        return result.text.strip()

    def abort(self) -> None:
        """Close without a final decode (restart, stop and force_stop paths)."""
        if not self._closed:
            self._close()
            self._chunks.clear()
            self._samples = 0

    def _close(self) -> None:
        self._closed = True

        if self._decode_task is not None and not self._decode_task.done():
            self._decode_task.cancel()
        self._decode_task = None

        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "level": "WARNING",
                    "event_type": "microphone_close_failed",
                    "error": repr(exc),
                })

        self._adapter.release(self)


class MicrophoneTranscriptionAdapter(TranscriptionAdapter):
    """
    On-device speech-to-text: microphone -> faster-whisper.

    initialize() loads the model (in a thread); start() opens the
    microphone and returns a session whose stop() yields the final text.
    """

    def __init__(
        self,
        *,
        model: str = WHISPER_MODEL_DEFAULT,
        device: str | None = None,
        compute_type: str | None = None,
        language: str | None = WHISPER_LANGUAGE,
        engine_factory: Callable[[], WhisperEngine] | None = None,
        stream_factory: StreamFactory | None = None,
        session_id: str | None = None,
    ) -> None:
        self._engine_factory = engine_factory or (
            lambda: WhisperEngine(
                model=model,
                device=device,
                compute_type=compute_type,
                language=language,
            )
        )
        self._stream_factory = stream_factory or open_microphone()
        self._session_id = session_id
        self._model_name = model

        self._engine: WhisperEngine | None = None
        self._active: _MicrophoneSession | None = None

    @property
    def is_ready(self) -> bool:
        return self._engine is not None

    @property
    def is_listening(self) -> bool:
        return self._active is not None

    async def initialize(self) -> None:
        if self._engine is not None:
            return

        t0 = time.monotonic_ns()
        self._engine = await asyncio.to_thread(self._engine_factory)
        log_event({
            "event_type": "transcription_model_loaded",
            "session_id": self._session_id,
            "model": self._model_name,
            "load_ms": (time.monotonic_ns() - t0) // 1_000_000,
        })

    async def start(self, on_partial: PartialCallback) -> TranscriptionSession:
        if self._engine is None:
            raise TranscriptionNotReady("Transcription model is not initialized")
        if self._active is not None:
            raise TranscriptionBusy("A transcription session is already active")

        loop = asyncio.get_running_loop()
        session = _MicrophoneSession(
            adapter=self,
            engine=self._engine,
            on_partial=on_partial,
        )

        def _sink(pcm_bytes: bytes) -> None:
            loop.call_soon_threadsafe(session.feed, pcm_bytes)

        try:
            stream = self._stream_factory(_sink)
            stream.start()
        except Exception as e:
            raise TranscriptionError(f"Could not open microphone: {e!r}") from e

        session.attach_stream(stream)
        self._active = session

        log_event({
            "event_type": "transcription_session_started",
            "session_id": self._session_id,
        })
        return session

    async def force_stop(self) -> None:
        session = self._active
        if session is not None:
            session.abort()
        self._active = None

    def release(self, session: _MicrophoneSession) -> None:
        """Called by a session when it closes."""
        if self._active is session:
            self._active = None
