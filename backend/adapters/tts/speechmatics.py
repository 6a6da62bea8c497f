"""
Speechmatics TTS adapter with local playback.

Role in the system:
- Receives the full assistant reply text.
- Performs one Speechmatics synthesis call (raw PCM16 16 kHz mono).
- Plays the audio on the default output device via sounddevice.
- speak() returns when playback finishes or stop() is called.

Architectural constraints:
- No retries, timers, or orchestration decisions.
- Speaking rate is applied as a playback sample-rate scale
  (0.5 - 2.0; pitch shifts with rate).

Concurrency & cancellation:
- Provider I/O runs as a task on the event loop that stop() cancels;
  playback runs in a worker thread that checks a threading.Event
  between blocks.
- stop() is idempotent; an interrupted speak() returns normally.
"""
from __future__ import annotations

import asyncio
import threading
import time
from typing import Any, Callable

from speechmatics.tts import AsyncClient, OutputFormat, Voice # pyright: ignore[reportMissingTypeStubs] # pylint: disable=no-name-in-module, import-error

from adapters.tts.base import SynthesisAdapter, SynthesisError
from config import clamp_tts_rate
from observability.logger import log_event
from spec import (
    AUDIO_BLOCK_MS,
    AUDIO_CHANNELS,
    AUDIO_SAMPLE_RATE_HZ,
    AUDIO_SAMPLE_WIDTH_BYTES,
    TTS_PROVIDER_CHUNK_SIZE,
    TTS_RATE_DEFAULT,
    TTS_VOICE_DEFAULT,
)


# pcm_bytes, sample_rate_hz, stop_event
PlayFn = Callable[[bytes, int, threading.Event], None]


def play_pcm16(pcm_bytes: bytes, sample_rate_hz: int, stop_event: threading.Event) -> None:
    """
    Blocking sounddevice playback of PCM16 mono audio.

    Writes one block at a time so stop_event is honoured within a block.
    """
    import sounddevice as sd  # pylint: disable=import-outside-toplevel

    block_bytes = (
        (sample_rate_hz * AUDIO_BLOCK_MS) // 1000
    ) * AUDIO_SAMPLE_WIDTH_BYTES * AUDIO_CHANNELS

    with sd.RawOutputStream(
        samplerate=sample_rate_hz,
        channels=AUDIO_CHANNELS,
        dtype="int16",
    ) as stream:
        for start in range(0, len(pcm_bytes), block_bytes):
            if stop_event.is_set():
                stream.abort()
                return
            stream.write(pcm_bytes[start:start + block_bytes])


class SpeechmaticsSynthesisAdapter(SynthesisAdapter):
    """
    Speechmatics TTS + local playback.

    Design:
    - One utterance at a time; speak() while speaking stops the previous one
    - Provider output is collected, then played
    """

    _VOICE_MAP: dict[str, Voice] = {
        "sarah": Voice.SARAH,
        "theo": Voice.THEO,
        "megan": Voice.MEGAN,
    }

    def __init__(
        self,
        *,
        api_key: str,
        voice: str = TTS_VOICE_DEFAULT,
        rate: float = TTS_RATE_DEFAULT,
        session_id: str | None = None,
        play_fn: PlayFn | None = None,
        client_factory: Callable[[], Any] | None = None,
    ) -> None:
        self._api_key = api_key
        self._voice = self._resolve_voice(voice)
        self._rate = clamp_tts_rate(rate)
        self._session_id = session_id
        self._play_fn = play_fn or play_pcm16
        self._client_factory = client_factory or (lambda: AsyncClient(api_key=self._api_key))

        self._stop_event: threading.Event | None = None
        self._fetch_task: asyncio.Task[bytes] | None = None

    # ------------------------------------------------------------------
    # Public API (SynthesisAdapter contract)
    # ------------------------------------------------------------------

    @property
    def is_speaking(self) -> bool:
        return self._stop_event is not None

    @property
    def rate(self) -> float:
        return self._rate

    def set_rate(self, rate: float) -> float:
        """Clamp and apply from the next utterance."""
        self._rate = clamp_tts_rate(rate)
        return self._rate

    async def speak(self, text: str) -> None:
        if not text.strip():
            return

        await self.stop()
        stop_event = threading.Event()
        self._stop_event = stop_event
        # stop() cancels the fetch so a stalled provider cannot hold speak().
        fetch = asyncio.create_task(
            self._synthesize(text, stop_event), name="synthesis_fetch"
        )
        self._fetch_task = fetch

        try:
            t0 = time.monotonic_ns()
            await asyncio.wait({fetch})
            synth_ms = (time.monotonic_ns() - t0) // 1_000_000

            if fetch.cancelled() or stop_event.is_set():
                return
            pcm = fetch.result()
            if not pcm:
                return

            sample_rate_hz = int(AUDIO_SAMPLE_RATE_HZ * self._rate)
            log_event({
                "event_type": "synthesis_playback_started",
                "session_id": self._session_id,
                "chars": len(text),
                "synth_ms": synth_ms,
                "audio_ms": (len(pcm) // AUDIO_SAMPLE_WIDTH_BYTES) * 1000 // AUDIO_SAMPLE_RATE_HZ,
                "rate": self._rate,
            })

            await asyncio.to_thread(self._play_fn, pcm, sample_rate_hz, stop_event)

        except asyncio.CancelledError:
            stop_event.set()
            fetch.cancel()
            raise

        except SynthesisError:
            raise

        except Exception as exc:
            raise SynthesisError(f"{type(exc).__name__}: {exc}") from exc

        finally:
            if self._stop_event is stop_event:
                self._stop_event = None
            if self._fetch_task is fetch:
                self._fetch_task = None

    async def stop(self) -> None:
        stop_event = self._stop_event
        self._stop_event = None
        fetch = self._fetch_task
        self._fetch_task = None
        if fetch is not None and not fetch.done():
            fetch.cancel()
        if stop_event is not None and not stop_event.is_set():
            stop_event.set()
            log_event({
                "event_type": "synthesis_stopped",
                "session_id": self._session_id,
            })

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _synthesize(self, text: str, stop_event: threading.Event) -> bytes:
        """Fetch raw PCM16 16 kHz audio; returns early (partial) if stopped."""
        parts: list[bytes] = []
        carry = b""

        async with self._client_factory() as client:
            async with await client.generate(
                text=text,
                voice=self._voice,
                output_format=OutputFormat.RAW_PCM_16000,
            ) as response:
                async for chunk in response.content.iter_chunked(TTS_PROVIDER_CHUNK_SIZE):
                    if stop_event.is_set():
                        break

                    data = carry + chunk
                    if len(data) % 2 == 1:
                        carry = data[-1:]
                        data = data[:-1]
                    else:
                        carry = b""
                    parts.append(data)

        return b"".join(parts)

    @classmethod
    def _resolve_voice(cls, voice: str) -> Voice:
        """
        Convert user-facing voice string to Speechmatics Voice enum.

        Defaults to SARAH if unknown.
        """
        return cls._VOICE_MAP.get(voice.lower(), Voice.SARAH)
