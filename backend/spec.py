"""
BEHAVIORAL CONSTANTS
--------------------
Single source of truth for all behavioral constants of the voice client.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Audio Format (PCM16 mono @ 16kHz)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_BLOCK_MS: Final[int] = 100

AUDIO_SAMPLES_PER_BLOCK: Final[int] = (AUDIO_SAMPLE_RATE_HZ * AUDIO_BLOCK_MS) // 1000

# =============================================================================
# Turn-taking: silence detection
# =============================================================================

SILENCE_THRESHOLD_MIN_MS: Final[int] = 500
SILENCE_THRESHOLD_MAX_MS: Final[int] = 5_000
SILENCE_THRESHOLD_DEFAULT_MS: Final[int] = 1_500

# Recovers a listening session that never heard any speech.
# Superseded by the silence countdown once any partial text is observed.
NO_SPEECH_GUARD_MS: Final[int] = 10_000

# =============================================================================
# Turn-taking: reply wait
# =============================================================================

RESPONSE_WAIT_TIMEOUT_MS: Final[int] = 30_000

# =============================================================================
# Conversation history
# =============================================================================

MESSAGE_HISTORY_CAPACITY: Final[int] = 50

# =============================================================================
# Gateway protocol (v3)
# =============================================================================

GATEWAY_PROTOCOL_VERSION: Final[int] = 3
GATEWAY_URL_SCHEMES: Final[Tuple[str, ...]] = ("ws://", "wss://")

GATEWAY_REQUEST_TIMEOUT_MS: Final[int] = 30_000
GATEWAY_RECONNECT_DELAY_MS: Final[int] = 5_000
GATEWAY_TICK_INTERVAL_DEFAULT_MS: Final[int] = 15_000

GATEWAY_REQUEST_ID_PREFIX: Final[str] = "rn"
GATEWAY_CHAT_SESSION: Final[str] = "main"

GATEWAY_CLIENT_ID: Final[str] = "openclaw-voice-python"
GATEWAY_CLIENT_VERSION: Final[str] = "0.1.0"
GATEWAY_CLIENT_PLATFORM: Final[str] = "python"
GATEWAY_CLIENT_MODE: Final[str] = "operator"
GATEWAY_ROLE: Final[str] = "operator"
GATEWAY_SCOPES: Final[Tuple[str, ...]] = ("operator.read", "operator.write")
GATEWAY_LOCALE: Final[str] = "en-US"

# Events surfaced as assistant replies; chat.stream partials are ignored.
GATEWAY_REPLY_EVENTS: Final[Tuple[str, ...]] = ("chat", "chat.reply")

# =============================================================================
# Transcription (on-device Whisper)
# =============================================================================

WHISPER_MODEL_DEFAULT: Final[str] = "tiny"
WHISPER_LANGUAGE: Final[str] = "en"

# Max recording window; older audio is trimmed from the decode buffer.
TRANSCRIBE_MAX_WINDOW_S: Final[float] = 30.0
PARTIAL_DECODE_MIN_INTERVAL_MS: Final[int] = 750
SPEECH_RMS_THRESHOLD: Final[float] = 0.01

# =============================================================================
# Synthesis
# =============================================================================

TTS_RATE_MIN: Final[float] = 0.5
TTS_RATE_MAX: Final[float] = 2.0
TTS_RATE_DEFAULT: Final[float] = 1.0
TTS_VOICE_DEFAULT: Final[str] = "sarah"

# Bytes read per provider response chunk before playback.
TTS_PROVIDER_CHUNK_SIZE: Final[int] = 4096
