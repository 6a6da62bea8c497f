"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Validate ranges and formats (gateway URL scheme, silence threshold, speech rate)
- Provide a typed, immutable config object

Non-responsibilities:
- No orchestration logic
- No protocol constants
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from spec import (
    GATEWAY_URL_SCHEMES,
    SILENCE_THRESHOLD_DEFAULT_MS,
    SILENCE_THRESHOLD_MAX_MS,
    SILENCE_THRESHOLD_MIN_MS,
    TTS_RATE_DEFAULT,
    TTS_RATE_MAX,
    TTS_RATE_MIN,
    TTS_VOICE_DEFAULT,
    WHISPER_MODEL_DEFAULT,
)


class ConfigError(ValueError):
    """Raised when a configuration value is missing or malformed."""


# ------------------------------------------------------------------
# Validation helpers
# ------------------------------------------------------------------

def clamp_silence_threshold_ms(ms: int) -> int:
    """Clamp a silence threshold into [SILENCE_THRESHOLD_MIN_MS, SILENCE_THRESHOLD_MAX_MS]."""
    return max(SILENCE_THRESHOLD_MIN_MS, min(SILENCE_THRESHOLD_MAX_MS, int(ms)))


def clamp_tts_rate(rate: float) -> float:
    return max(TTS_RATE_MIN, min(TTS_RATE_MAX, float(rate)))


def validate_gateway_url(url: str) -> str:
    """
    Return the stripped URL if it uses a WebSocket scheme.

    Raises:
        ConfigError if empty or not ws:// / wss://
    """
    url = url.strip()
    if not url:
        raise ConfigError("Gateway URL is required")
    if not url.startswith(GATEWAY_URL_SCHEMES):
        raise ConfigError("Gateway URL must start with ws:// or wss://")
    return url


@dataclass(frozen=True)
class GatewayConfig:
    """
    Connection target + credential for one gateway session.

    Immutable for the lifetime of a connection attempt; changing it
    means tearing down and re-establishing the session.
    """

    url: str
    token: str

    @staticmethod
    def create(url: str, token: str) -> GatewayConfig:
        token = token.strip()
        if not token:
            raise ConfigError("Gateway token is required")
        return GatewayConfig(url=validate_gateway_url(url), token=token)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the voice session (gateway, adapters, orchestrator).
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Gateway
    # ------------------------------------------------------------------

    gateway: GatewayConfig

    # ------------------------------------------------------------------
    # Turn-taking
    # ------------------------------------------------------------------

    silence_threshold_ms: int

    # ------------------------------------------------------------------
    # Transcription
    # ------------------------------------------------------------------

    whisper_model: str
    whisper_device: str | None
    whisper_compute_type: str | None

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------

    tts_rate: float
    speechmatics_api_key: str | None
    speechmatics_voice: str

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env(environ: Mapping[str, str] | None = None) -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ConfigError if required variables are missing or malformed.
        """
        env = os.environ if environ is None else environ

        try:
            silence_ms = int(env.get("SILENCE_THRESHOLD_MS", SILENCE_THRESHOLD_DEFAULT_MS))
        except ValueError as e:
            raise ConfigError(f"SILENCE_THRESHOLD_MS must be an integer: {e}") from e

        try:
            tts_rate = float(env.get("TTS_RATE", TTS_RATE_DEFAULT))
        except ValueError as e:
            raise ConfigError(f"TTS_RATE must be a number: {e}") from e

        return AppConfig(
            env=env.get("ENV", "dev"),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),

            gateway=GatewayConfig.create(
                url=env.get("GATEWAY_URL", ""),
                token=env.get("GATEWAY_TOKEN", ""),
            ),

            silence_threshold_ms=clamp_silence_threshold_ms(silence_ms),

            whisper_model=env.get("WHISPER_MODEL", WHISPER_MODEL_DEFAULT),
            whisper_device=env.get("WHISPER_DEVICE"),
            whisper_compute_type=env.get("WHISPER_COMPUTE_TYPE"),

            tts_rate=clamp_tts_rate(tts_rate),
            speechmatics_api_key=env.get("SPEECHMATICS_API_KEY"),
            speechmatics_voice=env.get("SPEECHMATICS_VOICE", TTS_VOICE_DEFAULT),

            enable_json_logs=env.get("ENABLE_JSON_LOGS", "1") == "1",
        )
