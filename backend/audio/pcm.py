"""PCM conversion utilities."""
import numpy as np


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    Runtime-safe, adapter-agnostic utility.
    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; caller should treat as malformed frame upstream.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")  # little-endian int16
    audio_f32 = audio_i16.astype(np.float32) / 32768.0
    return audio_f32


def float32_to_pcm16le(audio_f32: np.ndarray) -> bytes:
    """
    Inverse of pcm16le_to_float32.

    Clips first, so +1.0 maps to 32767 rather than wrapping to -32768.
    """
    audio_f32 = np.clip(audio_f32, -1.0, 1.0)
    audio_i16 = np.round(audio_f32 * 32767.0).astype("<i2")
    return audio_i16.tobytes()


def rms(audio_f32: np.ndarray) -> float:
    """Root-mean-square energy of a float32 signal (0.0 for empty input)."""
    if audio_f32.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(audio_f32, dtype=np.float64))))
