# pylint: disable=missing-module-docstring,missing-function-docstring
import numpy as np

from audio.pcm import float32_to_pcm16le, pcm16le_to_float32, rms


def test_pcm16_to_float_range() -> None:
    pcm = np.array([0, 16384, -32768, 32767], dtype="<i2").tobytes()
    audio = pcm16le_to_float32(pcm)

    assert audio.dtype == np.float32
    assert audio[0] == 0.0
    assert audio[1] == 0.5
    assert audio[2] == -1.0
    assert audio[3] < 1.0


def test_odd_trailing_byte_is_dropped() -> None:
    assert pcm16le_to_float32(b"\x00\x00\x01").shape == (1,)


def test_float_to_pcm16_clips() -> None:
    pcm = float32_to_pcm16le(np.array([2.0, -2.0], dtype=np.float32))
    assert np.frombuffer(pcm, dtype="<i2").tolist() == [32767, -32767]


def test_rms() -> None:
    assert rms(np.zeros(0, dtype=np.float32)) == 0.0
    assert rms(np.full(100, 0.5, dtype=np.float32)) == 0.5
