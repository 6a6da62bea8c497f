# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring
import asyncio
import threading
from typing import Any, AsyncIterator

import pytest
from speechmatics.tts import Voice # pyright: ignore[reportMissingTypeStubs] # pylint: disable=no-name-in-module, import-error

from adapters.tts.base import SynthesisError
from adapters.tts.speechmatics import SpeechmaticsSynthesisAdapter

from fakes import until


class FakeContent:
    def __init__(self, chunks: list[bytes], stall: bool = False) -> None:
        self._chunks = chunks
        self._stall = stall
        self.reading = False

    async def iter_chunked(self, _size: int) -> AsyncIterator[bytes]:
        self.reading = True
        if self._stall:
            await asyncio.sleep(3600)
        for chunk in self._chunks:
            yield chunk


class FakeResponse:
    def __init__(self, content: FakeContent) -> None:
        self.content = content

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


class FakeClient:
    def __init__(self, chunks: list[bytes], fail: bool = False, stall: bool = False) -> None:
        self.content = FakeContent(chunks, stall=stall)
        self.fail = fail
        self.requests: list[dict[str, Any]] = []

    async def __aenter__(self) -> "FakeClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def generate(self, **kwargs: Any) -> FakeResponse:
        self.requests.append(kwargs)
        if self.fail:
            raise ConnectionError("provider unavailable")
        return FakeResponse(self.content)


class FakePlayer:
    def __init__(self, block: bool = False) -> None:
        self.block = block
        self.played: list[tuple[bytes, int]] = []

    def __call__(self, pcm: bytes, sample_rate_hz: int, stop_event: threading.Event) -> None:
        self.played.append((pcm, sample_rate_hz))
        if self.block:
            stop_event.wait(2.0)


def make_adapter(
    client: FakeClient, player: FakePlayer, **kwargs: Any
) -> SpeechmaticsSynthesisAdapter:
    return SpeechmaticsSynthesisAdapter(
        api_key="key",
        play_fn=player,
        client_factory=lambda: client,
        **kwargs,
    )


async def test_speak_plays_provider_audio() -> None:
    client = FakeClient([b"\x01", b"\x02\x03\x04"])
    player = FakePlayer()
    adapter = make_adapter(client, player)

    await adapter.speak("hi there")

    assert client.requests[0]["text"] == "hi there"
    assert client.requests[0]["voice"] == Voice.SARAH
    assert player.played == [(b"\x01\x02\x03\x04", 16000)]
    assert not adapter.is_speaking


async def test_rate_scales_playback_sample_rate() -> None:
    player = FakePlayer()
    adapter = make_adapter(FakeClient([b"\x00\x00"]), player, rate=1.5)

    await adapter.speak("hi")

    assert player.played[0][1] == 24000
    assert adapter.set_rate(5.0) == 2.0


async def test_blank_text_is_not_sent() -> None:
    client = FakeClient([b"\x00\x00"])
    player = FakePlayer()

    await make_adapter(client, player).speak("   ")

    assert client.requests == []
    assert player.played == []


async def test_stop_resolves_pending_speak() -> None:
    player = FakePlayer(block=True)
    adapter = make_adapter(FakeClient([b"\x00\x00" * 100]), player)

    speaking = asyncio.create_task(adapter.speak("a long answer"))
    await until(lambda: player.played, delay=0.005)
    assert adapter.is_speaking

    await adapter.stop()
    await asyncio.wait_for(speaking, 1.0)

    assert not adapter.is_speaking
    await adapter.stop()


async def test_provider_failure_raises_synthesis_error() -> None:
    adapter = make_adapter(FakeClient([], fail=True), FakePlayer())

    with pytest.raises(SynthesisError):
        await adapter.speak("hi")
    assert not adapter.is_speaking


async def test_unknown_voice_falls_back_to_sarah() -> None:
    client = FakeClient([b"\x00\x00"])
    await make_adapter(client, FakePlayer(), voice="THEO").speak("hi")
    await make_adapter(client, FakePlayer(), voice="nobody").speak("hi")

    assert [r["voice"] for r in client.requests] == [Voice.THEO, Voice.SARAH]


async def test_stop_resolves_speak_while_provider_stalls() -> None:
    client = FakeClient([b"\x00\x00"], stall=True)
    player = FakePlayer()
    adapter = make_adapter(client, player)

    speaking = asyncio.create_task(adapter.speak("hello there"))
    await until(lambda: client.content.reading, delay=0.005)
    assert adapter.is_speaking

    await adapter.stop()
    await asyncio.wait_for(speaking, 1.0)

    assert player.played == []
    assert not adapter.is_speaking
