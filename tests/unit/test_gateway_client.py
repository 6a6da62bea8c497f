# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring
import asyncio
import json
from typing import Any, AsyncIterator

import pytest

from config import GatewayConfig
from session import gateway as gateway_mod
from session.connection_status import ConnectionState
from session.gateway import (
    ConnectionLost,
    GatewayClient,
    GatewayRequestError,
    NotConnected,
    RequestTimeout,
)

from fakes import until


_END = object()

CONFIG = GatewayConfig.create("ws://127.0.0.1:18789", "secret-token")


class FakeWebSocket:
    """In-memory channel: tests push inbound frames and inspect sent requests."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.answered: set[str] = set()
        self.closed = False
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(_END)

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[str]:
        while True:
            item = await self._inbox.get()
            if item is _END:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    # -- test controls --

    def push(self, frame: dict[str, Any]) -> None:
        self._inbox.put_nowait(json.dumps(frame))

    def push_raw(self, raw: str) -> None:
        self._inbox.put_nowait(raw)

    def drop(self, error: BaseException | None = None) -> None:
        self._inbox.put_nowait(error if error is not None else _END)

    def pending(self, method: str) -> dict[str, Any] | None:
        for frame in self.sent:
            if frame["method"] == method and frame["id"] not in self.answered:
                return frame
        return None

    def methods(self) -> list[str]:
        return [frame["method"] for frame in self.sent]


class Connector:
    def __init__(self) -> None:
        self.sockets: list[FakeWebSocket] = []
        self.urls: list[str] = []
        self.fail = False

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if self.fail:
            raise OSError("connection refused")
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws

    @property
    def ws(self) -> FakeWebSocket:
        return self.sockets[-1]


async def answer(
    ws: FakeWebSocket,
    method: str,
    payload: dict[str, Any] | None = None,
    *,
    ok: bool = True,
    error: dict[str, Any] | None = None,
) -> dict[str, Any]:
    await until(lambda: ws.pending(method) is not None)
    request = ws.pending(method)
    assert request is not None
    ws.answered.add(request["id"])

    frame: dict[str, Any] = {"type": "res", "id": request["id"], "ok": ok}
    if ok:
        frame["payload"] = payload or {}
    else:
        frame["error"] = error or {}
    ws.push(frame)
    return request


async def handshake(
    client: GatewayClient,
    connector: Connector,
    *,
    nonce: str | None = "nonce-1",
    tick_ms: int | None = 60_000,
) -> dict[str, Any]:
    """tick_ms=None answers connect without a policy."""
    await client.connect(CONFIG)
    ws = connector.ws
    challenge: dict[str, Any] = {} if nonce is None else {"nonce": nonce}
    ws.push({"type": "event", "event": "connect.challenge", "payload": challenge})

    hello: dict[str, Any] = {"protocol": 3}
    if tick_ms is not None:
        hello["policy"] = {"tickIntervalMs": tick_ms}
    connect_req = await answer(ws, "connect", hello)
    await answer(ws, "chat.subscribe")
    await until(lambda: client.state is ConnectionState.CONNECTED)
    return connect_req


@pytest.fixture
def connector() -> Connector:
    return Connector()


@pytest.fixture
async def client(connector: Connector) -> AsyncIterator[GatewayClient]:
    gw = GatewayClient(
        connect_fn=connector,
        session_id="test",
        request_timeout_ms=200,
        reconnect_delay_ms=20,
    )
    yield gw
    await gw.disconnect()


# ---------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------

async def test_handshake_sends_connect_params(client: GatewayClient, connector: Connector) -> None:
    states: list[ConnectionState] = []
    client.on_state_change(states.append)

    request = await handshake(client, connector, nonce="abc")

    assert connector.urls == [CONFIG.url]
    assert request["id"] == "rn-1"
    params = request["params"]
    assert params["minProtocol"] == 3
    assert params["maxProtocol"] == 3
    assert params["client"]["id"] == "openclaw-voice-python"
    assert params["client"]["mode"] == "operator"
    assert params["role"] == "operator"
    assert params["scopes"] == ["operator.read", "operator.write"]
    assert params["auth"] == {"token": "secret-token"}
    assert params["device"] == {"nonce": "abc"}

    subscribe = [f for f in connector.ws.sent if f["method"] == "chat.subscribe"][0]
    assert subscribe["params"] == {"session": "main"}
    assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
    assert client.is_connected


async def test_handshake_without_nonce_omits_device(
    client: GatewayClient, connector: Connector
) -> None:
    request = await handshake(client, connector, nonce=None)
    assert "device" not in request["params"]


async def test_rejected_handshake_sets_error(client: GatewayClient, connector: Connector) -> None:
    await client.connect(CONFIG)
    connector.ws.push({"type": "event", "event": "connect.challenge", "payload": {}})
    await answer(
        connector.ws, "connect", ok=False, error={"code": "AUTH", "message": "bad token"}
    )

    await until(lambda: client.state is ConnectionState.ERROR)
    assert "chat.subscribe" not in connector.ws.methods()


async def test_keepalive_tick_uses_policy_interval(
    client: GatewayClient, connector: Connector
) -> None:
    await handshake(client, connector, tick_ms=10)

    await until(lambda: connector.ws.pending("tick") is not None, delay=0.005)

    tick = connector.ws.pending("tick")
    assert tick is not None
    assert tick["params"] == {}


async def test_keepalive_defaults_to_15s_without_policy(
    client: GatewayClient, connector: Connector, monkeypatch: pytest.MonkeyPatch
) -> None:
    events: list[dict[str, Any]] = []
    monkeypatch.setattr(gateway_mod, "log_event", events.append)

    await handshake(client, connector, tick_ms=None)

    connected = [e for e in events if e["event_type"] == "gateway_connected"]
    assert connected[0]["tick_interval_ms"] == 15_000
    assert connector.ws.pending("tick") is None


async def test_default_timing(connector: Connector, monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[dict[str, Any]] = []
    monkeypatch.setattr(gateway_mod, "log_event", events.append)
    gw = GatewayClient(connect_fn=connector)

    assert gw.request_timeout_ms == 30_000
    assert gw.reconnect_delay_ms == 5_000

    await handshake(gw, connector)
    connector.ws.drop(OSError("network down"))
    await until(lambda: gw.reconnect_scheduled)

    scheduled = [e for e in events if e["event_type"] == "gateway_reconnect_scheduled"]
    assert scheduled[0]["delay_ms"] == 5_000
    assert len(connector.sockets) == 1

    await gw.disconnect()
    assert not gw.reconnect_scheduled


# ---------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------

async def test_send_message_requires_connection(client: GatewayClient) -> None:
    with pytest.raises(NotConnected):
        await client.send_message("hello")


async def test_send_message_resolves_on_ack(client: GatewayClient, connector: Connector) -> None:
    await handshake(client, connector)

    send = asyncio.create_task(client.send_message("hello"))
    request = await answer(connector.ws, "chat.send", {"runId": "r1"})
    await send

    assert request["params"] == {"session": "main", "text": "hello"}
    assert client.pending_count == 0


async def test_request_ids_are_sequential(client: GatewayClient, connector: Connector) -> None:
    await handshake(client, connector)

    ids = [f["id"] for f in connector.ws.sent]
    assert ids == ["rn-1", "rn-2"]


async def test_request_timeout(client: GatewayClient, connector: Connector) -> None:
    await handshake(client, connector)

    with pytest.raises(RequestTimeout):
        await client.request("chat.send", {"text": "x"}, timeout_ms=20)

    assert client.pending_count == 0
    assert client.is_connected


async def test_late_response_after_timeout_is_ignored(
    client: GatewayClient, connector: Connector
) -> None:
    await handshake(client, connector)

    with pytest.raises(RequestTimeout):
        await client.request("slow", timeout_ms=10)
    await answer(connector.ws, "slow")
    await asyncio.sleep(0)

    assert client.is_connected


async def test_error_response_raises(client: GatewayClient, connector: Connector) -> None:
    await handshake(client, connector)

    send = asyncio.create_task(client.send_message("hello"))
    await answer(connector.ws, "chat.send", ok=False, error={"code": "BUSY", "message": "try later"})

    with pytest.raises(GatewayRequestError) as info:
        await send
    assert info.value.code == "BUSY"


# ---------------------------------------------------------------------
# Replies
# ---------------------------------------------------------------------

async def test_reply_filtering(client: GatewayClient, connector: Connector) -> None:
    replies: list[tuple[str, str | None]] = []
    client.on_reply(lambda text, message_id: replies.append((text, message_id)))
    await handshake(client, connector)
    ws = connector.ws

    ws.push({"type": "event", "event": "chat", "payload": {"role": "user", "text": "echo"}})
    ws.push({"type": "event", "event": "chat", "payload": {"role": "assistant", "text": ""}})
    ws.push({"type": "event", "event": "chat.stream", "payload": {"text": "hi th"}})
    ws.push({"type": "event", "event": "presence", "payload": {}})
    ws.push({
        "type": "event",
        "event": "chat",
        "payload": {"role": "assistant", "text": "hi there", "messageId": "m1"},
    })
    ws.push({"type": "event", "event": "chat.reply", "payload": {"text": "also hi"}})
    ws.push({"type": "event", "event": "chat.reply", "payload": {"role": "system", "text": "no"}})

    await until(lambda: len(replies) >= 2)
    await asyncio.sleep(0)

    assert replies == [("hi there", "m1"), ("also hi", None)]


async def test_malformed_frames_are_dropped(client: GatewayClient, connector: Connector) -> None:
    replies: list[str] = []
    client.on_reply(lambda text, _mid: replies.append(text))
    await handshake(client, connector)

    connector.ws.push_raw("not json")
    connector.ws.push_raw("[1, 2]")
    connector.ws.push({"type": "mystery"})
    connector.ws.push({"type": "event", "event": "chat", "payload": {"role": "assistant", "text": "ok"}})

    await until(lambda: replies == ["ok"])
    assert client.is_connected


# ---------------------------------------------------------------------
# Channel loss
# ---------------------------------------------------------------------

async def test_channel_error_fails_pending_and_reconnects(
    client: GatewayClient, connector: Connector
) -> None:
    await handshake(client, connector)

    send = asyncio.create_task(client.send_message("hello"))
    await until(lambda: connector.ws.pending("chat.send") is not None)

    connector.ws.drop(RuntimeError("network down"))

    with pytest.raises(ConnectionLost):
        await send
    assert client.state is ConnectionState.ERROR
    assert client.pending_count == 0
    assert client.reconnect_scheduled

    await until(lambda: len(connector.sockets) == 2, delay=0.005)
    assert connector.urls == [CONFIG.url, CONFIG.url]
    assert client.state is ConnectionState.CONNECTING


async def test_clean_close_goes_disconnected(client: GatewayClient, connector: Connector) -> None:
    await handshake(client, connector)

    connector.ws.drop()

    await until(lambda: client.state is ConnectionState.DISCONNECTED)
    assert client.reconnect_scheduled


async def test_disconnect_is_explicit_teardown(
    client: GatewayClient, connector: Connector
) -> None:
    await handshake(client, connector)
    ws = connector.ws

    await client.disconnect()

    assert ws.closed
    assert client.state is ConnectionState.DISCONNECTED
    assert not client.reconnect_scheduled
    await asyncio.sleep(0.05)
    assert len(connector.sockets) == 1


async def test_connect_failure_sets_error_and_retries(
    client: GatewayClient, connector: Connector
) -> None:
    connector.fail = True

    await client.connect(CONFIG)

    assert client.state is ConnectionState.ERROR
    assert client.reconnect_scheduled

    connector.fail = False
    await until(lambda: len(connector.sockets) == 1, delay=0.005)
    assert client.state is ConnectionState.CONNECTING


async def test_reconnect_superseded_by_new_connect(
    client: GatewayClient, connector: Connector
) -> None:
    await handshake(client, connector)
    connector.ws.drop(RuntimeError("boom"))
    await until(lambda: client.reconnect_scheduled)

    other = GatewayConfig.create("wss://gateway.example", "token-2")
    await client.connect(other)
    await asyncio.sleep(0.05)

    assert connector.urls == [CONFIG.url, other.url]
