"""
Gateway client (protocol v3 over WebSocket).

Responsibilities:
- Own the WebSocket channel to the remote gateway
- Challenge/nonce handshake (connect request with auth token)
- Request/response correlation with per-request timeout
- Keepalive tick at the server-specified interval
- chat.subscribe after connect; surface assistant replies to subscribers
- Track ConnectionState and schedule one reconnect after channel loss

Not responsible for:
- Turn-taking decisions (orchestrator)
- Correlating replies to turns: the protocol carries no turn id, so a
  reply is assumed to belong to the single outstanding chat.send
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from config import GatewayConfig
from observability.logger import log_event
from protocol.frames import (
    EventFrame,
    MalformedFrame,
    ResponseFrame,
    check_sequence_gap,
    decode_frame,
    encode_request,
)
from session.connection_status import ConnectionState
from session.listeners import Listeners, Unsubscribe
from spec import (
    GATEWAY_CHAT_SESSION,
    GATEWAY_CLIENT_ID,
    GATEWAY_CLIENT_MODE,
    GATEWAY_CLIENT_PLATFORM,
    GATEWAY_CLIENT_VERSION,
    GATEWAY_LOCALE,
    GATEWAY_PROTOCOL_VERSION,
    GATEWAY_RECONNECT_DELAY_MS,
    GATEWAY_REPLY_EVENTS,
    GATEWAY_REQUEST_ID_PREFIX,
    GATEWAY_REQUEST_TIMEOUT_MS,
    GATEWAY_ROLE,
    GATEWAY_SCOPES,
    GATEWAY_TICK_INTERVAL_DEFAULT_MS,
)


# -------------------------
# Exceptions
# -------------------------

class GatewayError(Exception):
    """Base class for gateway request failures."""


class NotConnected(GatewayError):
    """No open channel (or handshake not complete) when a request was made."""


class RequestTimeout(GatewayError):
    """No response arrived within the request timeout."""

    def __init__(self, method: str, timeout_ms: int) -> None:
        super().__init__(f"Request {method} timed out after {timeout_ms} ms")
        self.method = method
        self.timeout_ms = timeout_ms


class ConnectionLost(GatewayError):
    """The channel closed while the request was pending."""


class GatewayRequestError(GatewayError):
    """The gateway answered ok=false."""

    def __init__(self, code: str | None, message: str | None) -> None:
        super().__init__(message or "Unknown error")
        self.code = code
        self.message = message or "Unknown error"


# -------------------------
# Transport seam
# -------------------------

class WebSocketLike(Protocol):
    """The subset of a websockets client connection this module uses."""

    async def send(self, message: str) -> None: ...
    async def close(self) -> None: ...
    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


ConnectFn = Callable[[str], Awaitable[WebSocketLike]]
ReplyHandler = Callable[[str, "str | None"], None]
StateHandler = Callable[[ConnectionState], None]


async def _default_connect(url: str) -> WebSocketLike:
    return await ws_connect(
        url,
        max_size=2**22,
        # Liveness is the gateway-level tick, not WebSocket pings.
        ping_interval=None,
    )


# -------------------------
# Client
# -------------------------

class GatewayClient:
    """
    One logical session to the gateway.

    Channel generations: every connect()/disconnect() bumps a generation
    counter. Callbacks from an older channel (reader end, handshake,
    ticks) compare their generation and become no-ops once superseded.
    """

    def __init__(
        self,
        *,
        connect_fn: ConnectFn | None = None,
        session_id: str | None = None,
        request_timeout_ms: int = GATEWAY_REQUEST_TIMEOUT_MS,
        reconnect_delay_ms: int = GATEWAY_RECONNECT_DELAY_MS,
    ) -> None:
        self._connect_fn = connect_fn or _default_connect
        self._session_id = session_id
        self._request_timeout_ms = request_timeout_ms
        self._reconnect_delay_ms = reconnect_delay_ms

        self._config: GatewayConfig | None = None
        self._ws: WebSocketLike | None = None
        self._generation = 0
        self._state = ConnectionState.DISCONNECTED

        self._req_id = 0
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._last_seq: int | None = None

        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._tick_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

        self._state_listeners = Listeners("gateway_state", session_id)
        self._reply_listeners = Listeners("gateway_reply", session_id)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def config(self) -> GatewayConfig | None:
        return self._config

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def request_timeout_ms(self) -> int:
        return self._request_timeout_ms

    @property
    def reconnect_delay_ms(self) -> int:
        return self._reconnect_delay_ms

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def on_state_change(self, handler: StateHandler) -> Unsubscribe:
        return self._state_listeners.add(handler)

    def on_reply(self, handler: ReplyHandler) -> Unsubscribe:
        """handler(text, message_id) for each assistant reply event."""
        return self._reply_listeners.add(handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, config: GatewayConfig) -> None:
        """
        Open a channel to config.url and wait passively for the challenge.

        Replaces any existing channel and supersedes a pending reconnect.
        Returns once the channel is open (or failed); the handshake
        completes asynchronously and is observable via on_state_change.
        """
        self._config = config
        self._cancel_reconnect()
        await self._close_channel()

        self._generation += 1
        generation = self._generation
        self._last_seq = None
        self._set_state(ConnectionState.CONNECTING)

        try:
            ws = await self._connect_fn(config.url)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            if generation != self._generation:
                return
            log_event({
                "level": "ERROR",
                "event_type": "gateway_connect_failed",
                "session_id": self._session_id,
                "url": config.url,
                "error": repr(exc),
            })
            self._set_state(ConnectionState.ERROR)
            self._schedule_reconnect()
            return

        if generation != self._generation:
            # Superseded while the socket was opening.
            await self._close_quietly(ws)
            return

        self._ws = ws
        self._reader_task = asyncio.create_task(
            self._read_loop(ws, generation), name=f"gateway_reader:{generation}"
        )

        log_event({
            "event_type": "gateway_channel_open",
            "session_id": self._session_id,
            "url": config.url,
            "generation": generation,
        })

    async def disconnect(self) -> None:
        """
        Explicit teardown: no reconnect, pending requests fail, state DISCONNECTED.
        """
        self._config = None
        self._cancel_reconnect()
        await self._close_channel()
        self._generation += 1
        self._set_state(ConnectionState.DISCONNECTED)

        if self._background:
            for task in list(self._background):
                task.cancel()
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _next_id(self) -> str:
        self._req_id += 1
        return f"{GATEWAY_REQUEST_ID_PREFIX}-{self._req_id}"

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout_ms: int | None = None,
    ) -> dict[str, Any]:
        """
        Send a request and wait for its response payload.

        Raises:
            NotConnected: no open channel
            RequestTimeout: no response within timeout_ms (default 30 s)
            ConnectionLost: channel closed while waiting
            GatewayRequestError: gateway answered ok=false
        """
        ws = self._ws
        if ws is None:
            raise NotConnected(f"Cannot send {method}: WebSocket not connected")

        timeout_ms = self._request_timeout_ms if timeout_ms is None else timeout_ms
        request_id = self._next_id()
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            try:
                await ws.send(encode_request(request_id, method, params))
            except Exception as exc:  # pylint: disable=broad-exception-caught
                raise ConnectionLost(f"Send of {method} failed: {exc!r}") from exc

            try:
                return await asyncio.wait_for(future, timeout_ms / 1000.0)
            except asyncio.TimeoutError as exc:
                log_event({
                    "level": "WARNING",
                    "event_type": "gateway_request_timeout",
                    "session_id": self._session_id,
                    "request_id": request_id,
                    "method": method,
                    "timeout_ms": timeout_ms,
                })
                raise RequestTimeout(method, timeout_ms) from exc
        finally:
            self._pending.pop(request_id, None)

    async def send_message(self, text: str) -> None:
        """chat.send on the main session; resolves on the gateway's ack."""
        if not self.is_connected:
            raise NotConnected(f"Cannot send message in state {self._state.value}")
        await self.request("chat.send", {"session": GATEWAY_CHAT_SESSION, "text": text})

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _read_loop(self, ws: WebSocketLike, generation: int) -> None:
        error: BaseException | None = None
        try:
            async for raw in ws:
                self._handle_raw(raw, generation)
        except asyncio.CancelledError:
            raise
        except ConnectionClosedOK:
            error = None
        except ConnectionClosed as exc:
            error = exc
        except Exception as exc:  # pylint: disable=broad-exception-caught
            error = exc

        self._on_channel_closed(generation, error)

    def _handle_raw(self, raw: str | bytes, generation: int) -> None:
        try:
            frame = decode_frame(raw)
        except MalformedFrame as exc:
            log_event({
                "level": "WARNING",
                "event_type": "gateway_frame_malformed",
                "session_id": self._session_id,
                "error": str(exc),
                "payload_preview": str(raw)[:200],
            })
            return

        if isinstance(frame, ResponseFrame):
            self._handle_response(frame)
        elif isinstance(frame, EventFrame):
            self._handle_event(frame, generation)

    def _handle_response(self, frame: ResponseFrame) -> None:
        future = self._pending.pop(frame.id, None)
        if future is None or future.done():
            # Late response for a request that already timed out.
            log_event({
                "level": "DEBUG",
                "event_type": "gateway_response_unmatched",
                "session_id": self._session_id,
                "request_id": frame.id,
            })
            return

        if frame.ok:
            future.set_result(frame.payload)
        else:
            future.set_exception(GatewayRequestError(frame.error_code, frame.error_message))

    def _handle_event(self, frame: EventFrame, generation: int) -> None:
        if frame.seq is not None:
            gap_result = check_sequence_gap(last_seq=self._last_seq, current_seq=frame.seq)
            if gap_result.gap:
                log_event({
                    "level": "WARNING",
                    "event_type": "gateway_seq_gap",
                    "session_id": self._session_id,
                    "expected": gap_result.expected,
                    "actual": gap_result.actual,
                    "gap_size": gap_result.gap_size,
                })
            self._last_seq = frame.seq

        if frame.event == "connect.challenge":
            nonce = frame.payload.get("nonce")
            self._spawn(
                self._handshake(nonce if isinstance(nonce, str) and nonce else None, generation),
                "gateway_handshake",
            )
            return

        if frame.event in GATEWAY_REPLY_EVENTS:
            reply = _extract_reply(frame)
            if reply is not None:
                text, message_id = reply
                log_event({
                    "event_type": "gateway_reply_received",
                    "session_id": self._session_id,
                    "event": frame.event,
                    "message_id": message_id,
                    "text_len": len(text),
                })
                self._reply_listeners.emit(text, message_id)
            return

        # chat.stream partials and unknown events are ignored.
        log_event({
            "level": "DEBUG",
            "event_type": "gateway_event_ignored",
            "session_id": self._session_id,
            "event": frame.event,
        })

    # ------------------------------------------------------------------
    # Handshake + keepalive
    # ------------------------------------------------------------------

    def _connect_params(self, nonce: str | None) -> dict[str, Any]:
        assert self._config is not None
        params: dict[str, Any] = {
            "minProtocol": GATEWAY_PROTOCOL_VERSION,
            "maxProtocol": GATEWAY_PROTOCOL_VERSION,
            "client": {
                "id": GATEWAY_CLIENT_ID,
                "version": GATEWAY_CLIENT_VERSION,
                "platform": GATEWAY_CLIENT_PLATFORM,
                "mode": GATEWAY_CLIENT_MODE,
            },
            "role": GATEWAY_ROLE,
            "scopes": list(GATEWAY_SCOPES),
            "caps": [],
            "commands": [],
            "permissions": {},
            "auth": {"token": self._config.token},
            "locale": GATEWAY_LOCALE,
            "userAgent": f"{GATEWAY_CLIENT_ID}/{GATEWAY_CLIENT_VERSION}",
        }
        if nonce:
            params["device"] = {"nonce": nonce}
        return params

    async def _handshake(self, nonce: str | None, generation: int) -> None:
        if generation != self._generation or self._config is None:
            return

        try:
            payload = await self.request("connect", self._connect_params(nonce))
        except GatewayError as exc:
            self._handshake_failed(generation, "connect", exc)
            return

        if generation != self._generation:
            return

        self._set_state(ConnectionState.CONNECTED)

        policy = payload.get("policy")
        tick_ms = policy.get("tickIntervalMs") if isinstance(policy, dict) else None
        if not isinstance(tick_ms, int) or isinstance(tick_ms, bool) or tick_ms <= 0:
            tick_ms = GATEWAY_TICK_INTERVAL_DEFAULT_MS

        self._cancel_tick()
        self._tick_task = asyncio.create_task(
            self._tick_loop(tick_ms, generation), name="gateway_tick"
        )

        log_event({
            "event_type": "gateway_connected",
            "session_id": self._session_id,
            "generation": generation,
            "tick_interval_ms": tick_ms,
        })

        try:
            await self.request("chat.subscribe", {"session": GATEWAY_CHAT_SESSION})
        except GatewayError as exc:
            self._handshake_failed(generation, "chat.subscribe", exc)

    def _handshake_failed(self, generation: int, method: str, exc: GatewayError) -> None:
        log_event({
            "level": "ERROR",
            "event_type": "gateway_handshake_failed",
            "session_id": self._session_id,
            "method": method,
            "error": str(exc),
            "error_type": type(exc).__name__,
        })
        # A closed channel already reported its own state.
        if generation == self._generation and self._ws is not None:
            self._set_state(ConnectionState.ERROR)

    async def _tick_loop(self, interval_ms: int, generation: int) -> None:
        while True:
            await asyncio.sleep(interval_ms / 1000.0)
            if generation != self._generation or self._ws is None:
                return
            # Fire-and-forget: a slow tick must not delay the next one.
            self._spawn(self._tick_once(), "gateway_tick_request")

    async def _tick_once(self) -> None:
        try:
            await self.request("tick", {})
        except GatewayError as exc:
            log_event({
                "level": "WARNING",
                "event_type": "gateway_tick_failed",
                "session_id": self._session_id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            })

    # ------------------------------------------------------------------
    # Channel loss + reconnect
    # ------------------------------------------------------------------

    def _on_channel_closed(self, generation: int, error: BaseException | None) -> None:
        if generation != self._generation:
            return

        self._ws = None
        self._reader_task = None
        self._cancel_tick()
        failed = self._fail_pending("connection lost")

        log_event({
            "level": "WARNING" if error is not None else "INFO",
            "event_type": "gateway_channel_closed",
            "session_id": self._session_id,
            "generation": generation,
            "error": repr(error) if error is not None else None,
            "pending_failed": failed,
        })

        self._set_state(
            ConnectionState.ERROR if error is not None else ConnectionState.DISCONNECTED
        )
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """One reconnect attempt with the last config, unless superseded."""
        config = self._config
        if config is None or self.reconnect_scheduled:
            return

        generation = self._generation

        async def _reconnect() -> None:
            await asyncio.sleep(self._reconnect_delay_ms / 1000.0)
            if self._config is not config or generation != self._generation:
                return
            self._reconnect_task = None
            log_event({
                "event_type": "gateway_reconnect_attempt",
                "session_id": self._session_id,
                "url": config.url,
            })
            await self.connect(config)

        self._reconnect_task = asyncio.create_task(_reconnect(), name="gateway_reconnect")
        log_event({
            "event_type": "gateway_reconnect_scheduled",
            "session_id": self._session_id,
            "delay_ms": self._reconnect_delay_ms,
        })

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _cancel_tick(self) -> None:
        task = self._tick_task
        self._tick_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _close_channel(self) -> None:
        """Close the current channel without triggering reconnect."""
        ws = self._ws
        reader = self._reader_task
        self._ws = None
        self._reader_task = None
        self._generation += 1
        self._cancel_tick()
        self._fail_pending("connection closed by client")

        if reader is not None and not reader.done():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        if ws is not None:
            await self._close_quietly(ws)

    async def _close_quietly(self, ws: WebSocketLike) -> None:
        try:
            await ws.close()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "DEBUG",
                "event_type": "gateway_close_failed",
                "session_id": self._session_id,
                "error": repr(exc),
            })

    def _fail_pending(self, reason: str) -> int:
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(ConnectionLost(reason))
        return len(pending)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        log_event({
            "event_type": "gateway_state_changed",
            "session_id": self._session_id,
            "from_state": previous.value,
            "to_state": state.value,
        })
        self._state_listeners.emit(state)

    def _spawn(self, coro: Awaitable[None], name: str) -> None:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


def _extract_reply(frame: EventFrame) -> tuple[str, str | None] | None:
    """
    (text, message_id) if the event carries an assistant reply, else None.

    chat:       role must be "assistant"
    chat.reply: role must be "assistant" or absent
    """
    payload = frame.payload
    text = payload.get("text")
    if not isinstance(text, str) or not text.strip():
        return None

    role = payload.get("role")
    if frame.event == "chat" and role != "assistant":
        return None
    if frame.event == "chat.reply" and role not in (None, "assistant"):
        return None

    message_id = payload.get("messageId")
    return text, message_id if isinstance(message_id, str) else None
