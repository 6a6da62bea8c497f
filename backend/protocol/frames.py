"""
JSON framing helpers for the gateway protocol (v3).

Wire format (one JSON object per WebSocket text message):

- Client -> Gateway (request):
    {"type": "req", "id": "rn-1", "method": "chat.send", "params": {...}}

- Gateway -> Client (response, exactly one per request id):
    {"type": "res", "id": "rn-1", "ok": true, "payload": {...}}
    {"type": "res", "id": "rn-1", "ok": false, "error": {"code": "...", "message": "..."}}

- Gateway -> Client (server push):
    {"type": "event", "event": "chat", "payload": {...}, "seq": 42}

Usage example:

    frame = decode_frame(raw)
    if isinstance(frame, EventFrame) and frame.seq is not None:
        result = check_sequence_gap(last_seq=prev_seq, current_seq=frame.seq)
        if result.gap:
            log_event({
                "event_type": "gateway_seq_gap",
                "expected": result.expected,
                "actual": result.actual,
                "gap_size": result.gap_size,
            })
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional, Union


# -------------------------
# Exceptions
# -------------------------

class FrameProtocolError(Exception):
    """Base class for gateway framing errors."""


class MalformedFrame(FrameProtocolError):
    """
    Raised when an inbound message is not a valid gateway frame.

    Covers non-JSON text, non-object JSON, unknown `type`, and missing or
    mistyped required keys. The frame is unsafe to process and must be
    dropped; the session continues.
    """


# -------------------------
# Frame types
# -------------------------

@dataclass(frozen=True)
class ResponseFrame:
    id: str
    ok: bool
    payload: dict[str, Any] = field(default_factory=dict)
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class EventFrame:
    event: str
    payload: dict[str, Any] = field(default_factory=dict)
    seq: int | None = None


Frame = Union[ResponseFrame, EventFrame]


# -------------------------
# Client -> Gateway
# -------------------------

def encode_request(request_id: str, method: str, params: dict[str, Any] | None = None) -> str:
    """Encode a request frame as compact JSON text."""
    return json.dumps(
        {
            "type": "req",
            "id": request_id,
            "method": method,
            "params": params or {},
        },
        ensure_ascii=False,
        separators=(",", ":"),
    )


# -------------------------
# Gateway -> Client
# -------------------------

def _object_or_empty(value: Any, what: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedFrame(f"{what} must be an object, got {type(value).__name__}")
    return value


def decode_frame(raw: str | bytes) -> Frame:
    """
    Decode one inbound gateway message.

    Raises:
        MalformedFrame: the message is not a response or event frame.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrame(f"frame is not UTF-8: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedFrame(f"frame is not JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedFrame(f"frame must be an object, got {type(data).__name__}")

    frame_type = data.get("type")

    if frame_type == "res":
        frame_id = data.get("id")
        ok = data.get("ok")
        if not isinstance(frame_id, str):
            raise MalformedFrame("response frame missing string id")
        if not isinstance(ok, bool):
            raise MalformedFrame(f"response frame {frame_id} missing boolean ok")

        error = _object_or_empty(data.get("error"), "error")
        code = error.get("code")
        message = error.get("message")
        return ResponseFrame(
            id=frame_id,
            ok=ok,
            payload=_object_or_empty(data.get("payload"), "payload"),
            error_code=str(code) if code is not None else None,
            error_message=str(message) if message is not None else None,
        )

    if frame_type == "event":
        name = data.get("event")
        if not isinstance(name, str) or not name:
            raise MalformedFrame("event frame missing event name")

        seq = data.get("seq")
        if seq is not None and (isinstance(seq, bool) or not isinstance(seq, int)):
            raise MalformedFrame(f"event {name} has non-integer seq")

        return EventFrame(
            event=name,
            payload=_object_or_empty(data.get("payload"), "payload"),
            seq=seq,
        )

    raise MalformedFrame(f"unknown frame type: {frame_type!r}")


# -------------------------
# Sequence gap detection
# -------------------------

@dataclass(frozen=True)
class SeqCheckResult:
    """
    Result of a sequence continuity check.
    """
    gap: bool
    expected: int
    actual: int

    @property
    def gap_size(self) -> int:
        """Number of events skipped (0 if no gap or if seq went backwards)."""
        if not self.gap:
            return 0
        return max(self.actual - self.expected, 0)


def check_sequence_gap(
    *,
    last_seq: Optional[int],
    current_seq: int,
) -> SeqCheckResult:
    """
    Check whether `current_seq` follows `last_seq`.

    Pure function; never raises.
    """
    if last_seq is None or current_seq == last_seq + 1:
        return SeqCheckResult(
            gap=False,
            expected=current_seq,
            actual=current_seq,
        )

    return SeqCheckResult(
        gap=True,
        expected=last_seq + 1,
        actual=current_seq,
    )
