# pylint: disable=missing-module-docstring,missing-function-docstring
from typing import Any

import pytest

import session.listeners as listeners_mod
from context.conversation import ChatMessage, MessageHistory
from context.serialization import message_event, serialize_history
from session.listeners import Listeners


def msg(i: int, role: str = "user") -> ChatMessage:
    return ChatMessage(role=role, text=f"m{i}", timestamp=i)  # type: ignore[arg-type]


def test_history_keeps_most_recent_fifty() -> None:
    history = MessageHistory()
    for i in range(55):
        history.append(msg(i))

    snapshot = history.snapshot()
    assert len(snapshot) == 50
    assert snapshot[0].text == "m5"
    assert snapshot[-1].text == "m54"


def test_history_snapshot_is_a_copy() -> None:
    history = MessageHistory(capacity=3)
    history.append(msg(1))
    snapshot = history.snapshot()
    history.append(msg(2))

    assert len(snapshot) == 1
    assert len(history) == 2


def test_history_rejects_nonpositive_capacity() -> None:
    with pytest.raises(ValueError):
        MessageHistory(capacity=0)


def test_serialization_shapes() -> None:
    m = ChatMessage(role="assistant", text="hi there", timestamp=1700000000000)

    assert serialize_history([m]) == [
        {"role": "assistant", "text": "hi there", "timestamp": 1700000000000}
    ]
    assert message_event(m) == {
        "type": "message",
        "message": {"role": "assistant", "text": "hi there", "timestamp": 1700000000000},
    }


def test_listeners_emit_in_order_and_unsubscribe() -> None:
    calls: list[str] = []
    listeners = Listeners("phase")
    listeners.add(lambda p: calls.append(f"a:{p}"))
    unsubscribe = listeners.add(lambda p: calls.append(f"b:{p}"))

    listeners.emit("listening")
    unsubscribe()
    unsubscribe()
    listeners.emit("idle")

    assert calls == ["a:listening", "b:listening", "a:idle"]
    assert len(listeners) == 1


def test_failing_listener_is_logged_and_skipped(monkeypatch: pytest.MonkeyPatch) -> None:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(listeners_mod, "log_event", emitted.append)

    calls: list[str] = []

    def broken(_value: str) -> None:
        raise RuntimeError("boom")

    listeners = Listeners("transcript", session_id="s1")
    listeners.add(broken)
    listeners.add(calls.append)

    listeners.emit("hello")

    assert calls == ["hello"]
    assert emitted[0]["event_type"] == "listener_failed"
    assert emitted[0]["listener"] == "transcript"
    assert emitted[0]["error_type"] == "RuntimeError"
