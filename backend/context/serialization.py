"""
Chat history serialization for the presentation boundary.

Responsibilities:
- Convert ChatMessage values into JSON-ready dicts
- Convert caller-visible orchestrator notifications into event payloads

Non-responsibilities:
- No truncation logic
- No message storage
- No logging
"""

from __future__ import annotations

from typing import Any, Iterable

from context.conversation import ChatMessage


def serialize_message(message: ChatMessage) -> dict[str, Any]:
    """
    Output format:
        {"role": "user", "text": "...", "timestamp": 1700000000000}
    """
    return {
        "role": message.role,
        "text": message.text,
        "timestamp": message.timestamp,
    }


def serialize_history(messages: Iterable[ChatMessage]) -> list[dict[str, Any]]:
    """Serialize messages in chronological order."""
    return [serialize_message(m) for m in messages]


def phase_event(phase: str) -> dict[str, Any]:
    return {"type": "phase", "phase": phase}


def transcript_event(text: str, is_final: bool) -> dict[str, Any]:
    return {"type": "transcript", "text": text, "isFinal": is_final}


def message_event(message: ChatMessage) -> dict[str, Any]:
    return {"type": "message", "message": serialize_message(message)}


def connection_event(state: str) -> dict[str, Any]:
    return {"type": "connection", "state": state}
