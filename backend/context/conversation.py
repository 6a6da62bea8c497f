"""
Conversation message history.

Responsibilities:
- Store ordered user/assistant chat messages
- Enforce the capacity rule: keep the most recent N, evict oldest first
- Provide read-only snapshots for callers

Non-responsibilities:
- No reducer logic
- No serialization format decisions (see context.serialization)
- No orchestration decisions
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Literal

from observability.logger import log_event
from spec import MESSAGE_HISTORY_CAPACITY


Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    """One chat message. Immutable once created."""
    role: Role
    text: str
    timestamp: int  # epoch milliseconds


class MessageHistory:
    """
    Bounded, chronological message history owned by the orchestrator.

    This object is intentionally imperative:
    - Reducer decides *when* to append
    - This class decides *what to keep*
    """

    def __init__(
        self,
        capacity: int = MESSAGE_HISTORY_CAPACITY,
        session_id: str | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._session_id = session_id
        self._messages: deque[ChatMessage] = deque()
        self._capacity = capacity

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, message: ChatMessage) -> None:
        """Append a message, evicting the oldest ones beyond capacity."""
        self._messages.append(message)
        while len(self._messages) > self._capacity:
            dropped = self._messages.popleft()
            log_event({
                "level": "DEBUG",
                "event_type": "history_message_evicted",
                "session_id": self._session_id,
                "role": dropped.role,
                "timestamp": dropped.timestamp,
            })

    def snapshot(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def clear(self) -> None:
        self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)
