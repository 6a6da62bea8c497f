"""
Observer lists for caller-facing notifications.

A failing subscriber is logged and skipped; it never affects the emitter
or the other subscribers.
"""

from __future__ import annotations

from typing import Any, Callable

from observability.logger import log_event


Unsubscribe = Callable[[], None]


class Listeners:
    """Ordered list of handlers sharing one call signature."""

    def __init__(self, kind: str, session_id: str | None = None) -> None:
        self._kind = kind
        self._session_id = session_id
        self._handlers: list[Callable[..., None]] = []

    def add(self, handler: Callable[..., None]) -> Unsubscribe:
        """Subscribe; the returned callable unsubscribes (idempotent)."""
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def emit(self, *args: Any) -> None:
        # Copy: a handler may unsubscribe itself mid-emit.
        for handler in list(self._handlers):
            try:
                handler(*args)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "level": "ERROR",
                    "event_type": "listener_failed",
                    "session_id": self._session_id,
                    "listener": self._kind,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                })

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return len(self._handlers)
