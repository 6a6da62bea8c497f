"""
Named asyncio timers owned by the runtime.

Responsibilities:
- Arm / replace / disarm named timers
- Invoke an async expiry callback when a timer fires

Non-responsibilities:
- Deciding which timers exist (reducer owns timer semantics)
- Constructing timeout events (runtime does that in the callback)
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from observability.logger import log_event


ExpiryCallback = Callable[[], Awaitable[None]]


class TimerOwner:
    """
    Registry of at most one running timer per name.

    A timer stays registered while its expiry is being delivered, so a
    disarm that races the delivery still cancels it. A timer is never
    cancelled by its own delivery: disarming the task that is currently
    running only unregisters it.
    """

    def __init__(self, session_id: str | None = None) -> None:
        self._session_id = session_id
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def arm(self, name: str, duration_ms: int, on_expire: ExpiryCallback) -> None:
        """Start `name`, replacing any timer already armed under it."""
        self.disarm(name)

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(duration_ms / 1000.0)
                await on_expire()
            except asyncio.CancelledError:
                return
            finally:
                if self._tasks.get(name) is task:
                    del self._tasks[name]

        task = asyncio.create_task(_timer_task(), name=f"timer:{name}")
        self._tasks[name] = task

        log_event({
            "level": "DEBUG",
            "event_type": "timer_armed",
            "session_id": self._session_id,
            "timer_id": name,
            "duration_ms": duration_ms,
        })

    def disarm(self, name: str) -> bool:
        """
        Cancel `name` if armed.

        Idempotent. Returns True if a timer was registered under `name`.
        """
        task = self._tasks.pop(name, None)
        if task is None:
            return False
        if task is not asyncio.current_task() and not task.done():
            task.cancel()
        return True

    def disarm_all(self) -> int:
        """Cancel every armed timer; returns how many were registered."""
        names = list(self._tasks)
        for name in names:
            self.disarm(name)
        return len(names)

    def armed(self) -> tuple[str, ...]:
        return tuple(self._tasks)

    async def aclose(self) -> None:
        """Disarm everything and wait for the cancelled tasks to unwind."""
        tasks = [t for t in self._tasks.values() if t is not asyncio.current_task()]
        self.disarm_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
