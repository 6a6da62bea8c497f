"""
Metrics and timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event

Design notes:
- Durations use monotonic time for correctness
- Event timestamps (ts_ms) use wall-clock time for human readability
- Timers are owned by a MetricTimers instance (one per runtime), so
  concurrent conversations never share timer state
- Prefer the `timed()` context manager to avoid leaked timers
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


class MetricTimers:
    """
    Keyed monotonic timers.

    A key identifies one measurement in flight (e.g. "reply_latency:3").
    Starting a key that is already running restarts it.
    """

    def __init__(self, *, session_id: str | None = None) -> None:
        self._session_id = session_id
        # key -> (metric_name, start_time_ns)
        self._active: dict[str, tuple[str, int]] = {}

    def start(self, name: str, key: str | None = None) -> str:
        """Start a timer for `name`; returns the key needed to stop it."""
        key = key or name
        self._active[key] = (name, time.monotonic_ns())
        return key

    def stop(
        self,
        key: str,
        *,
        phase: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> int | None:
        """
        Stop a timer and emit a METRIC_TIMER event.

        Returns:
            duration_ms if the timer existed, else None
        """
        entry = self._active.pop(key, None)
        if entry is None:
            return None

        name, start_ns = entry
        duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000

        log_event({
            "ts_ms": int(time.time() * 1000),
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": duration_ms,
            "session_id": self._session_id,
            "phase": phase,
            "details": details or {},
        })

        return duration_ms

    def discard(self, key: str) -> None:
        """Drop a timer without emitting (measurement abandoned)."""
        self._active.pop(key, None)

    def clear(self) -> None:
        self._active.clear()

    def active(self) -> frozenset[str]:
        return frozenset(self._active)

    @contextmanager
    def timed(
        self,
        name: str,
        *,
        phase: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> Iterator[None]:
        """
        Context manager for measuring durations safely.

        Guarantees:
        - Timer is ALWAYS stopped (no leaks)
        - Metric is emitted exactly once
        - Exceptions inside the block do NOT suppress timing
        """
        key = self.start(name, key=f"{name}_{uuid.uuid4().hex[:12]}")
        try:
            yield
        finally:
            self.stop(key, phase=phase, details=details)
