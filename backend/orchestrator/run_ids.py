"""
Run ID container for versioned operations.

Rules:
- Run IDs are monotonic integers.
- They are owned and incremented ONLY by the orchestrator reducer.
- This module defines structure, not behavior.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RunIds:
    """
    Immutable container for the current run ID per service.

    Semantics:
    - A value of 0 means "no run has been started yet".
    - Once a run ID is incremented, it is never reused.
    - Events carrying any other run ID are stale and must be ignored.
    """

    capture: int = 0
    send: int = 0
    synthesis: int = 0
