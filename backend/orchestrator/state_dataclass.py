"""
Authoritative conversation state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from orchestrator.enums.phase import ConversationPhase
from orchestrator.run_ids import RunIds

from spec import SILENCE_THRESHOLD_DEFAULT_MS


@dataclass(frozen=True)
class ConversationState:
    """Immutable snapshot of all orchestrator-owned state."""

    # ------------------------------------------------------------------
    # Control state
    # ------------------------------------------------------------------
    phase: ConversationPhase = ConversationPhase.IDLE

    # ------------------------------------------------------------------
    # Run/version tracking
    # ------------------------------------------------------------------
    active_runs: RunIds = field(default_factory=RunIds)

    # True from StartCapture until StopCapture is issued for that run.
    capture_active: bool = False

    # True from StartSynthesis until completion/stop for that run.
    synthesis_active: bool = False

    # ------------------------------------------------------------------
    # Listening
    # ------------------------------------------------------------------
    silence_threshold_ms: int = SILENCE_THRESHOLD_DEFAULT_MS

    # Latest partial transcript of the current capture run.
    partial_text: str = ""

    # Silence timer fired; StopCapture(drain=True) is in flight.
    # Partials for the run are no longer admitted.
    finalizing: bool = False

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    # Set when a turn is dispatched; cleared by whichever of
    # reply / response timeout / send failure comes first.
    waiting_for_reply: bool = False

    # Completed user turns (monotonic).
    turn_count: int = 0
