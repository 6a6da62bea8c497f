"""
Conversation phase enumeration.

Rules:
- This enum defines ONLY the turn-taking phases.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class ConversationPhase(str, Enum):
    """
    Turn-taking phase of a single conversation.

    Exactly one value at any time, owned by the orchestrator runtime.
    These represent orchestration intent, NOT connection status
    and NOT adapter lifecycles.
    """

    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"
