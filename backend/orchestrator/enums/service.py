"""
Service enumeration for the run-id gated operations of a conversation.

Each member names one long-running operation whose completion events
carry the run id they were started with. The reducer discards any
completion whose run id is no longer current.
"""

from __future__ import annotations

from enum import Enum


class Service(str, Enum):
    """Operations sequenced by the orchestrator, at most one active run each."""

    CAPTURE = "CAPTURE"
    GATEWAY = "GATEWAY"
    SYNTHESIS = "SYNTHESIS"
