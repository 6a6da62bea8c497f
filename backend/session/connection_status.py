"""
Connection state tracking for the gateway session.

Connection lifecycle is tracked separately from the conversation phase:
the gateway client owns it; callers read it to decide whether a
conversation may start.
"""
from enum import Enum


class ConnectionState(str, Enum):
    """
    Gateway session state.

    Separate from and independent of ConversationPhase.
    IDLE can occur with any ConnectionState.
    """
    DISCONNECTED = "disconnected"   # No channel, or channel closed cleanly
    CONNECTING = "connecting"       # Channel opening / handshake in progress
    CONNECTED = "connected"         # Handshake accepted; requests allowed
    ERROR = "error"                 # Transport failure or handshake rejected
