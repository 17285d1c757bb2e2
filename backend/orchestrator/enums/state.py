"""
Authoritative session state enumeration.

Rules:
- This enum defines ONLY the connection-lifecycle states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    """
    Lifecycle of the session with the remote agent.

    IDLE and ERROR both end a cycle; either is re-enterable via connect.
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"
