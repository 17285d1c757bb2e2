"""
Input/output mode enumerations.

Modes are orthogonal to the session state:
- SessionState answers: "Is there a session?"
- Modes answer:         "How is the operator talking and listening?"
"""

from __future__ import annotations

from enum import Enum


class VoiceMode(str, Enum):
    """User-intended spoken input. ACTIVE requires a live or pending session."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class MicState(str, Enum):
    """Local audio track state on the transport session."""

    MUTED = "MUTED"
    LIVE = "LIVE"


class OutputAudio(str, Enum):
    """Audibility of the remote agent's audio playback. Local only."""

    ENABLED = "ENABLED"
    DISABLED = "DISABLED"
