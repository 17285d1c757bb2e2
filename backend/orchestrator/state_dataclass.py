"""
Authoritative session controller state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from orchestrator.enums.mode import MicState, OutputAudio, VoiceMode
from orchestrator.enums.state import SessionState
from orchestrator.run_ids import RunIds

from spec import DEMO_REPLY_DELAY_MS


@dataclass(frozen=True)
class ControllerState:
    """Immutable snapshot of all controller-owned state."""

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    session_state: SessionState = SessionState.IDLE

    # ------------------------------------------------------------------
    # Voice / mic / output
    # ------------------------------------------------------------------
    voice_mode: VoiceMode = VoiceMode.INACTIVE
    mic: MicState = MicState.MUTED
    output_audio: OutputAudio = OutputAudio.ENABLED

    # Manual mute override while voice mode stays ACTIVE.
    mic_suspended: bool = False

    # A voice toggle is waiting on the connect attempt it started.
    voice_pending: bool = False

    # ------------------------------------------------------------------
    # Capabilities (decided once at construction)
    # ------------------------------------------------------------------
    speech_available: bool = False

    # ------------------------------------------------------------------
    # Generation tracking
    # ------------------------------------------------------------------
    active_runs: RunIds = field(default_factory=RunIds)

    # ------------------------------------------------------------------
    # Ephemeral presentation state
    # ------------------------------------------------------------------
    listening: bool = False
    interim_transcript: str = ""

    # ------------------------------------------------------------------
    # Disconnected-mode replies
    # ------------------------------------------------------------------
    demo_reply_delay_ms: int = DEMO_REPLY_DELAY_MS
    next_demo_reply_id: int = 1

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    last_error: str | None = None
