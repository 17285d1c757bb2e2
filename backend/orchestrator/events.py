"""
Unified event definitions for the session reducer.

Rules:
- Events describe facts that have occurred (or commands the user issued).
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Producer events (transport, speech) carry the generation they belong to so
the reducer can discard callbacks from superseded attempts.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from orchestrator.enums.service import Service


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # User commands
    # ------------------------------------------------------------------
    CONNECT_REQUESTED = "CONNECT_REQUESTED"
    DISCONNECT_REQUESTED = "DISCONNECT_REQUESTED"
    VOICE_TOGGLE_REQUESTED = "VOICE_TOGGLE_REQUESTED"
    MUTE_TOGGLE_REQUESTED = "MUTE_TOGGLE_REQUESTED"
    OUTPUT_AUDIO_TOGGLE_REQUESTED = "OUTPUT_AUDIO_TOGGLE_REQUESTED"
    TEXT_SUBMITTED = "TEXT_SUBMITTED"
    SESSION_CLOSED = "SESSION_CLOSED"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    CONNECT_FAILED = "CONNECT_FAILED"
    TRANSPORT_CONNECTED = "TRANSPORT_CONNECTED"
    TRANSPORT_DISCONNECTED = "TRANSPORT_DISCONNECTED"
    TRANSPORT_DATA_RECEIVED = "TRANSPORT_DATA_RECEIVED"
    REMOTE_AUDIO_TRACK_AVAILABLE = "REMOTE_AUDIO_TRACK_AVAILABLE"
    AGENT_JOINED = "AGENT_JOINED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    TEXT_PUBLISHED = "TEXT_PUBLISHED"
    PUBLISH_FAILED = "PUBLISH_FAILED"
    TEARDOWN_FAILED = "TEARDOWN_FAILED"

    # ------------------------------------------------------------------
    # Speech
    # ------------------------------------------------------------------
    SPEECH_STARTED = "SPEECH_STARTED"
    SPEECH_ENDED = "SPEECH_ENDED"
    SPEECH_INTERIM = "SPEECH_INTERIM"
    SPEECH_FINAL = "SPEECH_FINAL"
    SPEECH_ERROR = "SPEECH_ERROR"
    SPEECH_START_FAILED = "SPEECH_START_FAILED"

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    DEMO_REPLY_DUE = "DEMO_REPLY_DUE"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


# =============================================================================
# Generation-Scoped Events
# =============================================================================

@dataclass(frozen=True)
class ServiceEvent(Event):
    """
    Base class for events emitted by a generation-versioned producer.

    The reducer MUST ignore events whose run_id does not match the
    currently active generation for that service.
    """

    service: Service
    run_id: int


# =============================================================================
# User Commands
# =============================================================================

@dataclass(frozen=True)
class ConnectRequested(Event):
    """Operator asked to open a session."""


@dataclass(frozen=True)
class DisconnectRequested(Event):
    """Operator asked to end the session (valid from any state)."""


@dataclass(frozen=True)
class VoiceToggleRequested(Event):
    """Operator toggled voice mode."""


@dataclass(frozen=True)
class MuteToggleRequested(Event):
    """Operator toggled the microphone mute override."""


@dataclass(frozen=True)
class OutputAudioToggleRequested(Event):
    """Operator toggled remote audio playback."""


@dataclass(frozen=True)
class TextSubmitted(Event):
    """Operator submitted a typed message."""
    content: str


@dataclass(frozen=True)
class SessionClosed(Event):
    """Owning component is being torn down."""


# =============================================================================
# Transport Events
# =============================================================================

@dataclass(frozen=True)
class ConnectFailed(ServiceEvent):
    """
    Connect attempt failed before the session was established.

    kind is "credential" (token request) or "connection" (transport).
    """
    reason: str
    kind: str = "connection"


@dataclass(frozen=True)
class TransportConnected(ServiceEvent):
    """Transport session established."""


@dataclass(frozen=True)
class TransportDisconnected(ServiceEvent):
    """Transport session ended by the provider or the remote side."""
    reason: str | None = None


@dataclass(frozen=True)
class TransportDataReceived(ServiceEvent):
    """Data message from a remote participant."""
    payload: bytes
    sender_identity: str | None = None


@dataclass(frozen=True)
class RemoteAudioTrackAvailable(ServiceEvent):
    """A remote audio track was subscribed."""
    track_sid: str
    participant_identity: str
    attached: bool


@dataclass(frozen=True)
class AgentJoined(ServiceEvent):
    """The remote agent participant joined the session."""
    identity: str


@dataclass(frozen=True)
class TransportError(ServiceEvent):
    """Unrecoverable transport failure on an established session."""
    reason: str


@dataclass(frozen=True)
class TextPublished(ServiceEvent):
    """A typed message was delivered to the transport."""
    content: str


@dataclass(frozen=True)
class PublishFailed(ServiceEvent):
    """A typed message could not be delivered."""
    content: str
    reason: str


@dataclass(frozen=True)
class TeardownFailed(Event):
    """
    Releasing a transport session or speech loop raised.

    Not generation-gated: teardown always concerns a superseded run.
    """
    service: Service
    reason: str


# =============================================================================
# Speech Events
# =============================================================================

@dataclass(frozen=True)
class SpeechStarted(ServiceEvent):
    """Provider began capturing."""


@dataclass(frozen=True)
class SpeechEnded(ServiceEvent):
    """Provider stopped capturing (the loop may restart it)."""


@dataclass(frozen=True)
class SpeechInterim(ServiceEvent):
    """Unstable transcript preview. Never logged to history."""
    text: str


@dataclass(frozen=True)
class SpeechFinal(ServiceEvent):
    """Finalized transcript segment(s) of one provider result."""
    text: str


@dataclass(frozen=True)
class SpeechError(ServiceEvent):
    """Provider failed mid-session; the loop has stopped."""
    reason: str


@dataclass(frozen=True)
class SpeechStartFailed(ServiceEvent):
    """Provider refused to start."""
    reason: str


# =============================================================================
# Timer Events
# =============================================================================

@dataclass(frozen=True)
class DemoReplyDue(Event):
    """Delay for a disconnected-mode synthetic reply elapsed."""
    reply_id: int
