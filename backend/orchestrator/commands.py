"""
Side-effect command definitions for the session controller.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
- Reducer logic remains pure and deterministic.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
    - Commands are immutable value objects emitted by the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from history.log import Modality, Sender
from orchestrator.events import EventType

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging and runtime dispatch.
    """

    # Transport
    OPEN_TRANSPORT = "OPEN_TRANSPORT"
    CLOSE_TRANSPORT = "CLOSE_TRANSPORT"
    SET_MICROPHONE = "SET_MICROPHONE"
    SET_OUTPUT_AUDIO = "SET_OUTPUT_AUDIO"
    PUBLISH_TEXT = "PUBLISH_TEXT"

    # Speech
    START_SPEECH = "START_SPEECH"
    STOP_SPEECH = "STOP_SPEECH"

    # History
    APPEND_ENTRY = "APPEND_ENTRY"

    # Timers
    START_TIMER = "START_TIMER"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Transport Commands
# =============================================================================

@dataclass(frozen=True)
class OpenTransport(Command):
    """
    Request a credential, then establish a transport session.

    Runs in the background; the outcome returns as TransportConnected or
    ConnectFailed tagged with the same generation.
    """
    generation: int
    command_type: CommandType = CommandType.OPEN_TRANSPORT


@dataclass(frozen=True)
class CloseTransport(Command):
    """Tear down the session of a superseded generation (and any in-flight connect)."""
    generation: int
    command_type: CommandType = CommandType.CLOSE_TRANSPORT


@dataclass(frozen=True)
class SetMicrophone(Command):
    """Enable or disable the local audio track on the transport session."""
    enabled: bool
    command_type: CommandType = CommandType.SET_MICROPHONE


@dataclass(frozen=True)
class SetOutputAudio(Command):
    """Make remote audio playback audible or silent."""
    enabled: bool
    command_type: CommandType = CommandType.SET_OUTPUT_AUDIO


@dataclass(frozen=True)
class PublishText(Command):
    """Publish a typed message as a reliable data packet."""
    generation: int
    content: str
    command_type: CommandType = CommandType.PUBLISH_TEXT


# =============================================================================
# Speech Commands
# =============================================================================

@dataclass(frozen=True)
class StartSpeech(Command):
    """Start the speech capture loop for a new run."""
    run_id: int
    command_type: CommandType = CommandType.START_SPEECH


@dataclass(frozen=True)
class StopSpeech(Command):
    """Stop the speech capture loop and suppress pending restarts."""
    run_id: int
    command_type: CommandType = CommandType.STOP_SPEECH


# =============================================================================
# History Commands
# =============================================================================

@dataclass(frozen=True)
class AppendEntry(Command):
    """Append one ChatEntry to the conversation log."""
    sender: Sender
    content: str
    modality: Modality = Modality.TEXT
    command_type: CommandType = CommandType.APPEND_ENTRY


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartTimer(Command):
    """
    Request to start a named timer.

    On expiration, the runtime must inject the specified timeout event.
    """
    timer_id: str
    duration_ms: int
    timeout_event_type: EventType
    command_type: CommandType = CommandType.START_TIMER


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
