"""
Transport session provider contract.

This module defines the *interface only*. Generations, stale-callback
filtering and event normalization live in transport/adapter.py.

Key invariants:
- A provider serves at most one session at a time.
- Handlers fire only for the session currently held; callbacks from a
  released session are dropped by the provider.
- connect() raises TransportConnectionError; publish_data() raises
  PublishError. disconnect() releases local state before anything that
  may raise.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from audio.microphone import MicrophoneSource
    from audio.playback import SpeakerSink
    from config import AppConfig


@dataclass(frozen=True)
class ParticipantInfo:
    """Remote participant, reduced to what the session cares about."""
    identity: str
    is_agent: bool


@dataclass(frozen=True)
class RemoteAudioHandle:
    """Opaque handle to a subscribed remote audio track."""
    track_sid: str
    participant: ParticipantInfo
    track: Any = None


def _noop(*_args: object) -> None:
    return None


@dataclass
class TransportHandlers:
    on_connected: Callable[[], None] = _noop
    on_disconnected: Callable[[str | None], None] = _noop
    on_participant_connected: Callable[[ParticipantInfo], None] = _noop
    on_track_subscribed: Callable[[RemoteAudioHandle], None] = _noop
    on_data_received: Callable[[bytes, ParticipantInfo | None], None] = _noop
    on_error: Callable[[str], None] = _noop


class TransportProvider(ABC):
    """Abstract real-time audio/data session."""

    def __init__(self) -> None:
        self.handlers = TransportHandlers()

    def set_handlers(self, handlers: TransportHandlers) -> None:
        self.handlers = handlers

    @abstractmethod
    async def connect(self, url: str, token: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def disconnect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def set_microphone_enabled(self, enabled: bool) -> None:
        raise NotImplementedError

    @abstractmethod
    async def publish_data(self, payload: bytes, *, reliable: bool = True) -> None:
        raise NotImplementedError

    @abstractmethod
    def attach_remote_audio(self, handle: RemoteAudioHandle) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_remote_audio_enabled(self, enabled: bool) -> None:
        raise NotImplementedError


def create_transport_provider(
    config: AppConfig,
    *,
    microphone: MicrophoneSource,
    speaker: SpeakerSink | None,
) -> TransportProvider:
    provider = config.transport_provider.lower()
    if provider != "livekit":
        raise ValueError(f"unknown transport provider: {config.transport_provider}")

    from transport.livekit_provider import LiveKitTransportProvider  # pylint: disable=import-outside-toplevel

    return LiveKitTransportProvider(microphone=microphone, speaker=speaker)
