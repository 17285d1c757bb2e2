"""
Transport session adapter.

Wraps a TransportProvider and normalizes its callbacks into
generation-tagged transport events for the runtime.

Generation rules:
- connect(credential, generation) binds the provider to that generation.
- disconnect(generation) marks every generation up to it as released.
- A connect that completes (or is cancelled) after its generation was
  released tears the provider down immediately, so no orphaned session
  outlives its attempt.

The adapter does not decide anything; the reducer discards events whose
generation is stale.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Callable

from errors import PublishError
from observability.logger import log_event, now_ms
from orchestrator.enums.service import Service
from orchestrator.events import (
    AgentJoined,
    Event,
    EventType,
    RemoteAudioTrackAvailable,
    TransportConnected,
    TransportDataReceived,
    TransportDisconnected,
    TransportError,
)
from transport.base import (
    ParticipantInfo,
    RemoteAudioHandle,
    TransportHandlers,
    TransportProvider,
)

if TYPE_CHECKING:
    from transport.credentials import Credential


class TransportSessionAdapter:
    def __init__(
        self,
        *,
        provider: TransportProvider,
        emit_event: Callable[[Event], None],
    ) -> None:
        self._provider = provider
        self._emit = emit_event

        # Generation currently held by the provider (None when released).
        self._generation: int | None = None
        self._connected = False
        # Highest generation a disconnect() has been issued for.
        self._released_through = 0

        self._lifecycle_lock = asyncio.Lock()
        self._mic_lock = asyncio.Lock()

        provider.set_handlers(
            TransportHandlers(
                on_connected=self._on_connected,
                on_disconnected=self._on_disconnected,
                on_participant_connected=self._on_participant_connected,
                on_track_subscribed=self._on_track_subscribed,
                on_data_received=self._on_data_received,
                on_error=self._on_error,
            )
        )

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def generation(self) -> int | None:
        return self._generation

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, credential: Credential, generation: int) -> None:
        """Raises TransportConnectionError if the provider cannot connect."""
        async with self._lifecycle_lock:
            if generation <= self._released_through:
                self._log("TRANSPORT_CONNECT_SKIPPED", generation, reason="released")
                return

            self._generation = generation
            self._log("TRANSPORT_CONNECTING", generation, room=credential.room_name)
            try:
                await self._provider.connect(credential.url, credential.token)
            except asyncio.CancelledError:
                await self._teardown_superseded(generation)
                raise
            except Exception:
                self._generation = None
                raise

            if generation <= self._released_through:
                await self._teardown_superseded(generation)

    async def disconnect(self, generation: int) -> None:
        self._released_through = max(self._released_through, generation)

        async with self._lifecycle_lock:
            if self._generation is None or self._generation > generation:
                self._log("TRANSPORT_DISCONNECT_NOOP", generation)
                return

            self._generation = None
            self._connected = False
            self._log("TRANSPORT_DISCONNECTING", generation)
            await self._provider.disconnect()

    async def _teardown_superseded(self, generation: int) -> None:
        self._generation = None
        self._connected = False
        self._log("TRANSPORT_SUPERSEDED_TEARDOWN", generation)
        try:
            await asyncio.shield(self._provider.disconnect())
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log("TRANSPORT_TEARDOWN_FAILED", generation, error=repr(e))

    # ------------------------------------------------------------------
    # Media and data
    # ------------------------------------------------------------------

    async def set_local_audio_enabled(self, enabled: bool) -> None:
        async with self._mic_lock:
            if not self._connected:
                return
            await self._provider.set_microphone_enabled(enabled)

    def set_remote_audio_enabled(self, enabled: bool) -> None:
        self._provider.set_remote_audio_enabled(enabled)

    async def publish_data(self, payload: bytes, *, reliable: bool = True) -> None:
        """Raises PublishError when there is no session or the send fails."""
        if not self._connected:
            raise PublishError("not connected")
        await self._provider.publish_data(payload, reliable=reliable)

    # ------------------------------------------------------------------
    # Provider handlers
    # ------------------------------------------------------------------

    def _on_connected(self) -> None:
        gen = self._generation
        if gen is None or gen <= self._released_through:
            return
        self._connected = True
        self._emit(TransportConnected(
            event_type=EventType.TRANSPORT_CONNECTED,
            ts_ms=now_ms(),
            service=Service.TRANSPORT,
            run_id=gen,
        ))

    def _on_disconnected(self, reason: str | None) -> None:
        gen = self._generation
        if gen is None:
            return
        self._connected = False
        self._emit(TransportDisconnected(
            event_type=EventType.TRANSPORT_DISCONNECTED,
            ts_ms=now_ms(),
            service=Service.TRANSPORT,
            run_id=gen,
            reason=reason,
        ))

    def _on_participant_connected(self, participant: ParticipantInfo) -> None:
        gen = self._generation
        if gen is None or not participant.is_agent:
            return
        self._emit(AgentJoined(
            event_type=EventType.AGENT_JOINED,
            ts_ms=now_ms(),
            service=Service.TRANSPORT,
            run_id=gen,
            identity=participant.identity,
        ))

    def _on_track_subscribed(self, handle: RemoteAudioHandle) -> None:
        gen = self._generation
        if gen is None:
            return
        attached = handle.participant.is_agent
        if attached:
            self._provider.attach_remote_audio(handle)
        self._emit(RemoteAudioTrackAvailable(
            event_type=EventType.REMOTE_AUDIO_TRACK_AVAILABLE,
            ts_ms=now_ms(),
            service=Service.TRANSPORT,
            run_id=gen,
            track_sid=handle.track_sid,
            participant_identity=handle.participant.identity,
            attached=attached,
        ))

    def _on_data_received(self, payload: bytes, participant: ParticipantInfo | None) -> None:
        gen = self._generation
        if gen is None:
            return
        self._emit(TransportDataReceived(
            event_type=EventType.TRANSPORT_DATA_RECEIVED,
            ts_ms=now_ms(),
            service=Service.TRANSPORT,
            run_id=gen,
            payload=payload,
            sender_identity=participant.identity if participant else None,
        ))

    def _on_error(self, reason: str) -> None:
        gen = self._generation
        if gen is None:
            return
        self._connected = False
        self._emit(TransportError(
            event_type=EventType.TRANSPORT_ERROR,
            ts_ms=now_ms(),
            service=Service.TRANSPORT,
            run_id=gen,
            reason=reason,
        ))

    def _log(self, event_type: str, generation: int, **details: object) -> None:
        log_event({
            "ts_ms": now_ms(),
            "event_type": event_type,
            "generation": generation,
            **details,
        })
