"""
LiveKit transport provider.

Binds TransportProvider to livekit.rtc:
- One rtc.Room per connect (dynacast on, auto-subscribe on).
- A local microphone track is published muted on connect; enabling it
  starts forwarding frames from the shared MicrophoneSource.
- Subscribed agent audio is played through the SpeakerSink.
- Room callbacks are bound to the room that registered them; callbacks
  from a released room are dropped.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Callable

from livekit import rtc

from errors import PublishError, TransportConnectionError
from observability.logger import log_event, now_ms
from spec import AUDIO_CHANNELS, AUDIO_SAMPLE_RATE_HZ
from transport.base import ParticipantInfo, RemoteAudioHandle, TransportProvider

if TYPE_CHECKING:
    from audio.microphone import MicrophoneSource, MicrophoneSubscription
    from audio.playback import SpeakerSink


def _participant_info(participant: Any) -> ParticipantInfo:
    return ParticipantInfo(
        identity=participant.identity,
        is_agent=participant.kind == rtc.ParticipantKind.PARTICIPANT_KIND_AGENT,
    )


class LiveKitTransportProvider(TransportProvider):
    def __init__(
        self,
        *,
        microphone: MicrophoneSource,
        speaker: SpeakerSink | None = None,
    ) -> None:
        super().__init__()
        self._microphone = microphone
        self._speaker = speaker

        self._room: rtc.Room | None = None
        self._audio_source: rtc.AudioSource | None = None
        self._mic_track: rtc.LocalAudioTrack | None = None
        self._mic_sub: MicrophoneSubscription | None = None
        self._mic_task: asyncio.Task[None] | None = None
        self._playback_tasks: dict[str, asyncio.Task[None]] = {}
        self._remote_audio_enabled = True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, url: str, token: str) -> None:
        room = rtc.Room()
        self._room = room
        self._bind(room)

        try:
            await room.connect(
                url,
                token,
                options=rtc.RoomOptions(auto_subscribe=True, dynacast=True),
            )
        except rtc.ConnectError as e:
            self._room = None
            raise TransportConnectionError(str(e) or "room connect failed") from e

        try:
            source = rtc.AudioSource(AUDIO_SAMPLE_RATE_HZ, AUDIO_CHANNELS)
            track = rtc.LocalAudioTrack.create_audio_track("microphone", source)
            await room.local_participant.publish_track(
                track,
                rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_MICROPHONE),
            )
            track.mute()
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._room = None
            await room.disconnect()
            raise TransportConnectionError(f"microphone publish failed: {e}") from e

        self._audio_source = source
        self._mic_track = track

        log_event({
            "ts_ms": now_ms(),
            "event_type": "LIVEKIT_CONNECTED",
            "room": room.name,
            "remote_participants": len(room.remote_participants),
        })
        self.handlers.on_connected()

        # Participants already present do not fire participant_connected.
        for participant in list(room.remote_participants.values()):
            self.handlers.on_participant_connected(_participant_info(participant))

    async def disconnect(self) -> None:
        room, self._room = self._room, None

        self._stop_mic_forwarding()
        for task in self._playback_tasks.values():
            task.cancel()
        self._playback_tasks.clear()
        self._audio_source = None
        self._mic_track = None
        if self._speaker is not None:
            self._speaker.close()

        if room is not None:
            await room.disconnect()
            log_event({"ts_ms": now_ms(), "event_type": "LIVEKIT_DISCONNECTED"})

    def _bind(self, room: rtc.Room) -> None:
        def current(fn: Callable[..., None]) -> Callable[..., None]:
            def _wrapped(*args: Any) -> None:
                if self._room is room:
                    fn(*args)
            return _wrapped

        @current
        def _on_participant_connected(participant: rtc.RemoteParticipant) -> None:
            self.handlers.on_participant_connected(_participant_info(participant))

        @current
        def _on_track_subscribed(
            track: rtc.Track,
            publication: rtc.RemoteTrackPublication,
            participant: rtc.RemoteParticipant,
        ) -> None:
            if track.kind != rtc.TrackKind.KIND_AUDIO:
                return
            self.handlers.on_track_subscribed(RemoteAudioHandle(
                track_sid=publication.sid,
                participant=_participant_info(participant),
                track=track,
            ))

        @current
        def _on_data_received(packet: rtc.DataPacket) -> None:
            sender = _participant_info(packet.participant) if packet.participant else None
            self.handlers.on_data_received(bytes(packet.data), sender)

        @current
        def _on_disconnected(reason: Any = None) -> None:
            self.handlers.on_disconnected(str(reason) if reason is not None else None)

        room.on("participant_connected", _on_participant_connected)
        room.on("track_subscribed", _on_track_subscribed)
        room.on("data_received", _on_data_received)
        room.on("disconnected", _on_disconnected)

    # ------------------------------------------------------------------
    # Microphone
    # ------------------------------------------------------------------

    async def set_microphone_enabled(self, enabled: bool) -> None:
        track = self._mic_track
        if track is None:
            return

        if enabled:
            track.unmute()
            if self._mic_task is None:
                self._mic_sub = self._microphone.subscribe()
                self._mic_task = asyncio.create_task(self._forward_mic(self._mic_sub))
        else:
            track.mute()
            self._stop_mic_forwarding()

    async def _forward_mic(self, sub: MicrophoneSubscription) -> None:
        source = self._audio_source
        if source is None:
            return
        async for frame in sub:
            await source.capture_frame(
                rtc.AudioFrame(
                    data=frame.pcm_bytes,
                    sample_rate=AUDIO_SAMPLE_RATE_HZ,
                    num_channels=AUDIO_CHANNELS,
                    samples_per_channel=frame.samples // AUDIO_CHANNELS,
                )
            )

    def _stop_mic_forwarding(self) -> None:
        if self._mic_sub is not None:
            self._mic_sub.close()
            self._mic_sub = None
        task, self._mic_task = self._mic_task, None
        if task is not None and not task.done():
            task.cancel()

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    async def publish_data(self, payload: bytes, *, reliable: bool = True) -> None:
        room = self._room
        if room is None:
            raise PublishError("no room")
        try:
            await room.local_participant.publish_data(payload, reliable=reliable)
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise PublishError(str(e) or type(e).__name__) from e

    # ------------------------------------------------------------------
    # Remote audio
    # ------------------------------------------------------------------

    def attach_remote_audio(self, handle: RemoteAudioHandle) -> None:
        if self._speaker is None or handle.track is None:
            return
        if handle.track_sid in self._playback_tasks:
            return
        self._speaker.open()
        self._speaker.set_enabled(self._remote_audio_enabled)
        self._playback_tasks[handle.track_sid] = asyncio.create_task(
            self._play(handle.track)
        )

    def set_remote_audio_enabled(self, enabled: bool) -> None:
        self._remote_audio_enabled = enabled
        if self._speaker is not None:
            self._speaker.set_enabled(enabled)

    async def _play(self, track: rtc.Track) -> None:
        stream = rtc.AudioStream(
            track,
            sample_rate=AUDIO_SAMPLE_RATE_HZ,
            num_channels=AUDIO_CHANNELS,
        )
        try:
            async for event in stream:
                if self._speaker is not None:
                    self._speaker.write(bytes(event.frame.data))
        finally:
            await stream.aclose()
