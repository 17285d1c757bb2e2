"""
Session controller.

Public command surface for one voice/text session. Owns the runtime, the
transport session adapter, the speech capture loop and the history log.

Responsibilities:
- Translate operator commands into events for the runtime
- Check speech capability once at construction
- Expose read-only observation (snapshot, history, subscribe)
- Tear everything down on aclose()

Not responsible for:
- Any state machine decision (see orchestrator/reducer.py)
- Network IO (adapters, run by the runtime in the background)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable
from uuid import uuid4

from audio.microphone import MicrophoneSource
from audio.playback import SpeakerSink
from errors import CapabilityUnavailable
from history.log import ChatEntry, HistoryView, MessageHistoryLog
from observability.logger import log_event, now_ms
from orchestrator.enums.mode import MicState, OutputAudio, VoiceMode
from orchestrator.enums.state import SessionState
from orchestrator.events import (
    ConnectRequested,
    DisconnectRequested,
    Event,
    EventType,
    MuteToggleRequested,
    OutputAudioToggleRequested,
    SessionClosed,
    TextSubmitted,
    VoiceToggleRequested,
)
from orchestrator.runtime import Runtime
from orchestrator.runtime_context import CredentialClientProtocol, RuntimeExecutionContext
from orchestrator.state_dataclass import ControllerState
from speech.base import SpeechCaptureProvider, create_speech_provider
from speech.loop import SpeechCaptureLoop
from spec import DEMO_REPLY_DELAY_MS, TEARDOWN_TIMEOUT_S
from transport.adapter import TransportSessionAdapter
from transport.base import TransportProvider, create_transport_provider
from transport.credentials import TokenCredentialClient

if TYPE_CHECKING:
    from config import AppConfig


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of the controller state for presentation consumers."""
    session_state: SessionState
    voice_mode: VoiceMode
    mic: MicState
    output_audio: OutputAudio
    mic_suspended: bool
    listening: bool
    interim_transcript: str
    speech_available: bool
    last_error: str | None

    @staticmethod
    def from_state(state: ControllerState) -> SessionSnapshot:
        return SessionSnapshot(
            session_state=state.session_state,
            voice_mode=state.voice_mode,
            mic=state.mic,
            output_audio=state.output_audio,
            mic_suspended=state.mic_suspended,
            listening=state.listening,
            interim_transcript=state.interim_transcript,
            speech_available=state.speech_available,
            last_error=state.last_error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_state": self.session_state.value,
            "voice_mode": self.voice_mode.value,
            "mic": self.mic.value,
            "output_audio": self.output_audio.value,
            "mic_suspended": self.mic_suspended,
            "listening": self.listening,
            "interim_transcript": self.interim_transcript,
            "speech_available": self.speech_available,
            "last_error": self.last_error,
        }


Subscriber = Callable[[SessionSnapshot, tuple[ChatEntry, ...]], None]


class SessionController:
    """
    One session: one runtime, one transport adapter, one speech loop.

    Every command method is safe to call in any state; invalid commands
    are rejected by the reducer (logged, or explained with a System entry).
    """

    def __init__(
        self,
        *,
        credentials: CredentialClientProtocol,
        transport_provider: TransportProvider,
        speech_provider: SpeechCaptureProvider | None = None,
        session_id: str | None = None,
        history: MessageHistoryLog | None = None,
        demo_reply_delay_ms: int = DEMO_REPLY_DELAY_MS,
        teardown_timeout_s: float = TEARDOWN_TIMEOUT_S,
    ) -> None:
        self.session_id = session_id or str(uuid4())
        self._history = history if history is not None else MessageHistoryLog()
        self._teardown_timeout_s = teardown_timeout_s
        self._closed = False

        self._transport = TransportSessionAdapter(
            provider=transport_provider,
            emit_event=self._submit,
        )
        self._speech_loop = (
            SpeechCaptureLoop(provider=speech_provider, emit_event=self._submit)
            if speech_provider is not None
            else None
        )

        self._runtime = Runtime(
            initial_state=ControllerState(
                speech_available=speech_provider is not None,
                demo_reply_delay_ms=demo_reply_delay_ms,
            ),
            context=RuntimeExecutionContext(
                session_id=self.session_id,
                history=self._history,
                credentials=credentials,
                transport=self._transport,
                speech_loop=self._speech_loop,
            ),
        )

        log_event({
            "ts_ms": now_ms(),
            "event_type": "SESSION_CREATED",
            "session_id": self.session_id,
            "speech_available": speech_provider is not None,
        })

    @classmethod
    def from_config(cls, config: AppConfig, *, session_id: str | None = None) -> SessionController:
        """Build a controller wired to the configured providers."""
        microphone = MicrophoneSource()
        speaker = SpeakerSink() if config.audio_output else None

        try:
            speech_provider: SpeechCaptureProvider | None = create_speech_provider(
                config, microphone
            )
        except CapabilityUnavailable as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "SPEECH_UNAVAILABLE",
                "reason": str(e),
            })
            speech_provider = None

        return cls(
            credentials=TokenCredentialClient(
                base_url=config.token_server_url,
                timeout_s=config.token_request_timeout_s,
            ),
            transport_provider=create_transport_provider(
                config, microphone=microphone, speaker=speaker
            ),
            speech_provider=speech_provider,
            session_id=session_id,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def connect(self) -> SessionState:
        """
        Start a connect attempt; returns without waiting for the network.

        No-op while Connecting or Connected. Use settle() to await the outcome.
        """
        await self._dispatch(ConnectRequested(event_type=EventType.CONNECT_REQUESTED, ts_ms=now_ms()))
        return self._runtime.state.session_state

    async def disconnect(self) -> None:
        """End the session from any state. Never raises."""
        await self._dispatch(
            DisconnectRequested(event_type=EventType.DISCONNECT_REQUESTED, ts_ms=now_ms())
        )

    async def toggle_voice_mode(self) -> VoiceMode:
        """
        Flip voice mode. When no session exists, connects first and waits
        for the attempt's outcome.
        """
        await self._dispatch(
            VoiceToggleRequested(event_type=EventType.VOICE_TOGGLE_REQUESTED, ts_ms=now_ms())
        )
        if self._runtime.state.voice_pending:
            await self._runtime.wait_settled()
        return self._runtime.state.voice_mode

    async def toggle_mute(self) -> MicState:
        await self._dispatch(
            MuteToggleRequested(event_type=EventType.MUTE_TOGGLE_REQUESTED, ts_ms=now_ms())
        )
        return self._runtime.state.mic

    async def toggle_output_audio(self) -> OutputAudio:
        await self._dispatch(
            OutputAudioToggleRequested(
                event_type=EventType.OUTPUT_AUDIO_TOGGLE_REQUESTED,
                ts_ms=now_ms(),
            )
        )
        return self._runtime.state.output_audio

    async def send_text(self, content: str) -> None:
        await self._dispatch(
            TextSubmitted(event_type=EventType.TEXT_SUBMITTED, ts_ms=now_ms(), content=content)
        )

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot.from_state(self._runtime.state)

    @property
    def history(self) -> HistoryView:
        return HistoryView(self._history)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Call `callback(snapshot, new_entries)` after every processed event.

        Returns an unsubscribe callable.
        """
        def _listener(state: ControllerState, appended: tuple[ChatEntry, ...]) -> None:
            callback(SessionSnapshot.from_state(state), appended)

        return self._runtime.add_listener(_listener)

    async def settle(self) -> None:
        """Wait until every background operation issued so far has reported back."""
        await self._runtime.wait_idle()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True

        await self._runtime.handle_event(
            SessionClosed(event_type=EventType.SESSION_CLOSED, ts_ms=now_ms())
        )
        await self._runtime.shutdown(self._teardown_timeout_s)

        log_event({
            "ts_ms": now_ms(),
            "event_type": "SESSION_CLOSED",
            "session_id": self.session_id,
            "entries": len(self._history),
        })

    async def __aenter__(self) -> SessionController:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _dispatch(self, event: Event) -> None:
        if self._closed:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "COMMAND_AFTER_CLOSE",
                "session_id": self.session_id,
                "command": event.event_type.value,
            })
            return
        await self._runtime.handle_event(event)

    def _submit(self, event: Event) -> None:
        self._runtime.submit(event)
