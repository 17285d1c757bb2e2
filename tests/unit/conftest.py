# pylint: disable=missing-module-docstring,missing-function-docstring
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import pytest

from errors import CredentialError, PublishError, SpeechProviderError, TransportConnectionError
from observability import logger
from session.controller import SessionController
from speech.base import SpeechCaptureProvider, TranscriptSegment
from transport.base import ParticipantInfo, RemoteAudioHandle, TransportProvider
from transport.credentials import Credential


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeCredentialClient:
    def __init__(self, *, fail: str | None = None) -> None:
        self.fail = fail
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def request_credential(self) -> Credential:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail is not None:
            raise CredentialError(self.fail)
        return Credential(token="tok", room_name="room-1", url="wss://livekit.test")


class FakeTransportProvider(TransportProvider):
    def __init__(self) -> None:
        super().__init__()
        self.connect_calls: list[tuple[str, str]] = []
        self.disconnect_calls = 0
        self.mic_calls: list[bool] = []
        self.published: list[bytes] = []
        self.attached: list[str] = []
        self.remote_audio: list[bool] = []
        self.connected = False

        self.fail_connect: str | None = None
        self.connect_exc: Exception | None = None
        self.fail_disconnect: str | None = None
        self.fail_publish: str | None = None
        self.connect_gate: asyncio.Event | None = None
        self.publish_delays: dict[bytes, float] = {}

    async def connect(self, url: str, token: str) -> None:
        self.connect_calls.append((url, token))
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.fail_connect is not None:
            raise TransportConnectionError(self.fail_connect)
        if self.connect_exc is not None:
            raise self.connect_exc
        self.connected = True
        self.handlers.on_connected()

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False
        if self.fail_disconnect is not None:
            raise RuntimeError(self.fail_disconnect)

    async def set_microphone_enabled(self, enabled: bool) -> None:
        self.mic_calls.append(enabled)

    async def publish_data(self, payload: bytes, *, reliable: bool = True) -> None:
        delay = self.publish_delays.get(payload)
        if delay:
            await asyncio.sleep(delay)
        if self.fail_publish is not None:
            raise PublishError(self.fail_publish)
        self.published.append(payload)

    def attach_remote_audio(self, handle: RemoteAudioHandle) -> None:
        self.attached.append(handle.track_sid)

    def set_remote_audio_enabled(self, enabled: bool) -> None:
        self.remote_audio.append(enabled)

    # Remote-side simulation

    def remote_disconnect(self, reason: str | None = None) -> None:
        self.connected = False
        self.handlers.on_disconnected(reason)

    def agent_joins(self, identity: str = "agent-1") -> None:
        self.handlers.on_participant_connected(ParticipantInfo(identity=identity, is_agent=True))

    def track_subscribed(self, sid: str, identity: str, *, is_agent: bool) -> None:
        self.handlers.on_track_subscribed(RemoteAudioHandle(
            track_sid=sid,
            participant=ParticipantInfo(identity=identity, is_agent=is_agent),
        ))

    def data(self, payload: bytes, identity: str = "agent-1") -> None:
        self.handlers.on_data_received(payload, ParticipantInfo(identity=identity, is_agent=True))

    def error(self, reason: str) -> None:
        self.handlers.on_error(reason)


class FakeSpeechProvider(SpeechCaptureProvider):
    def __init__(self) -> None:
        super().__init__()
        self.start_calls = 0
        self.stop_calls = 0
        self.running = False
        self.fail_start: str | None = None
        self.start_exc: Exception | None = None
        self.fail_stop: str | None = None

    async def start(self) -> None:
        self.start_calls += 1
        if self.fail_start is not None:
            raise SpeechProviderError(self.fail_start)
        if self.start_exc is not None:
            raise self.start_exc
        self.running = True
        self.handlers.on_start()

    async def stop(self) -> None:
        self.stop_calls += 1
        if self.fail_stop is not None:
            raise SpeechProviderError(self.fail_stop)
        if self.running:
            self.running = False
            self.handlers.on_end()

    # Provider-side simulation

    def result(self, *segments: tuple[str, bool]) -> None:
        segs: Sequence[TranscriptSegment] = [
            TranscriptSegment(text=text, is_final=final) for text, final in segments
        ]
        self.handlers.on_result(segs)

    def final(self, text: str) -> None:
        self.result((text, True))

    def ends_itself(self) -> None:
        self.running = False
        self.handlers.on_end()

    def error(self, reason: str) -> None:
        self.handlers.on_error(reason)


# ---------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------

@dataclass
class Harness:
    controller: SessionController
    credentials: FakeCredentialClient
    transport: FakeTransportProvider
    speech: FakeSpeechProvider | None

    def contents(self) -> list[str]:
        return [e.content for e in self.controller.history]


@pytest.fixture
def make_session() -> Callable[..., Harness]:
    def _make(*, speech: bool = True, demo_reply_delay_ms: int = 20, **kwargs: Any) -> Harness:
        credentials = FakeCredentialClient(**kwargs)
        transport = FakeTransportProvider()
        speech_provider = FakeSpeechProvider() if speech else None
        controller = SessionController(
            credentials=credentials,
            transport_provider=transport,
            speech_provider=speech_provider,
            session_id="sess_test",
            demo_reply_delay_ms=demo_reply_delay_ms,
            teardown_timeout_s=1.0,
        )
        return Harness(controller, credentials, transport, speech_provider)

    return _make


@pytest.fixture(autouse=True)
def captured_logs(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    return lines


@pytest.fixture
def speech_provider() -> FakeSpeechProvider:
    return FakeSpeechProvider()


@pytest.fixture
def transport_provider() -> FakeTransportProvider:
    return FakeTransportProvider()


@pytest.fixture
def controller_factory() -> Callable[..., SessionController]:
    """Gateway-compatible factory that builds controllers over fakes."""
    def _factory(_config: Any, session_id: str) -> SessionController:
        return SessionController(
            credentials=FakeCredentialClient(),
            transport_provider=FakeTransportProvider(),
            speech_provider=FakeSpeechProvider(),
            session_id=session_id,
            demo_reply_delay_ms=20,
            teardown_timeout_s=1.0,
        )

    return _factory
