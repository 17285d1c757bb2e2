# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio

import pytest

from errors import PublishError, TransportConnectionError
from orchestrator.events import (
    AgentJoined,
    Event,
    RemoteAudioTrackAvailable,
    TransportConnected,
    TransportDataReceived,
    TransportDisconnected,
)
from transport.adapter import TransportSessionAdapter
from transport.credentials import Credential

CREDENTIAL = Credential(token="tok", room_name="room-1", url="wss://livekit.test")


def make_adapter(provider) -> tuple[TransportSessionAdapter, list[Event]]:
    emitted: list[Event] = []
    return TransportSessionAdapter(provider=provider, emit_event=emitted.append), emitted


@pytest.mark.asyncio
async def test_connect_emits_connected_for_its_generation(transport_provider) -> None:
    adapter, emitted = make_adapter(transport_provider)

    await adapter.connect(CREDENTIAL, 4)

    assert transport_provider.connect_calls == [("wss://livekit.test", "tok")]
    assert adapter.connected is True
    assert isinstance(emitted[0], TransportConnected)
    assert emitted[0].run_id == 4


@pytest.mark.asyncio
async def test_disconnect_released_during_connect_tears_down(transport_provider) -> None:
    adapter, emitted = make_adapter(transport_provider)
    transport_provider.connect_gate = asyncio.Event()

    task = asyncio.create_task(adapter.connect(CREDENTIAL, 1))
    await asyncio.sleep(0)
    disconnect = asyncio.create_task(adapter.disconnect(1))
    await asyncio.sleep(0)
    transport_provider.connect_gate.set()
    await asyncio.gather(task, disconnect)

    assert transport_provider.disconnect_calls == 1
    assert adapter.connected is False
    assert adapter.generation is None
    assert not [e for e in emitted if isinstance(e, TransportConnected)]


@pytest.mark.asyncio
async def test_cancelled_connect_tears_down(transport_provider) -> None:
    adapter, _ = make_adapter(transport_provider)
    transport_provider.connect_gate = asyncio.Event()

    task = asyncio.create_task(adapter.connect(CREDENTIAL, 1))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert transport_provider.disconnect_calls == 1
    assert adapter.generation is None


@pytest.mark.asyncio
async def test_connect_for_released_generation_is_skipped(transport_provider) -> None:
    adapter, _ = make_adapter(transport_provider)

    await adapter.disconnect(2)
    await adapter.connect(CREDENTIAL, 2)

    assert transport_provider.connect_calls == []
    assert transport_provider.disconnect_calls == 0


@pytest.mark.asyncio
async def test_stale_disconnect_is_noop(transport_provider) -> None:
    adapter, _ = make_adapter(transport_provider)

    await adapter.connect(CREDENTIAL, 3)
    await adapter.disconnect(2)

    assert transport_provider.disconnect_calls == 0
    assert adapter.connected is True


@pytest.mark.asyncio
async def test_provider_failure_releases_generation(transport_provider) -> None:
    adapter, emitted = make_adapter(transport_provider)
    transport_provider.fail_connect = "room unreachable"

    with pytest.raises(TransportConnectionError):
        await adapter.connect(CREDENTIAL, 1)

    assert adapter.generation is None
    assert emitted == []


@pytest.mark.asyncio
async def test_publish_requires_connection(transport_provider) -> None:
    adapter, _ = make_adapter(transport_provider)

    with pytest.raises(PublishError):
        await adapter.publish_data(b"hi")

    await adapter.connect(CREDENTIAL, 1)
    await adapter.publish_data(b"hi")
    assert transport_provider.published == [b"hi"]


@pytest.mark.asyncio
async def test_local_audio_is_noop_when_not_connected(transport_provider) -> None:
    adapter, _ = make_adapter(transport_provider)

    await adapter.set_local_audio_enabled(True)
    assert transport_provider.mic_calls == []

    await adapter.connect(CREDENTIAL, 1)
    await adapter.set_local_audio_enabled(True)
    assert transport_provider.mic_calls == [True]


@pytest.mark.asyncio
async def test_remote_callbacks_are_tagged_and_filtered(transport_provider) -> None:
    adapter, emitted = make_adapter(transport_provider)
    await adapter.connect(CREDENTIAL, 7)
    emitted.clear()

    transport_provider.agent_joins("agent-7")
    transport_provider.track_subscribed("TR_user", "someone", is_agent=False)
    transport_provider.track_subscribed("TR_agent", "agent-7", is_agent=True)
    transport_provider.data(b"{}")
    transport_provider.remote_disconnect("server shutdown")

    assert [type(e) for e in emitted] == [
        AgentJoined,
        RemoteAudioTrackAvailable,
        RemoteAudioTrackAvailable,
        TransportDataReceived,
        TransportDisconnected,
    ]
    assert all(e.run_id == 7 for e in emitted)
    assert [e.attached for e in emitted if isinstance(e, RemoteAudioTrackAvailable)] == [
        False,
        True,
    ]
    assert transport_provider.attached == ["TR_agent"]
    assert emitted[-1].reason == "server shutdown"
    assert adapter.connected is False


@pytest.mark.asyncio
async def test_callbacks_after_release_are_dropped(transport_provider) -> None:
    adapter, emitted = make_adapter(transport_provider)
    await adapter.connect(CREDENTIAL, 1)
    await adapter.disconnect(1)
    emitted.clear()

    transport_provider.data(b"late")
    transport_provider.remote_disconnect()

    assert emitted == []
