# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio

import pytest

from history.log import Modality, Sender
from orchestrator.enums.mode import MicState, OutputAudio, VoiceMode
from orchestrator.enums.state import SessionState
from session.controller import SessionController
from spec import (
    DEMO_REPLY_TEXT,
    MSG_AGENT_JOINED,
    MSG_CONNECTED,
    MSG_DISCONNECTED,
    MSG_SPEECH_ERROR,
    MSG_SPEECH_UNSUPPORTED,
    MSG_TEARDOWN_FAILED,
    MSG_VOICE_ACTIVATED,
    MSG_VOICE_DEACTIVATED,
    MSG_VOICE_START_FAILED,
)
from transport.credentials import TokenCredentialClient


async def _connected(h) -> None:
    await h.controller.connect()
    await h.controller.settle()
    assert h.controller.snapshot().session_state is SessionState.CONNECTED


# ---------------------------------------------------------------------
# Connect lifecycle
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_connect_is_idempotent_while_connecting(make_session) -> None:
    h = make_session()
    async with h.controller:
        first = await h.controller.connect()
        second = await h.controller.connect()
        await h.controller.settle()

        assert first is SessionState.CONNECTING
        assert second is SessionState.CONNECTING
        assert h.credentials.calls == 1
        assert len(h.transport.connect_calls) == 1
        assert h.controller.snapshot().session_state is SessionState.CONNECTED
        assert h.contents() == [MSG_CONNECTED]


@pytest.mark.asyncio
async def test_credential_failure_moves_to_error(make_session) -> None:
    h = make_session(fail="Failed to get token (HTTP 500)")
    async with h.controller:
        await h.controller.connect()
        await h.controller.settle()

        snap = h.controller.snapshot()
        assert snap.session_state is SessionState.ERROR
        assert h.transport.connect_calls == []
        assert h.contents() == ["Connection failed: Failed to get token (HTTP 500)"]

        # Error -> Connecting is allowed.
        h.credentials.fail = None
        await h.controller.connect()
        await h.controller.settle()
        assert h.controller.snapshot().session_state is SessionState.CONNECTED


@pytest.mark.asyncio
async def test_transport_failure_moves_to_error(make_session) -> None:
    h = make_session()
    h.transport.fail_connect = "room unreachable"
    async with h.controller:
        await h.controller.connect()
        await h.controller.settle()

        assert h.controller.snapshot().session_state is SessionState.ERROR
        assert h.contents() == ["Connection failed: room unreachable"]


@pytest.mark.asyncio
async def test_disconnect_during_connect_discards_late_success(make_session) -> None:
    h = make_session()
    h.transport.connect_gate = asyncio.Event()
    async with h.controller:
        await h.controller.connect()
        await asyncio.sleep(0.01)
        assert h.transport.connect_calls

        await h.controller.disconnect()
        h.transport.connect_gate.set()
        await h.controller.settle()

        assert h.controller.snapshot().session_state is SessionState.IDLE
        assert MSG_CONNECTED not in h.contents()
        assert h.transport.connected is False
        assert h.transport.disconnect_calls == 1


@pytest.mark.asyncio
async def test_remote_disconnect_returns_to_idle(make_session) -> None:
    h = make_session()
    async with h.controller:
        await _connected(h)
        h.transport.remote_disconnect("server shutdown")
        await h.controller.settle()

        assert h.controller.snapshot().session_state is SessionState.IDLE
        assert h.contents()[-1] == MSG_DISCONNECTED


@pytest.mark.asyncio
async def test_transport_error_reports_connection_lost(make_session) -> None:
    h = make_session()
    async with h.controller:
        await _connected(h)
        h.transport.error("ice failure")
        await h.controller.settle()

        assert h.controller.snapshot().session_state is SessionState.IDLE
        assert h.contents()[-1] == "Connection lost: ice failure"


# ---------------------------------------------------------------------
# Scenario A: text while idle
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_text_while_idle_gets_one_demo_reply(make_session) -> None:
    h = make_session(demo_reply_delay_ms=20)
    states: list[SessionState] = []
    h.controller.subscribe(lambda snap, _entries: states.append(snap.session_state))

    async with h.controller:
        await h.controller.send_text("hello")
        entries = h.controller.history.snapshot()
        assert [(e.sender, e.content) for e in entries] == [(Sender.USER, "hello")]

        await asyncio.sleep(0.1)

        entries = h.controller.history.snapshot()
        assert [(e.sender, e.content) for e in entries] == [
            (Sender.USER, "hello"),
            (Sender.ASSISTANT, DEMO_REPLY_TEXT),
        ]
        assert set(states) == {SessionState.IDLE}


# ---------------------------------------------------------------------
# Scenario B: no speech capability
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_voice_toggle_without_speech_provider(make_session) -> None:
    h = make_session(speech=False)
    async with h.controller:
        mode = await h.controller.toggle_voice_mode()

        assert mode is VoiceMode.INACTIVE
        assert h.controller.snapshot().session_state is SessionState.IDLE
        assert h.contents() == [MSG_SPEECH_UNSUPPORTED]
        assert h.transport.connect_calls == []


# ---------------------------------------------------------------------
# Scenario C: connect, voice, final transcript
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_voice_mode_final_transcript_becomes_user_voice_entry(make_session) -> None:
    h = make_session()
    async with h.controller:
        await _connected(h)

        mode = await h.controller.toggle_voice_mode()
        await h.controller.settle()

        snap = h.controller.snapshot()
        assert mode is VoiceMode.ACTIVE
        assert snap.mic is MicState.LIVE
        assert h.speech.start_calls == 1
        assert h.transport.mic_calls[-1] is True

        h.speech.final("testing")
        await h.controller.settle()

        voice = [e for e in h.controller.history if e.modality is Modality.VOICE]
        assert [(e.sender, e.content) for e in voice] == [(Sender.USER, "testing")]


@pytest.mark.asyncio
async def test_voice_toggle_from_idle_connects_first(make_session) -> None:
    h = make_session()
    async with h.controller:
        mode = await h.controller.toggle_voice_mode()
        await h.controller.settle()

        assert mode is VoiceMode.ACTIVE
        assert h.controller.snapshot().session_state is SessionState.CONNECTED
        assert h.contents() == [MSG_CONNECTED, MSG_VOICE_ACTIVATED]


@pytest.mark.asyncio
async def test_voice_toggle_from_idle_with_failed_connect_stays_inactive(make_session) -> None:
    h = make_session(fail="no token")
    async with h.controller:
        mode = await h.controller.toggle_voice_mode()

        assert mode is VoiceMode.INACTIVE
        assert h.controller.snapshot().session_state is SessionState.ERROR
        assert h.speech.start_calls == 0


@pytest.mark.asyncio
async def test_interim_results_update_snapshot_only(make_session) -> None:
    h = make_session()
    async with h.controller:
        await h.controller.toggle_voice_mode()
        await h.controller.settle()
        before = len(h.controller.history)

        h.speech.result(("hel", False))
        await h.controller.settle()

        assert h.controller.snapshot().interim_transcript == "hel"
        assert len(h.controller.history) == before

        h.speech.result(("hello", True), ("world", True))
        await h.controller.settle()

        assert h.contents()[-1] == "hello world"
        assert h.controller.snapshot().interim_transcript == ""


@pytest.mark.asyncio
async def test_speech_start_failure_deactivates_voice(make_session) -> None:
    h = make_session()
    h.speech.fail_start = "mic busy"
    async with h.controller:
        await _connected(h)
        await h.controller.toggle_voice_mode()
        await h.controller.settle()

        snap = h.controller.snapshot()
        assert snap.voice_mode is VoiceMode.INACTIVE
        assert snap.mic is MicState.MUTED
        assert h.contents()[-1] == MSG_VOICE_START_FAILED


@pytest.mark.asyncio
async def test_voice_toggle_off_stops_loop(make_session) -> None:
    h = make_session()
    async with h.controller:
        await h.controller.toggle_voice_mode()
        await h.controller.settle()

        mode = await h.controller.toggle_voice_mode()
        await h.controller.settle()

        assert mode is VoiceMode.INACTIVE
        assert h.speech.running is False
        assert h.contents()[-1] == MSG_VOICE_DEACTIVATED
        assert h.transport.mic_calls[-1] is False


# ---------------------------------------------------------------------
# Scenario D: disconnect while voice active
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_disconnect_while_voice_active_discards_late_callbacks(make_session) -> None:
    h = make_session()
    async with h.controller:
        await h.controller.toggle_voice_mode()
        await h.controller.settle()

        await h.controller.disconnect()
        await h.controller.settle()

        snap = h.controller.snapshot()
        assert snap.session_state is SessionState.IDLE
        assert snap.voice_mode is VoiceMode.INACTIVE
        assert snap.mic is MicState.MUTED
        assert h.speech.running is False
        assert h.transport.disconnect_calls == 1

        count = len(h.controller.history)
        h.transport.data(b"late reply")
        h.speech.final("late words")
        await h.controller.settle()

        assert len(h.controller.history) == count
        assert h.controller.snapshot() == snap


# ---------------------------------------------------------------------
# Mute, output audio, text over the session
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_mute_suspends_microphone(make_session) -> None:
    h = make_session()
    async with h.controller:
        await h.controller.toggle_voice_mode()
        await h.controller.settle()

        assert await h.controller.toggle_mute() is MicState.MUTED
        await h.controller.settle()
        assert h.transport.mic_calls[-1] is False
        assert h.controller.snapshot().voice_mode is VoiceMode.ACTIVE

        assert await h.controller.toggle_mute() is MicState.LIVE
        await h.controller.settle()
        assert h.transport.mic_calls[-1] is True


@pytest.mark.asyncio
async def test_output_audio_toggle_is_local(make_session) -> None:
    h = make_session()
    async with h.controller:
        assert await h.controller.toggle_output_audio() is OutputAudio.DISABLED
        assert await h.controller.toggle_output_audio() is OutputAudio.ENABLED
        assert h.transport.remote_audio == [False, True]
        assert len(h.controller.history) == 0


@pytest.mark.asyncio
async def test_send_text_over_session_publishes_utf8(make_session) -> None:
    h = make_session()
    async with h.controller:
        await _connected(h)
        await h.controller.send_text("héllo")
        await h.controller.settle()

        assert h.transport.published == ["héllo".encode("utf-8")]
        last = h.controller.history.last()
        assert last is not None
        assert (last.sender, last.content) == (Sender.USER, "héllo")


@pytest.mark.asyncio
async def test_send_text_publish_failure_appends_system_entry_only(make_session) -> None:
    h = make_session()
    h.transport.fail_publish = "data channel closed"
    async with h.controller:
        await _connected(h)
        await h.controller.send_text("hi")
        await h.controller.settle()

        assert h.contents() == [MSG_CONNECTED, "Failed to send message: data channel closed"]


@pytest.mark.asyncio
async def test_agent_join_data_and_audio_track(make_session) -> None:
    h = make_session()
    async with h.controller:
        await _connected(h)
        h.transport.agent_joins("agent-7")
        h.transport.track_subscribed("TR_agent", "agent-7", is_agent=True)
        h.transport.track_subscribed("TR_other", "human-2", is_agent=False)
        h.transport.data("Hi there".encode("utf-8"), identity="agent-7")
        await h.controller.settle()

        assert h.transport.attached == ["TR_agent"]
        assert h.contents() == [MSG_CONNECTED, MSG_AGENT_JOINED, "Hi there"]
        last = h.controller.history.last()
        assert last is not None
        assert (last.sender, last.modality) == (Sender.ASSISTANT, Modality.VOICE)


# ---------------------------------------------------------------------
# Ordering and teardown
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_entry_ids_follow_append_order_across_sources(make_session) -> None:
    h = make_session(demo_reply_delay_ms=5)
    async with h.controller:
        await h.controller.send_text("offline")
        await asyncio.sleep(0.05)
        await h.controller.toggle_voice_mode()
        await h.controller.settle()
        h.transport.data(b"from agent")
        h.speech.final("from mic")
        await h.controller.send_text("typed")
        await h.controller.settle()

        ids = [e.id for e in h.controller.history]
        assert len(ids) >= 6
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)


@pytest.mark.asyncio
async def test_subscribe_receives_new_entries(make_session) -> None:
    h = make_session()
    seen: list[str] = []
    unsubscribe = h.controller.subscribe(
        lambda _snap, entries: seen.extend(e.content for e in entries)
    )
    async with h.controller:
        await _connected(h)
        unsubscribe()
        await h.controller.send_text("after unsubscribe")
        await h.controller.settle()

    assert seen == [MSG_CONNECTED]


@pytest.mark.asyncio
async def test_aclose_releases_session_and_cancels_demo_reply(make_session) -> None:
    h = make_session(demo_reply_delay_ms=50)
    await h.controller.toggle_voice_mode()
    await h.controller.settle()
    await h.controller.disconnect()
    await h.controller.send_text("pending reply")

    await h.controller.aclose()
    await asyncio.sleep(0.1)

    assert h.transport.disconnect_calls >= 1
    assert h.speech.running is False
    assert DEMO_REPLY_TEXT not in h.contents()

    # Commands after close are dropped.
    await h.controller.connect()
    assert h.controller.snapshot().session_state is SessionState.IDLE


# ---------------------------------------------------------------------
# Unexpected provider failures and teardown errors
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unexpected_connect_exception_moves_to_error(make_session) -> None:
    h = make_session()
    h.transport.connect_exc = OSError("network unreachable")
    async with h.controller:
        await h.controller.connect()
        await h.controller.settle()

        assert h.controller.snapshot().session_state is SessionState.ERROR
        assert h.contents() == ["Connection failed: network unreachable"]

        # Not wedged: a later attempt goes through, and voice does not hang.
        h.transport.connect_exc = None
        mode = await asyncio.wait_for(h.controller.toggle_voice_mode(), 1.0)
        assert mode is VoiceMode.ACTIVE
        assert len(h.transport.connect_calls) == 2


@pytest.mark.asyncio
async def test_bad_token_server_url_moves_to_error(transport_provider) -> None:
    controller = SessionController(
        credentials=TokenCredentialClient(base_url="http://bad\x00host:3001"),
        transport_provider=transport_provider,
        teardown_timeout_s=1.0,
    )
    async with controller:
        await controller.connect()
        await controller.settle()

        assert controller.snapshot().session_state is SessionState.ERROR
        [entry] = list(controller.history)
        assert entry.content.startswith("Connection failed: token request failed")
        assert transport_provider.connect_calls == []


@pytest.mark.asyncio
async def test_unexpected_speech_start_exception_deactivates_voice(make_session) -> None:
    h = make_session()
    h.speech.start_exc = OSError("input device vanished")
    async with h.controller:
        await _connected(h)
        await h.controller.toggle_voice_mode()
        await h.controller.settle()

        snap = h.controller.snapshot()
        assert snap.voice_mode is VoiceMode.INACTIVE
        assert snap.mic is MicState.MUTED
        assert h.transport.mic_calls[-1] is False
        assert h.contents()[-1] == MSG_VOICE_START_FAILED


@pytest.mark.asyncio
async def test_speech_error_deactivates_voice_without_restart(make_session) -> None:
    h = make_session()
    async with h.controller:
        await h.controller.toggle_voice_mode()
        await h.controller.settle()

        h.speech.error("quota exceeded")
        h.speech.ends_itself()
        await h.controller.settle()
        await asyncio.sleep(0.2)
        await h.controller.settle()

        snap = h.controller.snapshot()
        assert snap.session_state is SessionState.CONNECTED
        assert snap.voice_mode is VoiceMode.INACTIVE
        assert snap.mic is MicState.MUTED
        assert snap.listening is False
        assert h.speech.start_calls == 1
        assert h.transport.mic_calls[-1] is False
        assert h.contents()[-1] == MSG_SPEECH_ERROR.format(reason="quota exceeded")


@pytest.mark.asyncio
async def test_transport_teardown_failure_is_reported_not_raised(make_session) -> None:
    h = make_session()
    h.transport.fail_disconnect = "socket already gone"
    async with h.controller:
        await _connected(h)

        await h.controller.disconnect()
        await h.controller.settle()

        assert h.controller.snapshot().session_state is SessionState.IDLE
        assert h.contents() == [
            MSG_CONNECTED,
            MSG_DISCONNECTED,
            MSG_TEARDOWN_FAILED.format(reason="socket already gone"),
        ]


@pytest.mark.asyncio
async def test_speech_teardown_failure_is_reported_not_raised(make_session) -> None:
    h = make_session()
    async with h.controller:
        await h.controller.toggle_voice_mode()
        await h.controller.settle()
        h.speech.fail_stop = "stream stuck"

        await h.controller.disconnect()
        await h.controller.settle()

        snap = h.controller.snapshot()
        assert snap.session_state is SessionState.IDLE
        assert snap.voice_mode is VoiceMode.INACTIVE
        assert MSG_TEARDOWN_FAILED.format(reason="stream stuck") in h.contents()


# ---------------------------------------------------------------------
# Publish ordering
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_quick_sends_are_logged_in_submission_order(make_session) -> None:
    h = make_session()
    h.transport.publish_delays[b"first"] = 0.03
    async with h.controller:
        await _connected(h)

        await h.controller.send_text("first")
        await h.controller.send_text("second")
        await h.controller.settle()

        assert h.transport.published == [b"first", b"second"]
        assert h.contents()[-2:] == ["first", "second"]


@pytest.mark.asyncio
async def test_text_sent_just_before_disconnect_is_still_logged(make_session) -> None:
    h = make_session()
    h.transport.publish_delays[b"bye"] = 0.03
    async with h.controller:
        await _connected(h)

        await h.controller.send_text("bye")
        await h.controller.disconnect()
        await h.controller.settle()

        assert h.transport.published == [b"bye"]
        assert h.contents() == [MSG_CONNECTED, MSG_DISCONNECTED, "bye"]
