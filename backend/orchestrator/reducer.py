"""
Pure session reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
"""

# Generation invariants:
# - transport generation is bumped on every connect attempt AND on every
#   teardown, so callbacks from a superseded attempt never match
# - speech run id is bumped on every voice activation
# - producer events whose generation does not match are ignored, never applied

from __future__ import annotations

from dataclasses import replace
from typing import Any

from history.log import Modality, Sender
from orchestrator.commands import (
    AppendEntry,
    CloseTransport,
    Command,
    LogEvent,
    OpenTransport,
    PublishText,
    SetMicrophone,
    SetOutputAudio,
    StartSpeech,
    StartTimer,
    StopSpeech,
)
from orchestrator.enums.mode import MicState, OutputAudio, VoiceMode
from orchestrator.enums.service import Service
from orchestrator.enums.state import SessionState
from orchestrator.events import (
    AgentJoined,
    ConnectFailed,
    ConnectRequested,
    DemoReplyDue,
    DisconnectRequested,
    Event,
    EventType,
    MuteToggleRequested,
    OutputAudioToggleRequested,
    PublishFailed,
    RemoteAudioTrackAvailable,
    ServiceEvent,
    SessionClosed,
    SpeechEnded,
    SpeechError,
    SpeechFinal,
    SpeechInterim,
    SpeechStartFailed,
    SpeechStarted,
    TeardownFailed,
    TextPublished,
    TextSubmitted,
    TransportConnected,
    TransportDataReceived,
    TransportDisconnected,
    TransportError,
    VoiceToggleRequested,
)
from orchestrator.run_ids import RunIds
from orchestrator.state_dataclass import ControllerState
from spec import (
    DEMO_REPLY_TEXT,
    MSG_AGENT_JOINED,
    MSG_CONNECTED,
    MSG_CONNECTION_FAILED,
    MSG_CONNECTION_LOST,
    MSG_DISCONNECTED,
    MSG_MUTE_UNAVAILABLE,
    MSG_SEND_FAILED,
    MSG_SPEECH_ERROR,
    MSG_SPEECH_UNSUPPORTED,
    MSG_TEARDOWN_FAILED,
    MSG_UNDECODABLE_DATA,
    MSG_VOICE_ACTIVATED,
    MSG_VOICE_DEACTIVATED,
    MSG_VOICE_START_FAILED,
    TEXT_ENCODING,
)

Result = tuple[ControllerState, tuple[Command, ...]]


# =============================================================================
# Timer IDs
# =============================================================================

TIMER_DEMO_REPLY_PREFIX = "demo_reply"


def timer_id_demo_reply(reply_id: int) -> str:
    return f"{TIMER_DEMO_REPLY_PREFIX}:{reply_id}"


# =============================================================================
# Small helpers
# =============================================================================

def _active_run_for(active_runs: RunIds, service: Service) -> int:
    if service is Service.TRANSPORT:
        return active_runs.transport
    if service is Service.SPEECH:
        return active_runs.speech
    raise ValueError(service)


def _bump_run_id(active_runs: RunIds, service: Service) -> RunIds:
    if service is Service.TRANSPORT:
        return replace(active_runs, transport=active_runs.transport + 1)
    if service is Service.SPEECH:
        return replace(active_runs, speech=active_runs.speech + 1)
    raise ValueError(service)


def _system(content: str) -> AppendEntry:
    return AppendEntry(sender=Sender.SYSTEM, content=content)


def _log(
    state: ControllerState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "session_state": state.session_state.value,
            "voice_mode": state.voice_mode.value,
            "mic": state.mic.value,
            "event_type": event.event_type.value,
            "decision": decision,
            "generations": {
                "transport": state.active_runs.transport,
                "speech": state.active_runs.speech,
            },
            "details": details or {},
        }
    )


def _state_changed(
    prev: ControllerState,
    new: ControllerState,
    event: Event,
    source: str,
) -> LogEvent:
    return _log(
        new,
        event,
        "state_changed",
        {
            "from_state": prev.session_state.value,
            "to_state": new.session_state.value,
            "source": source,
        },
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(state: ControllerState, event: Event, reason: str) -> Result:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


# =============================================================================
# Transitions
# =============================================================================

def _begin_connect(
    state: ControllerState,
    event: Event,
    *,
    voice_pending: bool,
) -> Result:
    """Idle|Error -> Connecting. The network work happens in the runtime."""
    new_runs = _bump_run_id(state.active_runs, Service.TRANSPORT)
    new_state = replace(
        state,
        session_state=SessionState.CONNECTING,
        active_runs=new_runs,
        voice_pending=voice_pending,
        last_error=None,
    )
    return new_state, _logs_last((
        OpenTransport(generation=new_runs.transport),
        _log(
            new_state,
            event,
            "open_transport",
            {"generation": new_runs.transport, "voice_pending": voice_pending},
        ),
        _state_changed(state, new_state, event, "connect"),
    ))


def _reset_session(
    state: ControllerState,
    event: Event,
    *,
    source: str,
    target: SessionState = SessionState.IDLE,
    reason: str | None = None,
) -> tuple[ControllerState, list[Command]]:
    """
    Release the transport session and speech loop, reset voice/mic state.

    The transport generation is bumped so any late callback from the
    released session is discarded.
    """
    cmds: list[Command] = []

    if state.voice_mode is VoiceMode.ACTIVE:
        cmds.append(StopSpeech(run_id=state.active_runs.speech))

    if state.session_state in (SessionState.CONNECTING, SessionState.CONNECTED):
        cmds.append(CloseTransport(generation=state.active_runs.transport))

    new_runs = state.active_runs
    if target is SessionState.IDLE:
        new_runs = _bump_run_id(new_runs, Service.TRANSPORT)

    new_state = replace(
        state,
        session_state=target,
        voice_mode=VoiceMode.INACTIVE,
        mic=MicState.MUTED,
        mic_suspended=False,
        voice_pending=False,
        listening=False,
        interim_transcript="",
        active_runs=new_runs,
        last_error=reason,
    )
    cmds.append(
        _log(
            new_state,
            event,
            "reset_session",
            {"source": source, "released_generation": state.active_runs.transport},
        )
    )
    cmds.append(_state_changed(state, new_state, event, source))
    return new_state, cmds


def _connect_failed(state: ControllerState, event: Event, reason: str) -> Result:
    """Connecting -> Error. Voice mode stays inactive."""
    new_state, cmds = _reset_session(
        state,
        event,
        source="connect_failed",
        target=SessionState.ERROR,
        reason=reason,
    )
    cmds.insert(0, _system(MSG_CONNECTION_FAILED.format(reason=reason)))
    return new_state, _logs_last(tuple(cmds))


def _activate_voice(
    state: ControllerState,
    event: Event,
) -> tuple[ControllerState, list[Command]]:
    """Voice INACTIVE -> ACTIVE on an established session."""
    new_runs = _bump_run_id(state.active_runs, Service.SPEECH)
    new_state = replace(
        state,
        voice_mode=VoiceMode.ACTIVE,
        mic=MicState.LIVE,
        mic_suspended=False,
        voice_pending=False,
        active_runs=new_runs,
    )
    return new_state, [
        StartSpeech(run_id=new_runs.speech),
        SetMicrophone(enabled=True),
        _system(MSG_VOICE_ACTIVATED),
        _log(new_state, event, "voice_activated", {"speech_run_id": new_runs.speech}),
    ]


def _deactivate_voice(
    state: ControllerState,
    event: Event,
    *,
    announce: str | None,
) -> tuple[ControllerState, list[Command]]:
    """Voice ACTIVE -> INACTIVE. The session itself is untouched."""
    new_state = replace(
        state,
        voice_mode=VoiceMode.INACTIVE,
        mic=MicState.MUTED,
        mic_suspended=False,
        listening=False,
        interim_transcript="",
    )
    cmds: list[Command] = [
        StopSpeech(run_id=state.active_runs.speech),
        SetMicrophone(enabled=False),
    ]
    if announce is not None:
        cmds.append(_system(announce))
    cmds.append(
        _log(
            new_state,
            event,
            "voice_deactivated",
            {"speech_run_id": state.active_runs.speech},
        )
    )
    return new_state, cmds


# =============================================================================
# Event handlers
# =============================================================================

def _on_connect_requested(state: ControllerState, event: ConnectRequested) -> Result:
    if state.session_state is SessionState.CONNECTING:
        return _ignore(state, event, "already_connecting")
    if state.session_state is SessionState.CONNECTED:
        return _ignore(state, event, "already_connected")
    return _begin_connect(state, event, voice_pending=False)


def _on_disconnect(state: ControllerState, event: Event, source: str) -> Result:
    had_session = state.session_state in (SessionState.CONNECTING, SessionState.CONNECTED)
    new_state, cmds = _reset_session(state, event, source=source)
    if had_session and isinstance(event, DisconnectRequested):
        cmds.insert(0, _system(MSG_DISCONNECTED))
    return new_state, _logs_last(tuple(cmds))


def _on_voice_toggle(state: ControllerState, event: VoiceToggleRequested) -> Result:
    if not state.speech_available:
        return state, (
            _system(MSG_SPEECH_UNSUPPORTED),
            _log(state, event, "capability_unavailable"),
        )

    if state.voice_pending:
        return _ignore(state, event, "voice_toggle_in_flight")

    if state.session_state is SessionState.CONNECTED:
        if state.voice_mode is VoiceMode.ACTIVE:
            new_state, cmds = _deactivate_voice(state, event, announce=MSG_VOICE_DEACTIVATED)
        else:
            new_state, cmds = _activate_voice(state, event)
        return new_state, _logs_last(tuple(cmds))

    if state.session_state is SessionState.CONNECTING:
        new_state = replace(state, voice_pending=True)
        return new_state, (_log(new_state, event, "voice_awaiting_connect"),)

    # Idle or Error: connect first, activate once the session is up.
    return _begin_connect(state, event, voice_pending=True)


def _on_mute_toggle(state: ControllerState, event: MuteToggleRequested) -> Result:
    if (
        state.session_state is not SessionState.CONNECTED
        or state.voice_mode is not VoiceMode.ACTIVE
    ):
        return state, (
            _system(MSG_MUTE_UNAVAILABLE),
            _log(state, event, "mute_rejected"),
        )

    suspended = not state.mic_suspended
    new_state = replace(
        state,
        mic_suspended=suspended,
        mic=MicState.MUTED if suspended else MicState.LIVE,
        interim_transcript="",
    )
    return new_state, (
        SetMicrophone(enabled=not suspended),
        _log(new_state, event, "mic_suspended" if suspended else "mic_resumed"),
    )


def _on_output_audio_toggle(
    state: ControllerState, event: OutputAudioToggleRequested
) -> Result:
    enabled = state.output_audio is not OutputAudio.ENABLED
    new_state = replace(
        state,
        output_audio=OutputAudio.ENABLED if enabled else OutputAudio.DISABLED,
    )
    return new_state, (
        SetOutputAudio(enabled=enabled),
        _log(new_state, event, "output_audio_toggled", {"enabled": enabled}),
    )


def _on_text_submitted(state: ControllerState, event: TextSubmitted) -> Result:
    if not event.content.strip():
        return _ignore(state, event, "empty_text")

    if state.session_state is SessionState.CONNECTED:
        # User entry is appended only once the publish succeeds.
        return state, (
            PublishText(generation=state.active_runs.transport, content=event.content),
            _log(state, event, "publish_text", {"chars": len(event.content)}),
        )

    reply_id = state.next_demo_reply_id
    new_state = replace(state, next_demo_reply_id=reply_id + 1)
    return new_state, (
        AppendEntry(sender=Sender.USER, content=event.content),
        StartTimer(
            timer_id=timer_id_demo_reply(reply_id),
            duration_ms=state.demo_reply_delay_ms,
            timeout_event_type=EventType.DEMO_REPLY_DUE,
        ),
        _log(new_state, event, "local_text", {"reply_id": reply_id}),
    )


def _on_transport_event(state: ControllerState, event: ServiceEvent) -> Result:
    """Transport events that passed the generation gate."""
    if isinstance(event, TransportConnected):
        if state.session_state is not SessionState.CONNECTING:
            return _ignore(state, event, "connected_outside_connecting")

        new_state = replace(state, session_state=SessionState.CONNECTED)
        cmds: list[Command] = [_system(MSG_CONNECTED)]
        if state.voice_pending:
            new_state, more = _activate_voice(new_state, event)
            cmds.extend(more)
        else:
            cmds.append(SetMicrophone(enabled=False))
        cmds.append(_state_changed(state, new_state, event, "transport_connected"))
        return new_state, _logs_last(tuple(cmds))

    if isinstance(event, ConnectFailed):
        if state.session_state is not SessionState.CONNECTING:
            return _ignore(state, event, "connect_failed_outside_connecting")
        return _connect_failed(state, event, event.reason)

    if isinstance(event, (TransportDisconnected, TransportError)):
        reason = (
            event.reason if isinstance(event, TransportError)
            else (event.reason or "remote disconnect")
        )
        if state.session_state is SessionState.CONNECTING:
            return _connect_failed(state, event, reason)
        if state.session_state is not SessionState.CONNECTED:
            return _ignore(state, event, "no_session")

        new_state, cmds = _reset_session(state, event, source="provider_disconnected")
        if isinstance(event, TransportError):
            cmds.insert(0, _system(MSG_CONNECTION_LOST.format(reason=reason)))
        else:
            cmds.insert(0, _system(MSG_DISCONNECTED))
        return new_state, _logs_last(tuple(cmds))

    if state.session_state is not SessionState.CONNECTED:
        return _ignore(state, event, "no_session")

    if isinstance(event, TransportDataReceived):
        try:
            text = event.payload.decode(TEXT_ENCODING)
        except UnicodeDecodeError:
            return state, (
                _system(MSG_UNDECODABLE_DATA),
                _log(state, event, "data_undecodable", {"bytes": len(event.payload)}),
            )
        if not text.strip():
            return _ignore(state, event, "empty_data")
        return state, (
            AppendEntry(sender=Sender.ASSISTANT, content=text, modality=Modality.VOICE),
            _log(state, event, "assistant_message", {"sender": event.sender_identity}),
        )

    if isinstance(event, AgentJoined):
        return state, (
            _system(MSG_AGENT_JOINED),
            _log(state, event, "agent_joined", {"identity": event.identity}),
        )

    if isinstance(event, RemoteAudioTrackAvailable):
        return state, (
            _log(
                state,
                event,
                "remote_audio_track",
                {
                    "track_sid": event.track_sid,
                    "participant": event.participant_identity,
                    "attached": event.attached,
                },
            ),
        )

    return _ignore(state, event, "unhandled_transport_event")


def _on_publish_outcome(state: ControllerState, event: TextPublished | PublishFailed) -> Result:
    """
    Outcome of a user send. Not generation-gated: text that left the host
    before a disconnect is still recorded.
    """
    if isinstance(event, TextPublished):
        return state, (
            AppendEntry(sender=Sender.USER, content=event.content),
            _log(state, event, "text_published"),
        )
    return state, (
        _system(MSG_SEND_FAILED.format(reason=event.reason)),
        _log(state, event, "publish_failed", {"reason": event.reason}),
    )


def _on_speech_event(state: ControllerState, event: ServiceEvent) -> Result:
    """Speech events that passed the run-id gate."""
    if state.voice_mode is not VoiceMode.ACTIVE:
        return _ignore(state, event, "voice_inactive")

    if isinstance(event, SpeechStarted):
        return replace(state, listening=True), ()

    if isinstance(event, SpeechEnded):
        return replace(state, listening=False, interim_transcript=""), ()

    if isinstance(event, SpeechInterim):
        if state.mic_suspended:
            return state, ()
        return replace(state, interim_transcript=event.text), ()

    if isinstance(event, SpeechFinal):
        if state.mic_suspended:
            return _ignore(state, event, "mic_suspended")
        text = event.text.strip()
        if not text:
            return _ignore(state, event, "empty_transcript")
        new_state = replace(state, interim_transcript="")
        return new_state, (
            AppendEntry(sender=Sender.USER, content=text, modality=Modality.VOICE),
            _log(new_state, event, "speech_final", {"chars": len(text)}),
        )

    if isinstance(event, SpeechStartFailed):
        new_state, cmds = _deactivate_voice(state, event, announce=MSG_VOICE_START_FAILED)
        return new_state, _logs_last(tuple(cmds))

    if isinstance(event, SpeechError):
        new_state, cmds = _deactivate_voice(
            state,
            event,
            announce=MSG_SPEECH_ERROR.format(reason=event.reason),
        )
        return new_state, _logs_last(tuple(cmds))

    return _ignore(state, event, "unhandled_speech_event")


# =============================================================================
# Reducer entrypoint
# =============================================================================

def reduce(state: ControllerState, event: Event) -> Result:
    """
    Pure reducer for the session coordination state machine.

    Given the current controller state and a single event, returns:
    - the next state
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly ignored
    - Generation-safe: ignores producer events from superseded runs
      (publish outcomes excepted; the send already happened)
    """
    if isinstance(event, (TextPublished, PublishFailed)):
        return _on_publish_outcome(state, event)

    if isinstance(event, ServiceEvent):
        if event.run_id != _active_run_for(state.active_runs, event.service):
            return _ignore(state, event, "stale_generation")
        if event.service is Service.TRANSPORT:
            return _on_transport_event(state, event)
        return _on_speech_event(state, event)

    if isinstance(event, ConnectRequested):
        return _on_connect_requested(state, event)

    if isinstance(event, DisconnectRequested):
        return _on_disconnect(state, event, "disconnect")

    if isinstance(event, SessionClosed):
        return _on_disconnect(state, event, "session_closed")

    if isinstance(event, VoiceToggleRequested):
        return _on_voice_toggle(state, event)

    if isinstance(event, MuteToggleRequested):
        return _on_mute_toggle(state, event)

    if isinstance(event, OutputAudioToggleRequested):
        return _on_output_audio_toggle(state, event)

    if isinstance(event, TextSubmitted):
        return _on_text_submitted(state, event)

    if isinstance(event, DemoReplyDue):
        return state, (
            AppendEntry(sender=Sender.ASSISTANT, content=DEMO_REPLY_TEXT),
            _log(state, event, "demo_reply", {"reply_id": event.reply_id}),
        )

    if isinstance(event, TeardownFailed):
        return state, (
            _system(MSG_TEARDOWN_FAILED.format(reason=event.reason)),
            _log(
                state,
                event,
                "teardown_failed",
                {"service": event.service.value, "reason": event.reason},
            ),
        )

    return _ignore(state, event, "unknown_event")
