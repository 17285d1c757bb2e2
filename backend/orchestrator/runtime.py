"""
Runtime execution shell for a single session.

Responsibilities:
- Own controller state
- Serialize intake: one event at a time through the pure reducer
- Execute commands with side effects (history, transport, speech, timers)
- Run network operations in the background so they never block intake
- Convert timer expiry and operation outcomes back into events
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from errors import CredentialError, PublishError, SpeechProviderError, TransportConnectionError
from history.log import ChatEntry
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
from orchestrator.enums.service import Service
from orchestrator.enums.state import SessionState
from orchestrator.events import (
    ConnectFailed,
    DemoReplyDue,
    Event,
    EventType,
    PublishFailed,
    SpeechStartFailed,
    TeardownFailed,
    TextPublished,
)
from orchestrator.reducer import TIMER_DEMO_REPLY_PREFIX, reduce
from orchestrator.state_dataclass import ControllerState
from observability.logger import log_debug, log_event, now_ms
from spec import TEXT_ENCODING

if TYPE_CHECKING:
    from orchestrator.runtime_context import RuntimeExecutionContext


Listener = Callable[[ControllerState, tuple[ChatEntry, ...]], None]


class Runtime:
    """
    Runtime execution boundary for a single session.

    Responsibilities:
    - Own the authoritative controller state
    - Act as the universal event sink for the session
      (user commands, transport events, speech events, timers)
    - Invoke the pure reducer deterministically
    - Execute emitted commands with side effects

    Guarantees:
    - Reducer is called exactly once per accepted event
    - Intake is serialized under one lock; two events never interleave
    - Network work (connect, publish, speech start) runs as background
      operations that report back through handle_event
    - Listeners observe state and new entries after each event completes
    """

    def __init__(
        self,
        *,
        initial_state: ControllerState,
        context: RuntimeExecutionContext,
    ) -> None:
        self._state = initial_state
        self._ctx = context
        self._lock = asyncio.Lock()
        self._closed = False

        self._timers: dict[str, asyncio.Task[None]] = {}
        self._operations: set[asyncio.Task[Any]] = set()
        self._connect_tasks: dict[int, asyncio.Task[None]] = {}
        # Sends complete, and are logged, in submission order.
        self._publish_lock = asyncio.Lock()

        self._listeners: list[Listener] = []
        self._settle_waiters: list[asyncio.Future[SessionState]] = []

    @property
    def state(self) -> ControllerState:
        """
        Return the current immutable controller state.

        Consumers must never modify this state directly.
        """
        return self._state

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a change observer; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def handle_event(self, event: Event) -> None:
        """
        Process a single event through the orchestration pipeline.

        Processing steps:
        1. Pass the current state and event to the pure reducer
        2. Swap in the new state
        3. Execute all emitted commands in order
        4. Notify listeners and settle waiters

        This method is the *only* entry point for events affecting
        controller state.
        """
        async with self._lock:
            if self._closed:
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "EVENT_AFTER_SHUTDOWN",
                    "session_id": self._ctx.session_id,
                    "dropped_event": event.event_type.value,
                })
                return

            log_debug({
                "ts_ms": now_ms(),
                "event_type": "INTAKE",
                "session_id": self._ctx.session_id,
                "intake": event.event_type.value,
            })

            new_state, commands = reduce(self._state, event)
            self._state = new_state

            appended: list[ChatEntry] = []
            for cmd in commands:
                self._execute_command(cmd, appended)

            self._settle()
            self._notify(tuple(appended))

    def submit(self, event: Event) -> None:
        """
        Schedule an event for intake without awaiting it.

        Used as the emit callback of the transport adapter and speech loop.
        Scheduling order is preserved by the FIFO intake lock.
        """
        self._spawn(self.handle_event(event))

    async def wait_settled(self) -> SessionState:
        """Wait until the current connect attempt (if any) has an outcome."""
        if self._state.session_state is not SessionState.CONNECTING:
            return self._state.session_state
        fut: asyncio.Future[SessionState] = asyncio.get_running_loop().create_future()
        self._settle_waiters.append(fut)
        return await fut

    async def wait_idle(self) -> None:
        """Wait until no background operation is outstanding."""
        while self._operations:
            await asyncio.gather(*list(self._operations), return_exceptions=True)

    async def shutdown(self, timeout_s: float) -> None:
        """
        Clean shutdown of runtime.

        Lets teardown operations already issued finish (bounded by timeout_s),
        then cancels everything still in flight and rejects further intake.
        """
        try:
            await asyncio.wait_for(self.wait_idle(), timeout=timeout_s)
        except asyncio.TimeoutError:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "SHUTDOWN_TIMEOUT",
                "session_id": self._ctx.session_id,
                "pending_operations": len(self._operations),
            })

        async with self._lock:
            self._closed = True

        pending = [*self._timers.values(), *self._operations]
        for task in pending:
            task.cancel()
        self._timers.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for fut in self._settle_waiters:
            if not fut.done():
                fut.set_result(self._state.session_state)
        self._settle_waiters.clear()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    def _execute_command(self, cmd: Command, appended: list[ChatEntry]) -> None:
        """Execute a single command. Never awaits; network work is spawned."""

        if isinstance(cmd, LogEvent):
            log_event({
                **cmd.event,
                "session_id": self._ctx.session_id,
            })

        elif isinstance(cmd, AppendEntry):
            appended.append(
                self._ctx.history.append(cmd.sender, cmd.content, cmd.modality)
            )

        elif isinstance(cmd, OpenTransport):
            task = self._spawn(self._open_transport(cmd.generation))
            self._connect_tasks[cmd.generation] = task
            task.add_done_callback(
                lambda _t, gen=cmd.generation: self._connect_tasks.pop(gen, None)
            )

        elif isinstance(cmd, CloseTransport):
            connect_task = self._connect_tasks.pop(cmd.generation, None)
            # A failed attempt reports its own failure; never cancel the reporter.
            if (
                connect_task is not None
                and not connect_task.done()
                and connect_task is not asyncio.current_task()
            ):
                connect_task.cancel()
            self._spawn(self._close_transport(cmd.generation))

        elif isinstance(cmd, SetMicrophone):
            self._spawn(self._set_microphone(cmd.enabled))

        elif isinstance(cmd, SetOutputAudio):
            # Purely local; cannot fail.
            self._ctx.transport.set_remote_audio_enabled(cmd.enabled)

        elif isinstance(cmd, PublishText):
            self._spawn(self._publish_text(cmd.generation, cmd.content))

        elif isinstance(cmd, StartSpeech):
            self._spawn(self._start_speech(cmd.run_id))

        elif isinstance(cmd, StopSpeech):
            self._spawn(self._stop_speech(cmd.run_id))

        elif isinstance(cmd, StartTimer):
            self._start_timer(
                timer_id=cmd.timer_id,
                duration_ms=cmd.duration_ms,
                timeout_event_type=cmd.timeout_event_type,
            )

        else:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "COMMAND_NOT_IMPLEMENTED",
                "session_id": self._ctx.session_id,
                "command_type": type(cmd).__name__,
            })

    # ------------------------------------------------------------------
    # Background operations
    # ------------------------------------------------------------------

    async def _open_transport(self, generation: int) -> None:
        """
        Every non-cancelled attempt ends in TransportConnected or ConnectFailed;
        unexpected provider exceptions are reported, never left to kill the task.
        """
        try:
            credential = await self._ctx.credentials.request_credential()
        except CredentialError as e:
            await self._report_connect_failed(generation, str(e), kind="credential")
            return
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log_unexpected("CREDENTIAL_REQUEST_CRASHED", e)
            await self._report_connect_failed(
                generation, str(e) or type(e).__name__, kind="credential"
            )
            return

        try:
            await self._ctx.transport.connect(credential, generation)
        except TransportConnectionError as e:
            await self._report_connect_failed(generation, str(e), kind="connection")
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log_unexpected("TRANSPORT_CONNECT_CRASHED", e)
            await self._report_connect_failed(
                generation, str(e) or type(e).__name__, kind="connection"
            )

    async def _report_connect_failed(self, generation: int, reason: str, *, kind: str) -> None:
        await self.handle_event(
            ConnectFailed(
                event_type=EventType.CONNECT_FAILED,
                ts_ms=now_ms(),
                service=Service.TRANSPORT,
                run_id=generation,
                reason=reason,
                kind=kind,
            )
        )

    def _log_unexpected(self, event_type: str, error: Exception) -> None:
        log_event({
            "ts_ms": now_ms(),
            "event_type": event_type,
            "session_id": self._ctx.session_id,
            "exception": type(error).__name__,
            "error": repr(error),
        })

    async def _close_transport(self, generation: int) -> None:
        try:
            await self._ctx.transport.disconnect(generation)
        except Exception as e:  # pylint: disable=broad-exception-caught
            await self.handle_event(
                TeardownFailed(
                    event_type=EventType.TEARDOWN_FAILED,
                    ts_ms=now_ms(),
                    service=Service.TRANSPORT,
                    reason=str(e) or type(e).__name__,
                )
            )

    async def _set_microphone(self, enabled: bool) -> None:
        try:
            await self._ctx.transport.set_local_audio_enabled(enabled)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "SET_MICROPHONE_FAILED",
                "session_id": self._ctx.session_id,
                "enabled": enabled,
                "error": repr(e),
            })

    async def _publish_text(self, generation: int, content: str) -> None:
        async with self._publish_lock:
            await self._publish_text_locked(generation, content)

    async def _publish_text_locked(self, generation: int, content: str) -> None:
        try:
            await self._ctx.transport.publish_data(
                content.encode(TEXT_ENCODING),
                reliable=True,
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            if not isinstance(e, PublishError):
                self._log_unexpected("PUBLISH_CRASHED", e)
            await self.handle_event(
                PublishFailed(
                    event_type=EventType.PUBLISH_FAILED,
                    ts_ms=now_ms(),
                    service=Service.TRANSPORT,
                    run_id=generation,
                    content=content,
                    reason=str(e) or type(e).__name__,
                )
            )
            return

        await self.handle_event(
            TextPublished(
                event_type=EventType.TEXT_PUBLISHED,
                ts_ms=now_ms(),
                service=Service.TRANSPORT,
                run_id=generation,
                content=content,
            )
        )

    async def _start_speech(self, run_id: int) -> None:
        loop = self._ctx.speech_loop
        try:
            if loop is None:
                raise SpeechProviderError("speech capture loop missing")
            await loop.start(run_id)
        except SpeechProviderError as e:
            await self._report_speech_start_failed(run_id, str(e))
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log_unexpected("SPEECH_START_CRASHED", e)
            await self._report_speech_start_failed(run_id, str(e) or type(e).__name__)

    async def _report_speech_start_failed(self, run_id: int, reason: str) -> None:
        await self.handle_event(
            SpeechStartFailed(
                event_type=EventType.SPEECH_START_FAILED,
                ts_ms=now_ms(),
                service=Service.SPEECH,
                run_id=run_id,
                reason=reason,
            )
        )

    async def _stop_speech(self, run_id: int) -> None:
        loop = self._ctx.speech_loop
        if loop is None:
            return
        try:
            await loop.stop(run_id)
        except Exception as e:  # pylint: disable=broad-exception-caught
            await self.handle_event(
                TeardownFailed(
                    event_type=EventType.TEARDOWN_FAILED,
                    ts_ms=now_ms(),
                    service=Service.SPEECH,
                    reason=str(e) or type(e).__name__,
                )
            )

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._operations.add(task)
        task.add_done_callback(self._operations.discard)
        return task

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def _settle(self) -> None:
        if self._state.session_state is SessionState.CONNECTING:
            return
        waiters, self._settle_waiters = self._settle_waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(self._state.session_state)

    def _notify(self, appended: tuple[ChatEntry, ...]) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state, appended)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "LISTENER_ERROR",
                    "session_id": self._ctx.session_id,
                    "error": repr(e),
                })

    # ------------------------------------------------------------------
    # Timer management
    # ------------------------------------------------------------------

    def _start_timer(
        self,
        *,
        timer_id: str,
        duration_ms: int,
        timeout_event_type: EventType,
    ) -> None:
        """
        Start or replace a timer that emits a timeout event.

        Timer tasks re-enter handle_event() when they expire,
        maintaining the single event entry point invariant.
        """
        self._cancel_timer(timer_id)

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(duration_ms / 1000.0)
                event = self._construct_timeout_event(
                    timer_id=timer_id,
                    timeout_event_type=timeout_event_type,
                )
                self._timers.pop(timer_id, None)
                await self.handle_event(event)
            except asyncio.CancelledError:
                return

        self._timers[timer_id] = asyncio.create_task(_timer_task())

    def _cancel_timer(self, timer_id: str) -> None:
        """
        Cancel an in-flight timer if it exists.

        Idempotent: safe to call even if timer doesn't exist.
        """
        task = self._timers.pop(timer_id, None)
        if task is not None and not task.done():
            task.cancel()

    def _construct_timeout_event(
        self,
        *,
        timer_id: str,
        timeout_event_type: EventType,
    ) -> Event:
        ts = now_ms()

        if timeout_event_type is EventType.DEMO_REPLY_DUE:
            # Timer ID format: "demo_reply:REPLY_ID"
            prefix, _, reply_id = timer_id.partition(":")
            if prefix == TIMER_DEMO_REPLY_PREFIX and reply_id.isdigit():
                return DemoReplyDue(
                    event_type=EventType.DEMO_REPLY_DUE,
                    ts_ms=ts,
                    reply_id=int(reply_id),
                )
            raise ValueError(
                f"Malformed demo_reply timer_id: {timer_id} "
                f"(expected format: demo_reply:REPLY_ID)"
            )

        raise ValueError(
            f"Unknown timeout event type: {timeout_event_type} "
            f"for timer_id: {timer_id}"
        )
