"""
Speech capture loop.

Keeps a speech provider running for as long as voice mode is active.

Rules:
- start(run_id) sets the intended-active flag and starts the provider.
- A provider-initiated stop restarts capture after a fixed backoff, but
  only if the loop is still intended active (re-checked after the backoff)
  and the run has not been superseded.
- Provider errors emit SPEECH_ERROR and stop the loop with no restart.
- Every emitted event carries the run id of the loop that produced it.

The loop never calls the reducer; events go through emit_event.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Sequence

from observability.logger import log_event, now_ms
from orchestrator.enums.service import Service
from orchestrator.events import (
    Event,
    EventType,
    SpeechEnded,
    SpeechError,
    SpeechFinal,
    SpeechInterim,
    SpeechStarted,
)
from speech.base import SpeechCaptureProvider, SpeechHandlers, TranscriptSegment
from spec import SPEECH_RESTART_BACKOFF_MS


class SpeechCaptureLoop:
    def __init__(
        self,
        *,
        provider: SpeechCaptureProvider,
        emit_event: Callable[[Event], None],
        restart_backoff_ms: int = SPEECH_RESTART_BACKOFF_MS,
    ) -> None:
        self._provider = provider
        self._emit = emit_event
        self._restart_backoff_ms = restart_backoff_ms

        self._lock = asyncio.Lock()
        self._run_id = 0
        self._intended_active = False
        self._restart_task: asyncio.Task[None] | None = None

        provider.set_handlers(
            SpeechHandlers(
                on_start=self._on_start,
                on_end=self._on_end,
                on_result=self._on_result,
                on_error=self._on_error,
            )
        )

    @property
    def intended_active(self) -> bool:
        return self._intended_active

    @property
    def run_id(self) -> int:
        return self._run_id

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def start(self, run_id: int) -> None:
        """Raises whatever the provider raised on start; the loop is left stopped."""
        async with self._lock:
            self._cancel_restart()
            self._run_id = run_id
            self._intended_active = True
            try:
                await self._provider.start()
            except Exception:
                self._intended_active = False
                raise
            self._log("SPEECH_LOOP_STARTED")

    async def stop(self, run_id: int) -> None:
        async with self._lock:
            if run_id != self._run_id:
                # A newer run already owns the provider.
                self._log("SPEECH_LOOP_STOP_STALE", stale_run_id=run_id)
                return
            self._intended_active = False
            self._cancel_restart()
            await self._provider.stop()
            self._log("SPEECH_LOOP_STOPPED")

    # ------------------------------------------------------------------
    # Provider handlers
    # ------------------------------------------------------------------

    def _on_start(self) -> None:
        self._emit(SpeechStarted(
            event_type=EventType.SPEECH_STARTED,
            ts_ms=now_ms(),
            service=Service.SPEECH,
            run_id=self._run_id,
        ))

    def _on_end(self) -> None:
        self._emit(SpeechEnded(
            event_type=EventType.SPEECH_ENDED,
            ts_ms=now_ms(),
            service=Service.SPEECH,
            run_id=self._run_id,
        ))
        if self._intended_active:
            self._cancel_restart()
            self._restart_task = asyncio.create_task(self._restart(self._run_id))

    def _on_result(self, segments: Sequence[TranscriptSegment]) -> None:
        finals = [s.text.strip() for s in segments if s.is_final and s.text.strip()]
        if finals:
            self._emit(SpeechFinal(
                event_type=EventType.SPEECH_FINAL,
                ts_ms=now_ms(),
                service=Service.SPEECH,
                run_id=self._run_id,
                text=" ".join(finals),
            ))
            return

        interim = " ".join(s.text.strip() for s in segments if s.text.strip())
        if interim:
            self._emit(SpeechInterim(
                event_type=EventType.SPEECH_INTERIM,
                ts_ms=now_ms(),
                service=Service.SPEECH,
                run_id=self._run_id,
                text=interim,
            ))

    def _on_error(self, reason: str) -> None:
        self._intended_active = False
        self._cancel_restart()
        self._log("SPEECH_LOOP_ERROR", reason=reason)
        self._emit(SpeechError(
            event_type=EventType.SPEECH_ERROR,
            ts_ms=now_ms(),
            service=Service.SPEECH,
            run_id=self._run_id,
            reason=reason,
        ))

    # ------------------------------------------------------------------
    # Restart
    # ------------------------------------------------------------------

    async def _restart(self, run_id: int) -> None:
        await asyncio.sleep(self._restart_backoff_ms / 1000.0)

        async with self._lock:
            if not self._intended_active or run_id != self._run_id:
                return
            self._log("SPEECH_LOOP_RESTART")
            try:
                await self._provider.start()
            except Exception as e:  # pylint: disable=broad-exception-caught
                self._on_error(str(e) or type(e).__name__)

    def _cancel_restart(self) -> None:
        task, self._restart_task = self._restart_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _log(self, event_type: str, **details: object) -> None:
        log_event({
            "ts_ms": now_ms(),
            "event_type": event_type,
            "speech_run_id": self._run_id,
            **details,
        })
