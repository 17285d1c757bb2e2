"""
Session gateway.

Responsibilities:
- Owns one SessionController per WebSocket connection
- Routes inbound JSON control messages -> controller commands
- Mirrors controller changes to the client (STATE snapshots, ENTRY records)
- Answers malformed client messages with ERROR

Not responsible for:
- Any state machine logic
- Provider IO (the controller's runtime runs it)
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, TYPE_CHECKING
from uuid import uuid4

from history.log import ChatEntry
from observability.logger import log_event, now_ms
from session.controller import SessionController, SessionSnapshot

if TYPE_CHECKING:
    from config import AppConfig


ControllerFactory = Callable[["AppConfig", str], SessionController]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


def _default_controller_factory(config: AppConfig, session_id: str) -> SessionController:
    return SessionController.from_config(config, session_id=session_id)


def _state_msg(snapshot: SessionSnapshot) -> dict[str, Any]:
    return {"type": "STATE", "state": snapshot.to_dict()}


def _entry_msg(entry: ChatEntry) -> dict[str, Any]:
    return {"type": "ENTRY", "entry": entry.to_dict()}


def _error_msg(code: str, detail: str) -> dict[str, Any]:
    return {"type": "ERROR", "code": code, "detail": detail}


# ------------------------------------------------------------------
# Gateway result
# ------------------------------------------------------------------

@dataclass(frozen=True)
class GatewayResult:
    """
    Return value for gateway boundary methods.

    outbound_json:
        JSON messages to send to the client immediately
    """
    outbound_json: tuple[dict[str, Any], ...] = ()


# ------------------------------------------------------------------
# SessionGateway
# ------------------------------------------------------------------

class SessionGateway:
    """
    One gateway == one WebSocket == one session controller.

    Changes produced asynchronously (agent messages, transcripts, demo
    replies) are queued and delivered through outbound().
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        controller_factory: ControllerFactory | None = None,
    ) -> None:
        self._config = config
        self._factory = controller_factory or _default_controller_factory
        self.controller: SessionController | None = None

        self._outbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._unsubscribe: Callable[[], None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def session_id(self) -> str | None:
        return self.controller.session_id if self.controller else None

    async def on_ws_connect(self) -> GatewayResult:
        """Called when a WebSocket connection is established."""
        session_id = _new_session_id()
        self.controller = self._factory(self._config, session_id)
        self._unsubscribe = self.controller.subscribe(self._on_change)

        log_event({
            "ts_ms": now_ms(),
            "event_type": "WS_SESSION_STARTED",
            "session_id": session_id,
        })

        init_msg: dict[str, Any] = {
            "type": "SESSION_INIT",
            "session_id": session_id,
            "state": self.controller.snapshot().to_dict(),
            "history": [e.to_dict() for e in self.controller.history],
        }
        return GatewayResult(outbound_json=(init_msg,))

    async def on_ws_disconnect(self, reason: str | None = None) -> GatewayResult:
        """Called when the WebSocket disconnects."""
        if self.controller is None:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "WS_DISCONNECT_WITHOUT_SESSION",
                "reason": reason,
            })
            return GatewayResult()

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        await self.controller.aclose()
        self._outbox.put_nowait(None)

        log_event({
            "ts_ms": now_ms(),
            "event_type": "WS_SESSION_ENDED",
            "session_id": self.controller.session_id,
            "reason": reason,
        })
        return GatewayResult()

    async def on_json_message(self, payload: str) -> GatewayResult:
        """Route inbound JSON to controller commands."""
        if self.controller is None:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "MESSAGE_WITHOUT_SESSION",
                "payload_preview": payload[:100],
            })
            return GatewayResult()

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "JSON_DECODE_ERROR",
                "session_id": self.controller.session_id,
                "error": str(e),
                "payload_preview": payload[:100],
            })
            return GatewayResult(outbound_json=(_error_msg("invalid_json", str(e)),))

        if not isinstance(data, dict):
            return GatewayResult(outbound_json=(_error_msg("invalid_message", "expected an object"),))

        msg_type = data.get("type")
        controller = self.controller

        if msg_type == "CONNECT":
            await controller.connect()
        elif msg_type == "DISCONNECT":
            await controller.disconnect()
        elif msg_type == "TOGGLE_VOICE":
            # May wait for a connect attempt; must not block further messages.
            self._spawn(controller.toggle_voice_mode())
        elif msg_type == "TOGGLE_MUTE":
            await controller.toggle_mute()
        elif msg_type == "TOGGLE_AUDIO":
            await controller.toggle_output_audio()
        elif msg_type == "SEND_TEXT":
            content = data.get("content")
            if not isinstance(content, str):
                return GatewayResult(
                    outbound_json=(_error_msg("invalid_message", "SEND_TEXT requires string content"),)
                )
            await controller.send_text(content)
        else:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "UNKNOWN_MESSAGE_TYPE",
                "msg_type": msg_type,
                "session_id": controller.session_id,
            })
            return GatewayResult(outbound_json=(_error_msg("unknown_type", str(msg_type)),))

        return GatewayResult()

    async def outbound(self) -> AsyncIterator[dict[str, Any]]:
        """Yield queued STATE/ENTRY messages until the session ends."""
        while True:
            msg = await self._outbox.get()
            if msg is None:
                return
            yield msg

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_change(self, snapshot: SessionSnapshot, appended: tuple[ChatEntry, ...]) -> None:
        for entry in appended:
            self._outbox.put_nowait(_entry_msg(entry))
        self._outbox.put_nowait(_state_msg(snapshot))

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
