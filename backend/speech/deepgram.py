"""
Deepgram live transcription provider.

Core model:
- One Deepgram WebSocket per start(); closed on stop().
- Microphone frames (PCM16 16 kHz mono) are streamed as binary messages.
- "Results" messages become TranscriptSegments (interim and final).
- A server-side close while not stopping is a provider-initiated end
  (on_end); the capture loop decides whether to restart.
- An abnormal close or Deepgram error message is on_error.

Design constraints:
- Provider must not call the runtime or know about run ids.
- Provider must not own restart policy.
"""

from __future__ import annotations

import asyncio
import json
import urllib.parse
from typing import Any, TYPE_CHECKING

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from errors import SpeechProviderError
from observability.logger import log_debug, log_event, now_ms
from speech.base import SpeechCaptureProvider, TranscriptSegment
from spec import (
    AUDIO_CHANNELS,
    AUDIO_SAMPLE_RATE_HZ,
    DEEPGRAM_ENDPOINTING_MS,
    DEEPGRAM_LISTEN_URL,
    DEEPGRAM_MODEL_DEFAULT,
    SPEECH_LANGUAGE_DEFAULT,
)

if TYPE_CHECKING:
    from audio.microphone import MicrophoneSource, MicrophoneSubscription


class DeepgramSpeechProvider(SpeechCaptureProvider):
    """
    Deepgram /v1/listen streaming recognizer.

    Connection lifecycle:
    - start(): connect, subscribe to the microphone, spawn send/recv tasks,
      then on_start.
    - stop(): CloseStream, close socket, cancel tasks, on_end (once).
    """

    def __init__(
        self,
        *,
        api_key: str,
        microphone: MicrophoneSource,
        model: str = DEEPGRAM_MODEL_DEFAULT,
        language: str = SPEECH_LANGUAGE_DEFAULT,
        url: str = DEEPGRAM_LISTEN_URL,
        endpointing_ms: int = DEEPGRAM_ENDPOINTING_MS,
    ) -> None:
        super().__init__()
        self._api_key = api_key
        self._microphone = microphone
        self._model = model
        self._language = language
        self._url = url
        self._endpointing_ms = endpointing_ms

        self._ws: ClientConnection | None = None
        self._mic: MicrophoneSubscription | None = None
        self._send_task: asyncio.Task[None] | None = None
        self._recv_task: asyncio.Task[None] | None = None
        self._stopping = False
        self._running = False

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    def _build_url(self) -> str:
        params: dict[str, str] = {
            "model": self._model,
            "encoding": "linear16",
            "sample_rate": str(AUDIO_SAMPLE_RATE_HZ),
            "channels": str(AUDIO_CHANNELS),
            "interim_results": "true",
            "punctuate": "true",
            "language": self._language,
            "endpointing": str(self._endpointing_ms),
        }
        return f"{self._url}?{urllib.parse.urlencode(params)}"

    async def start(self) -> None:
        if self._running:
            return

        self._stopping = False
        try:
            self._ws = await ws_connect(
                self._build_url(),
                additional_headers={"Authorization": f"Token {self._api_key}"},
                max_size=2**22,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            self._ws = None
            raise SpeechProviderError(f"deepgram_connect_failed: {e!r}") from e

        try:
            mic = self._microphone.subscribe()
        except Exception as e:  # pylint: disable=broad-exception-caught
            # PortAudio failures surface here when the input stream opens.
            ws, self._ws = self._ws, None
            await ws.close()
            raise SpeechProviderError(f"microphone_unavailable: {e!r}") from e

        self._running = True
        self._mic = mic
        self._send_task = asyncio.create_task(self._send_loop(self._ws, self._mic))
        self._recv_task = asyncio.create_task(self._recv_loop(self._ws))

        log_event({
            "ts_ms": now_ms(),
            "event_type": "DEEPGRAM_CONNECTED",
            "model": self._model,
            "language": self._language,
        })
        self.handlers.on_start()

    async def stop(self) -> None:
        if not self._running:
            return
        self._stopping = True

        ws = self._ws
        if ws is not None:
            try:
                await ws.send(json.dumps({"type": "CloseStream"}))
            except ConnectionClosed:
                pass
            await ws.close()

        recv = self._recv_task
        if recv is not None and not recv.done() and recv is not asyncio.current_task():
            recv.cancel()
            await asyncio.gather(recv, return_exceptions=True)

        self._finish()

    def _finish(self) -> None:
        """Release per-connection resources and report the end exactly once."""
        if not self._running:
            return
        self._running = False

        if self._mic is not None:
            self._mic.close()
            self._mic = None

        send = self._send_task
        self._send_task = None
        if send is not None and not send.done():
            send.cancel()

        self._recv_task = None
        self._ws = None

        log_event({
            "ts_ms": now_ms(),
            "event_type": "DEEPGRAM_CLOSED",
            "initiated_by": "client" if self._stopping else "provider",
        })
        self.handlers.on_end()

    # -------------------------------------------------------------------------
    # Background loops
    # -------------------------------------------------------------------------

    async def _send_loop(self, ws: ClientConnection, mic: MicrophoneSubscription) -> None:
        try:
            async for frame in mic:
                await ws.send(frame.pcm_bytes)
        except ConnectionClosed:
            # The receive loop observes the close and reports it.
            return

    async def _recv_loop(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                if isinstance(raw, bytes):
                    continue
                try:
                    data = json.loads(raw)
                except ValueError:
                    log_event({
                        "ts_ms": now_ms(),
                        "event_type": "DEEPGRAM_BAD_MESSAGE",
                        "raw": raw[:200],
                    })
                    continue
                self._handle_message(data)
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as e:
            if not self._stopping:
                self.handlers.on_error(f"deepgram_connection_lost: {e!r}")

        if not self._stopping:
            self._finish()

    def _handle_message(self, data: dict[str, Any]) -> None:
        msg_type = data.get("type")
        log_debug({"ts_ms": now_ms(), "event_type": "DEEPGRAM_MESSAGE", "type": msg_type})

        if msg_type == "Error":
            self.handlers.on_error(
                f"deepgram_error: {data.get('err_code') or data.get('code')} "
                f"{data.get('err_msg') or data.get('description')}"
            )
            return

        if msg_type != "Results":
            return

        alternatives = (data.get("channel") or {}).get("alternatives") or []
        if not alternatives:
            return
        transcript = alternatives[0].get("transcript")
        if not isinstance(transcript, str) or not transcript.strip():
            return

        self.handlers.on_result([
            TranscriptSegment(text=transcript, is_final=bool(data.get("is_final"))),
        ])
