"""
Speaker sink for remote agent audio.

Accepts PCM16 mono blocks from the event loop and plays them through a
sounddevice raw output stream. The device callback drains a lock-protected
buffer on the PortAudio thread and pads with silence on underrun. The
buffer is bounded; when the device falls behind the OLDEST audio is dropped.
"""

from __future__ import annotations

import threading
from typing import Any

from observability.logger import log_event, now_ms
from spec import (
    AUDIO_CHANNELS,
    AUDIO_SAMPLE_RATE_HZ,
    AUDIO_SAMPLE_WIDTH_BYTES,
    SPEAKER_BUFFER_MAX_BYTES,
)


class SpeakerSink:
    """Thread-safe PCM16 playback; muting drops audio instead of buffering it."""

    def __init__(
        self,
        *,
        sample_rate: int = AUDIO_SAMPLE_RATE_HZ,
        channels: int = AUDIO_CHANNELS,
        max_buffer_bytes: int = SPEAKER_BUFFER_MAX_BYTES,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.max_buffer_bytes = max_buffer_bytes
        self.dropped_bytes = 0
        self._buf = bytearray()
        self._lock = threading.Lock()
        self._stream: Any = None
        self._enabled = True

    def open(self) -> None:
        if self._stream is not None:
            return
        import sounddevice as sd  # pylint: disable=import-outside-toplevel

        self._stream = sd.RawOutputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype="int16",
            callback=self._callback,
        )
        self._stream.start()
        log_event({"ts_ms": now_ms(), "event_type": "SPEAKER_STARTED"})

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        if not enabled:
            with self._lock:
                self._buf.clear()

    def write(self, pcm_bytes: bytes) -> None:
        if not self._enabled or self._stream is None:
            return
        with self._lock:
            self._buf.extend(pcm_bytes)
            overflow = len(self._buf) - self.max_buffer_bytes
            if overflow > 0:
                # Keep whole samples.
                overflow += overflow % AUDIO_SAMPLE_WIDTH_BYTES
                del self._buf[:overflow]
                self.dropped_bytes += overflow

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if self.dropped_bytes:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "SPEAKER_AUDIO_DROPPED",
                "dropped_bytes": self.dropped_bytes,
            })
            self.dropped_bytes = 0
        with self._lock:
            self._buf.clear()
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "SPEAKER_CLOSE_FAILED",
                "error": repr(e),
            })

    def _callback(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        needed = frames * self.channels * AUDIO_SAMPLE_WIDTH_BYTES
        with self._lock:
            chunk = bytes(self._buf[:needed])
            del self._buf[:needed]
        outdata[:len(chunk)] = chunk
        if len(chunk) < needed:
            outdata[len(chunk):] = b"\x00" * (needed - len(chunk))
