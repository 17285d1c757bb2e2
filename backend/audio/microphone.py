"""
Shared microphone source.

One sounddevice input stream fans out to any number of asyncio subscribers
(the transport's local audio track and the speech provider both read the
same device).

Threading:
- The device callback runs on the PortAudio thread; frames are handed to
  the event loop with call_soon_threadsafe and never touch asyncio objects
  directly.
- Each subscriber queue is bounded; when full the OLDEST frame is dropped
  so a slow consumer never builds latency.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

from audio.frames import AudioFrame
from errors import CapabilityUnavailable
from observability.logger import log_event, now_ms
from spec import (
    AUDIO_CHANNELS,
    AUDIO_SAMPLE_RATE_HZ,
    AUDIO_SAMPLES_PER_FRAME,
    MIC_SUBSCRIBER_QUEUE_MAX_FRAMES,
)


class MicrophoneSubscription:
    """Async iterator over frames delivered to one subscriber."""

    def __init__(self, source: MicrophoneSource, max_frames: int) -> None:
        self._source = source
        self._queue: asyncio.Queue[AudioFrame | None] = asyncio.Queue(maxsize=max_frames)
        self.dropped = 0

    def _offer(self, frame: AudioFrame | None) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(frame)

    def close(self) -> None:
        self._source.unsubscribe(self)
        self._offer(None)

    def __aiter__(self) -> MicrophoneSubscription:
        return self

    async def __anext__(self) -> AudioFrame:
        frame = await self._queue.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


class MicrophoneSource:
    """
    Reference-counted capture from the default input device.

    The device stream is opened on first subscribe() and closed when the
    last subscription closes.
    """

    def __init__(
        self,
        *,
        sample_rate: int = AUDIO_SAMPLE_RATE_HZ,
        channels: int = AUDIO_CHANNELS,
        blocksize: int = AUDIO_SAMPLES_PER_FRAME,
        max_frames: int = MIC_SUBSCRIBER_QUEUE_MAX_FRAMES,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self._blocksize = blocksize
        self._max_frames = max_frames

        self._stream: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._subscribers: list[MicrophoneSubscription] = []
        self._seq = itertools.count()

    # ------------------------------------------------------------------
    # Capability
    # ------------------------------------------------------------------

    @staticmethod
    def check_available() -> None:
        """
        Raise CapabilityUnavailable when no input device can be used.

        sounddevice is imported lazily so hosts without PortAudio can still
        run text-only sessions.
        """
        try:
            import sounddevice as sd  # pylint: disable=import-outside-toplevel
        except (ImportError, OSError) as e:
            raise CapabilityUnavailable(f"audio backend unavailable: {e}") from e

        try:
            sd.query_devices(kind="input")
        except (ValueError, sd.PortAudioError) as e:
            raise CapabilityUnavailable(f"no audio input device: {e}") from e

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self) -> MicrophoneSubscription:
        sub = MicrophoneSubscription(self, self._max_frames)
        self._subscribers.append(sub)
        if self._stream is None:
            try:
                self._open()
            except Exception:
                self._subscribers.remove(sub)
                raise
        return sub

    def unsubscribe(self, sub: MicrophoneSubscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)
            if sub.dropped:
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "MIC_FRAMES_DROPPED",
                    "dropped": sub.dropped,
                })
        if not self._subscribers:
            self._close()

    @property
    def active(self) -> bool:
        return self._stream is not None

    # ------------------------------------------------------------------
    # Device stream
    # ------------------------------------------------------------------

    def _open(self) -> None:
        import sounddevice as sd  # pylint: disable=import-outside-toplevel

        self._loop = asyncio.get_running_loop()
        stream = sd.RawInputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype="int16",
            blocksize=self._blocksize,
            callback=self._callback,
        )
        try:
            stream.start()
        except Exception:
            stream.close()
            raise
        self._stream = stream
        log_event({
            "ts_ms": now_ms(),
            "event_type": "MIC_STARTED",
            "sample_rate": self.sample_rate,
            "channels": self.channels,
        })

    def _close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "MIC_CLOSE_FAILED",
                "error": repr(e),
            })
        log_event({"ts_ms": now_ms(), "event_type": "MIC_STOPPED"})

    def _callback(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        # PortAudio thread.
        frame = AudioFrame(
            sequence_num=next(self._seq),
            pcm_bytes=bytes(indata),
            ts_ms=now_ms(),
        )
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._dispatch, frame)

    def _dispatch(self, frame: AudioFrame) -> None:
        for sub in list(self._subscribers):
            sub._offer(frame)  # pylint: disable=protected-access
