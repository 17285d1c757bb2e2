"""
Speech capture provider contract.

This module defines the *interface only*: no restart policy, no run ids,
no orchestration decisions live here (see speech/loop.py).

Key invariants:
- A provider reports through the handlers installed with set_handlers();
  it never calls the runtime or the reducer.
- on_end fires exactly once per successful start(), whether the provider
  stopped itself or stop() was called.
- on_error means the provider cannot continue; on_end may still follow.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Sequence

from errors import CapabilityUnavailable

if TYPE_CHECKING:
    from audio.microphone import MicrophoneSource
    from config import AppConfig


@dataclass(frozen=True)
class TranscriptSegment:
    """One recognized fragment. Final segments will not be revised."""
    text: str
    is_final: bool


def _noop(*_args: object) -> None:
    return None


@dataclass
class SpeechHandlers:
    on_start: Callable[[], None] = _noop
    on_end: Callable[[], None] = _noop
    on_result: Callable[[Sequence[TranscriptSegment]], None] = _noop
    on_error: Callable[[str], None] = _noop


class SpeechCaptureProvider(ABC):
    """
    Abstract interface for a streaming speech recognizer.

    Implementations are responsible for:
    - Capturing audio from the shared microphone source
    - Delivering interim and final transcript segments
    - Reporting provider-initiated stops via on_end

    Non-responsibilities:
    - No restarts (the capture loop decides)
    - No run-id bookkeeping
    """

    def __init__(self) -> None:
        self.handlers = SpeechHandlers()

    def set_handlers(self, handlers: SpeechHandlers) -> None:
        self.handlers = handlers

    @abstractmethod
    async def start(self) -> None:
        """Begin capturing. Raises SpeechProviderError if it cannot start."""
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:
        """
        Halt capture.

        Contract:
        - Idempotent: stopping a stopped provider is a no-op.
        - Must not raise for an already-closed connection.
        """
        raise NotImplementedError


def create_speech_provider(
    config: AppConfig,
    microphone: MicrophoneSource,
) -> SpeechCaptureProvider:
    """
    One-time capability check.

    Raises CapabilityUnavailable when speech is disabled, the provider is
    unknown or unconfigured, or the host has no audio input.
    """
    provider = config.speech_provider.lower()

    if provider in ("", "none"):
        raise CapabilityUnavailable("speech capture disabled")

    if provider != "deepgram":
        raise CapabilityUnavailable(f"unknown speech provider: {config.speech_provider}")

    if not config.deepgram_api_key:
        raise CapabilityUnavailable("DEEPGRAM_API_KEY not set")

    microphone.check_available()

    # Local import keeps websockets off the import path of text-only hosts.
    from speech.deepgram import DeepgramSpeechProvider  # pylint: disable=import-outside-toplevel

    return DeepgramSpeechProvider(
        api_key=config.deepgram_api_key,
        microphone=microphone,
        model=config.deepgram_model,
        language=config.speech_language,
    )
