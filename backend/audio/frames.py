"""
Audio frame primitives.

Pure data containers only.
No behavior, no queues, no device access.
"""

from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class AudioFrame:
    """
    One captured block of microphone audio.

    sequence_num:
        Monotonic per-source counter. Used for gap detection and debugging.

    pcm_bytes:
        Raw PCM16 little-endian mono bytes, spec.AUDIO_SAMPLE_RATE_HZ.
        Nominally spec.AUDIO_BYTES_PER_FRAME_PCM long; the device may
        deliver shorter blocks at stream boundaries.

    ts_ms:
        Wall-clock timestamp when the device callback delivered the block.
        Observability only.
    """
    sequence_num: int
    pcm_bytes: bytes
    ts_ms: int

    @property
    def samples(self) -> int:
        return len(self.pcm_bytes) // 2
