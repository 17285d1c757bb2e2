"""
Generation container for superseding stale producer callbacks.

Rules:
- Generations are monotonic integers.
- They are owned and incremented ONLY by the orchestrator reducer.
- This module defines structure, not behavior.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RunIds:
    """
    Immutable container for active generations per subsystem.

    Semantics:
    - transport: bumped on every connect attempt and on every teardown, so
      callbacks from a superseded attempt never match.
    - speech: bumped on every speech-loop start.
    - A value of 0 means "no run has been started yet".
    """

    transport: int = 0
    speech: int = 0
