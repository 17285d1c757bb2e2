"""
Subsystem enumeration for generation-versioned producers.

Rules:
- This enum identifies asynchronous event producers only.
- It must NOT encode behavior or lifecycle rules.
- Reducer logic decides how subsystems are started, stopped, and superseded.
"""

from __future__ import annotations

from enum import Enum


class Service(str, Enum):
    """
    External producers managed by the session controller.

    Each subsystem:
    - Has at most one active run at a time
    - Tags every event it emits with a monotonically increasing generation
    """

    TRANSPORT = "TRANSPORT"
    SPEECH = "SPEECH"
