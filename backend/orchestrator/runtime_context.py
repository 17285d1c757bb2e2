"""
Runtime execution context.

Provides Runtime with access to the session-owned imperative resources it
needs for command execution (history log, transport adapter, speech loop,
credential client).

This module contains:
- Narrow Protocols (capabilities, not implementations)
- Zero orchestration logic
- Zero state mutation
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from history.log import MessageHistoryLog
    from transport.credentials import Credential


# ---------------------------------------------------------------------
# Collaborator Protocols
# ---------------------------------------------------------------------

@runtime_checkable
class CredentialClientProtocol(Protocol):
    async def request_credential(self) -> Credential:
        """Raises CredentialError on any failure."""
        ...


@runtime_checkable
class TransportAdapterProtocol(Protocol):
    async def connect(self, credential: Credential, generation: int) -> None:
        """Raises TransportConnectionError on failure."""
        ...

    async def disconnect(self, generation: int) -> None: ...
    async def set_local_audio_enabled(self, enabled: bool) -> None: ...
    def set_remote_audio_enabled(self, enabled: bool) -> None: ...
    async def publish_data(self, payload: bytes, *, reliable: bool = True) -> None:
        """Raises PublishError on failure."""
        ...


@runtime_checkable
class SpeechLoopProtocol(Protocol):
    async def start(self, run_id: int) -> None: ...
    async def stop(self, run_id: int) -> None: ...


# ---------------------------------------------------------------------
# Runtime Execution Context
# ---------------------------------------------------------------------

@dataclass
class RuntimeExecutionContext:
    """
    Imperative execution context for Runtime.

    Runtime is allowed to:
    - Call adapters and the speech loop
    - Append to the history log

    Runtime is NOT allowed to:
    - Perform orchestration decisions
    """

    session_id: str
    history: MessageHistoryLog
    credentials: CredentialClientProtocol
    transport: TransportAdapterProtocol
    speech_loop: SpeechLoopProtocol | None = None
