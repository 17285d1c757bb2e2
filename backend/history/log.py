"""
Conversation history log.

Responsibilities:
- Store ordered ChatEntry records for one process session
- Assign strictly increasing ids and timestamps on append
- Provide read-only, restartable views for presentation consumers

Non-responsibilities:
- No deletion, mutation or reordering
- No persistence beyond the process
- No orchestration decisions (the runtime decides *when* to append)
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator

from observability.logger import now_ms


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Modality(str, Enum):
    TEXT = "text"
    VOICE = "voice"


@dataclass(frozen=True)
class ChatEntry:
    """Single immutable unit of conversation history."""
    id: int
    sender: Sender
    content: str
    modality: Modality
    created_at_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender.value,
            "content": self.content,
            "modality": self.modality.value,
            "created_at_ms": self.created_at_ms,
        }


class MessageHistoryLog:
    """
    Append-only conversation log owned by a single session controller.

    Invariants:
    - Entries are stored in append order
    - Entry ids are strictly increasing in that order
    """

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._ids = itertools.count(1)
        self._entries: list[ChatEntry] = []

    def append(
        self,
        sender: Sender,
        content: str,
        modality: Modality = Modality.TEXT,
    ) -> ChatEntry:
        entry = ChatEntry(
            id=next(self._ids),
            sender=sender,
            content=content,
            modality=modality,
            created_at_ms=self._clock(),
        )
        self._entries.append(entry)
        return entry

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def __iter__(self) -> Iterator[ChatEntry]:
        # Iterate a snapshot so appends during iteration are not observed.
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def snapshot(self) -> tuple[ChatEntry, ...]:
        return tuple(self._entries)

    def since(self, entry_id: int) -> tuple[ChatEntry, ...]:
        """Entries appended after the entry with the given id."""
        return tuple(e for e in self._entries if e.id > entry_id)

    def last(self) -> ChatEntry | None:
        return self._entries[-1] if self._entries else None


class HistoryView:
    """Read-only facade handed to presentation consumers."""

    def __init__(self, log: MessageHistoryLog) -> None:
        self._log = log

    def __iter__(self) -> Iterator[ChatEntry]:
        return iter(self._log)

    def __len__(self) -> int:
        return len(self._log)

    def snapshot(self) -> tuple[ChatEntry, ...]:
        return self._log.snapshot()

    def since(self, entry_id: int) -> tuple[ChatEntry, ...]:
        return self._log.since(entry_id)

    def last(self) -> ChatEntry | None:
        return self._log.last()
