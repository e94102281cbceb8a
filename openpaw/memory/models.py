"""
Memory Models — structures shared by the storage, the index and the tools.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, get_args


EntryKind = Literal["fact", "preference", "decision", "summary", "log"]
EntrySource = Literal["user", "agent", "system"]
MessageRole = Literal["user", "assistant", "system", "tool"]

ENTRY_KINDS: tuple[str, ...] = get_args(EntryKind)
ENTRY_SOURCES: tuple[str, ...] = get_args(EntrySource)
MESSAGE_ROLES: tuple[str, ...] = get_args(MessageRole)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MemoryEntry:
    """A single durable memory record."""

    id: str
    kind: EntryKind
    content: str
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    source: EntrySource = "agent"

    @property
    def first_line(self) -> str:
        return self.content.split("\n", 1)[0]

    def preview(self, length: int = 100) -> str:
        return self.content[:length]


@dataclass
class ShortTermMessage:
    """A conversational turn; lives only in process memory."""

    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class SearchResult:
    """Search hit. The entry belongs to the storage, not to the index."""

    entry: MemoryEntry
    score: float
    snippet: str
