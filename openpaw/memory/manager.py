"""
Memory Manager — session lifecycle over storage, index and short-term window.

    uninitialized → ready → (turns)* → flushing → ready → ... → closed

The chat layer owns one manager: init() before the first turn,
build_context() once per turn, close() (final flush) on shutdown.
"""

from __future__ import annotations

import threading
from collections import Counter
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

from loguru import logger

from openpaw.config import DEFAULT_MAX_FACTS, DEFAULT_SHORT_TERM_WINDOW
from openpaw.memory.context import ContextAssembler
from openpaw.memory.errors import MemoryNotReadyError
from openpaw.memory.index import MemoryIndex
from openpaw.memory.models import (
    EntryKind,
    EntrySource,
    MemoryEntry,
    MessageRole,
    SearchResult,
    ShortTermMessage,
)
from openpaw.memory.short_term import ShortTermWindow
from openpaw.memory.storage import MemoryStorage

if TYPE_CHECKING:
    from openpaw.config import Settings


INDEX_FILE = "memory.db"
SESSION_SUMMARY_TAG = "session-summary"
LAST_MESSAGE_CHARS = 200


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FLUSHING = "flushing"
    CLOSED = "closed"


class MemoryManager:
    """
    Persistent memory of the agent.

    - MemoryStorage is the source of truth (MEMORY.md + daily logs)
    - MemoryIndex is rebuilt from it on init() and updated on every write
    - ShortTermWindow keeps the last turns of the running session

    Storage files and index are one resource: writes, rebuilds and searches
    all run under the same lock.
    """

    def __init__(
        self,
        memory_dir: Path,
        short_term_window: int = DEFAULT_SHORT_TERM_WINDOW,
        max_facts: int = DEFAULT_MAX_FACTS,
    ) -> None:
        self._memory_dir = Path(memory_dir)
        self._storage = MemoryStorage(self._memory_dir, max_facts=max_facts)
        self._index = MemoryIndex(self._memory_dir / INDEX_FILE)
        self._window = ShortTermWindow(short_term_window)
        self._assembler = ContextAssembler(self._index, self._window)
        self._lock = threading.RLock()
        self._state = SessionState.UNINITIALIZED

    @classmethod
    def from_settings(cls, settings: Settings) -> MemoryManager:
        return cls(
            settings.memory_dir,
            short_term_window=settings.short_term_window,
            max_facts=settings.max_facts,
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def memory_dir(self) -> Path:
        return self._memory_dir

    @property
    def storage(self) -> MemoryStorage:
        return self._storage

    @property
    def index(self) -> MemoryIndex:
        return self._index

    @property
    def window(self) -> ShortTermWindow:
        return self._window

    def _require_ready(self, operation: str) -> None:
        if self._state is not SessionState.READY:
            raise MemoryNotReadyError(
                f"memory.{operation}() called in state '{self._state.value}', call init() first"
            )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def init(self) -> None:
        """Creates the file structure and rebuilds the index. Blocking."""
        with self._lock:
            self._storage.init_structure()
            count = self._index.rebuild(self._storage.read_all())
            self._state = SessionState.READY
        logger.info(f"Memory initialized at {self._memory_dir} ({count} entries)")

    def flush(self, summary_text: str | None = None) -> MemoryEntry:
        """
        Ends a session: stores a summary log entry and clears the window.

        Without summary_text the summary is synthesised from the window
        (turn count + last user message). An empty window still produces
        an "Empty session." entry.
        """
        with self._lock:
            self._require_ready("flush")
            self._state = SessionState.FLUSHING
            try:
                if summary_text is None or not summary_text.strip():
                    summary_text = self._synthesize_summary()

                entry, _ = self._storage.persist(
                    summary_text,
                    kind="log",
                    tags=[SESSION_SUMMARY_TAG, datetime.now().date().isoformat()],
                    source="system",
                )
                self._index.upsert(entry)
                self._window.clear()
            finally:
                self._state = SessionState.READY

        logger.info("Session flushed to memory")
        return entry

    def close(self, flush: bool = True) -> None:
        """Final flush (if ready) and release of the index connection."""
        with self._lock:
            if self._state is SessionState.CLOSED:
                return
            try:
                if flush and self._state is SessionState.READY:
                    self.flush()
            finally:
                self._index.close()
                self._state = SessionState.CLOSED
        logger.info("Memory closed")

    def reindex(self) -> int:
        """Rebuilds the index from the files. Returns the entry count."""
        with self._lock:
            self._require_ready("reindex")
            return self._index.rebuild(self._storage.read_all())

    def __enter__(self) -> MemoryManager:
        self.init()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _synthesize_summary(self) -> str:
        turns = len(self._window)
        if not turns:
            return "Empty session."

        last = self._window.last_user_message()
        text = last.content[:LAST_MESSAGE_CHARS] if last else "N/A"
        return f'Session ended with {turns} turns. Last user message: "{text}"'

    # =========================================================================
    # Long-term memory
    # =========================================================================

    def save(
        self,
        content: str,
        kind: EntryKind = "fact",
        tags: Iterable[str] | None = None,
        source: EntrySource = "agent",
        entry_id: str | None = None,
    ) -> MemoryEntry:
        """Writes through the storage, then updates the index."""
        with self._lock:
            self._require_ready("save")
            entry, evicted = self._storage.persist(content, kind, tags, source, entry_id)
            self._index.upsert(entry)
            for old in evicted:
                self._index.remove(old.id)
        return entry

    def forget(self, entry_id: str) -> bool:
        """Deletes a long-term entry. Daily logs cannot be forgotten."""
        with self._lock:
            self._require_ready("forget")
            removed = self._storage.forget(entry_id)
            if removed:
                self._index.remove(entry_id)
        return removed

    def search(self, query: str, limit: int = 5) -> list[SearchResult]:
        with self._lock:
            self._require_ready("search")
            return self._index.search(query, limit)

    def list_entries(self, kind: EntryKind | None = None, limit: int = 20) -> list[MemoryEntry]:
        self._require_ready("list_entries")
        return self._storage.list_entries(kind=kind, limit=limit)

    def read_all(self) -> list[MemoryEntry]:
        return self._storage.read_all()

    def get(self, entry_id: str) -> MemoryEntry | None:
        return self._storage.get(entry_id)

    # =========================================================================
    # Short-term memory & context
    # =========================================================================

    def add_message(self, role: MessageRole, content: str) -> ShortTermMessage:
        message = ShortTermMessage(role=role, content=content)
        self._window.append(message)
        return message

    def build_context(self, query: str | None = None) -> str:
        """Memory block for the next turn's instructions ("" → omit it)."""
        with self._lock:
            self._require_ready("build_context")
            return self._assembler.build(query)

    def stats(self) -> dict[str, Any]:
        """Read-only snapshot; same structure as the memory_stats tool."""
        entries = self._storage.read_all()
        by_kind = Counter(e.kind for e in entries)
        return {
            "total_entries": len(entries),
            "short_term_length": len(self._window),
            "by_kind": dict(by_kind),
            "memory_dir": str(self._memory_dir),
        }
