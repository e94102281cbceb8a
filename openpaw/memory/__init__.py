"""
Memory System — persistent memory of the agent.

Structure (inside OPENPAW_MEMORY_DIR):
- MEMORY.md — long-term memory (facts, preferences, decisions, summaries)
- memory/YYYY-MM-DD.md — daily logs (append-only)
- memory.db — FTS5 index, disposable, rebuilt from the files above
"""

from openpaw.memory.context import ContextAssembler, strip_context_block
from openpaw.memory.errors import (
    ImmutableEntryError,
    InvalidEntryError,
    MemoryNotReadyError,
    MemoryStoreError,
)
from openpaw.memory.index import MemoryIndex
from openpaw.memory.manager import MemoryManager, SessionState
from openpaw.memory.models import MemoryEntry, SearchResult, ShortTermMessage
from openpaw.memory.short_term import ShortTermWindow
from openpaw.memory.storage import MemoryStorage
from openpaw.memory.tools import MEMORY_TOOL_NAMES, create_memory_tools, execute_memory_tool

__all__ = [
    "ContextAssembler",
    "ImmutableEntryError",
    "InvalidEntryError",
    "MemoryEntry",
    "MemoryIndex",
    "MemoryManager",
    "MemoryNotReadyError",
    "MemoryStorage",
    "MemoryStoreError",
    "MEMORY_TOOL_NAMES",
    "SearchResult",
    "SessionState",
    "ShortTermMessage",
    "ShortTermWindow",
    "create_memory_tools",
    "execute_memory_tool",
    "strip_context_block",
]
