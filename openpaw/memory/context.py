"""
Context Assembler — memory block injected into the next reasoning turn.
"""

from loguru import logger

from openpaw.memory.index import MemoryIndex
from openpaw.memory.short_term import ShortTermWindow


CONTEXT_OPEN = "<memory>"
CONTEXT_CLOSE = "</memory>"

CONTEXT_SEARCH_LIMIT = 5
HIT_LINE_CHARS = 150


class ContextAssembler:
    """Relevant long-term memories + the short-term window, in one block."""

    def __init__(
        self,
        index: MemoryIndex,
        window: ShortTermWindow,
        search_limit: int = CONTEXT_SEARCH_LIMIT,
    ) -> None:
        self._index = index
        self._window = window
        self._search_limit = search_limit

    def _long_term_section(self, query: str) -> str:
        try:
            results = self._index.search(query, self._search_limit)
        except Exception as e:
            # Never fail a turn because of memory
            logger.warning(f"Memory search for context failed: {e}")
            return ""

        if not results:
            return ""

        lines = ["## Relevant Long-Term Memories"]
        for r in results:
            lines.append(
                f"- [{r.entry.kind}] {r.entry.first_line[:HIT_LINE_CHARS]}"
                f" _(tags: {', '.join(r.entry.tags)})_"
            )
        return "\n".join(lines)

    def build(self, query: str | None = None) -> str:
        """
        Builds the context block.

        Returns:
            "<memory>...</memory>" block, or "" when there is nothing to
            inject (callers must then omit the block entirely).
        """
        parts = []

        if query and query.strip():
            section = self._long_term_section(query)
            if section:
                parts.append(section)

        recent = self._window.summarize()
        if recent:
            parts.append("## Recent Context\n" + recent)

        if not parts:
            return ""
        return f"\n\n{CONTEXT_OPEN}\n" + "\n\n".join(parts) + f"\n{CONTEXT_CLOSE}\n"


def strip_context_block(text: str) -> str:
    """Removes an injected memory block from assembled instructions."""
    start = text.find(CONTEXT_OPEN)
    if start == -1:
        return text
    end = text.find(CONTEXT_CLOSE, start)
    if end == -1:
        return text
    before = text[:start].rstrip("\n")
    after = text[end + len(CONTEXT_CLOSE):].lstrip("\n")
    return "\n".join(part for part in (before, after) if part)
