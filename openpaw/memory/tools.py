"""
Memory Tools — MCP tools the agent uses to work with its memory.

Tools:
- memory_save: save a fact / preference / decision / summary / log
- memory_search: full-text search (BM25)
- memory_list: recent entries, optionally by type
- memory_forget: delete a long-term entry by id
- memory_stats: counts by type, short-term length, storage location

Every handler answers with one text block holding a JSON object that always
carries `success`; failures also set `is_error`.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from claude_agent_sdk import SdkMcpTool, tool
from loguru import logger

from openpaw.memory.errors import ImmutableEntryError, InvalidEntryError
from openpaw.memory.models import ENTRY_KINDS, MemoryEntry

if TYPE_CHECKING:
    from openpaw.memory.manager import MemoryManager


SERVER_NAME = "openpaw"

DEFAULT_SEARCH_LIMIT = 5
DEFAULT_LIST_LIMIT = 20
SAVE_PREVIEW_CHARS = 100
LIST_PREVIEW_CHARS = 120

_KIND_HELP = (
    "'fact' = objective info, 'preference' = user likes/dislikes, "
    "'decision' = something decided, 'summary' = session recap, "
    "'log' = ephemeral daily note"
)


def create_memory_tools(manager: MemoryManager) -> list[SdkMcpTool]:
    """All memory tools, bound to one manager."""

    @tool(
        "memory_save",
        "Save a fact, preference, decision, or summary to long-term memory. "
        "Use whenever the user shares something worth remembering across sessions "
        "(name, preference, goal, context). type='log' goes to today's daily log instead. "
        "Pass an existing id to update that entry.",
        {
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "The memory content to store. Be concise and factual."},
                "type": {"type": "string", "enum": list(ENTRY_KINDS), "description": _KIND_HELP},
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Tags to categorize this memory (e.g. ['user', 'email', 'work'])",
                },
                "id": {"type": "string", "description": "Existing memory id to update instead of creating a new entry."},
            },
            "required": ["content", "type"],
        },
    )
    async def memory_save(args: dict[str, Any]) -> dict[str, Any]:
        """Saves or updates an entry."""
        content = args.get("content")
        kind = args.get("type") or "fact"
        tags = args.get("tags") or []
        entry_id = args.get("id") or None

        if not isinstance(content, str) or not content.strip():
            return _error("'content' is required")
        if kind not in ENTRY_KINDS:
            return _error(f"'type' must be one of: {', '.join(ENTRY_KINDS)}")
        if not isinstance(tags, (list, str)):
            return _error("'tags' must be a list of strings")

        try:
            entry = manager.save(content, kind=kind, tags=tags, source="agent", entry_id=entry_id)
        except (InvalidEntryError, ImmutableEntryError) as e:
            return _error(str(e))
        except OSError as e:
            logger.error(f"Memory save failed: {e}")
            return _error(f"Storage error, memory not saved: {e}")

        return _ok({
            "message": f"Memory saved (id: {entry.id})",
            "entry": {
                "id": entry.id,
                "type": entry.kind,
                "tags": entry.tags,
                "preview": entry.preview(SAVE_PREVIEW_CHARS),
            },
        })

    @tool(
        "memory_search",
        "Search long-term memory with full-text search. "
        "Use at the start of conversations to recall context about the user or topic.",
        {"query": str, "limit": int},
    )
    async def memory_search(args: dict[str, Any]) -> dict[str, Any]:
        """Relevance-ranked search."""
        query = args.get("query")
        if not isinstance(query, str) or not query.strip():
            return _error("'query' is required")

        limit = _limit(args.get("limit"), DEFAULT_SEARCH_LIMIT)
        if limit is None:
            return _error("'limit' must be a positive integer")

        results = manager.search(query, limit=limit)
        if not results:
            return _ok({"message": "No memories found for that query.", "count": 0, "results": []})

        return _ok({
            "count": len(results),
            "results": [
                {
                    "id": r.entry.id,
                    "type": r.entry.kind,
                    "content": r.entry.content,
                    "tags": r.entry.tags,
                    "snippet": r.snippet,
                    "score": r.score,
                    "updatedAt": r.entry.updated_at.isoformat(),
                }
                for r in results
            ],
        })

    @tool(
        "memory_list",
        "List recent memory entries to review what is stored. Optionally filter by type.",
        {
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": list(ENTRY_KINDS), "description": "Filter by memory type (optional)."},
                "limit": {"type": "integer", "description": f"Max entries to return (default {DEFAULT_LIST_LIMIT})."},
            },
            "required": [],
        },
    )
    async def memory_list(args: dict[str, Any]) -> dict[str, Any]:
        """Most recent entries."""
        kind = args.get("type") or None
        if kind is not None and kind not in ENTRY_KINDS:
            return _error(f"'type' must be one of: {', '.join(ENTRY_KINDS)}")

        limit = _limit(args.get("limit"), DEFAULT_LIST_LIMIT)
        if limit is None:
            return _error("'limit' must be a positive integer")

        total = len(manager.read_all())
        entries = manager.list_entries(kind=kind, limit=limit)

        return _ok({
            "message": f"Showing {len(entries)} of {total} memories",
            "total": total,
            "shown": len(entries),
            "entries": [_list_item(e) for e in entries],
        })

    @tool(
        "memory_forget",
        "Delete a specific memory entry by id. Use when the user asks you to forget something. "
        "Daily log entries cannot be deleted.",
        {"id": str},
    )
    async def memory_forget(args: dict[str, Any]) -> dict[str, Any]:
        """Deletes a long-term entry."""
        entry_id = args.get("id")
        if not isinstance(entry_id, str) or not entry_id.strip():
            return _error("'id' is required")
        entry_id = entry_id.strip()

        try:
            removed = manager.forget(entry_id)
        except OSError as e:
            logger.error(f"Memory forget failed: {e}")
            return _error(f"Storage error, memory not deleted: {e}")

        if not removed:
            return _error(f"Memory {entry_id} not found.")
        return _ok({"message": f"Memory {entry_id} deleted."})

    @tool(
        "memory_stats",
        "Get statistics about the memory store (total entries, breakdown by type, etc.)",
        {},
    )
    async def memory_stats(args: dict[str, Any]) -> dict[str, Any]:
        """Store statistics."""
        return _ok({"stats": manager.stats()})

    return [memory_save, memory_search, memory_list, memory_forget, memory_stats]


async def execute_memory_tool(
    tools: list[SdkMcpTool],
    name: str,
    args: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Runs a tool by name, for callers that route tool calls themselves.

    Unknown names and unexpected exceptions come back as error results.
    """
    handler = next((t.handler for t in tools if t.name == name), None)
    if handler is None:
        return _error(f"Unknown tool: {name}")

    try:
        return await handler(args or {})
    except Exception as e:
        logger.error(f"Tool {name} failed: {e}")
        return _error(f"Tool execution failed: {e}")


MEMORY_TOOL_NAMES = [
    f"mcp__{SERVER_NAME}__memory_save",
    f"mcp__{SERVER_NAME}__memory_search",
    f"mcp__{SERVER_NAME}__memory_list",
    f"mcp__{SERVER_NAME}__memory_forget",
    f"mcp__{SERVER_NAME}__memory_stats",
]


# Helpers
def _ok(payload: dict[str, Any]) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": json.dumps({"success": True, **payload}, ensure_ascii=False)}]}


def _error(text: str) -> dict[str, Any]:
    payload = {"success": False, "error": text}
    return {"content": [{"type": "text", "text": json.dumps(payload, ensure_ascii=False)}], "is_error": True}


def _limit(value: Any, default: int) -> int | None:
    """Positive int limit; None when the value is unusable."""
    if value is None:
        return default
    if isinstance(value, bool):
        return None
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return None
    return limit if limit > 0 else None


def _list_item(entry: MemoryEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "type": entry.kind,
        "tags": entry.tags,
        "preview": entry.preview(LIST_PREVIEW_CHARS),
        "updatedAt": entry.updated_at.isoformat(),
    }
