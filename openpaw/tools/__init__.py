"""
MCP tools for the agent.

ALLOWED_TOOLS lists the fully qualified names the chat layer passes to the
agent options next to the server returned by create_tools_server().
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from claude_agent_sdk import create_sdk_mcp_server

from openpaw.memory.tools import MEMORY_TOOL_NAMES, SERVER_NAME, create_memory_tools

if TYPE_CHECKING:
    from openpaw.memory.manager import MemoryManager


# =============================================================================
# Allowed tools
# =============================================================================

ALLOWED_TOOLS = [
    *MEMORY_TOOL_NAMES,
]


def create_tools_server(manager: MemoryManager):
    """In-process MCP server with every tool bound to the given memory manager."""
    return create_sdk_mcp_server(
        name=SERVER_NAME,
        version="1.0.0",
        tools=create_memory_tools(manager),
    )


__all__ = [
    "ALLOWED_TOOLS",
    "create_tools_server",
]
