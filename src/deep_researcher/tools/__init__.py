"""MCP tool registration surface."""

from deep_researcher.tools.unified import register_unified_tools

__all__ = [
    "register_unified_tools",
]
