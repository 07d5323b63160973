"""
Tools module: the catalog exposed to clients and the executor used inside
sampling requests.
"""

from .base import Tool, ToolParameter, ToolResult
from .registry import ToolRegistry, create_tool_registry

__all__ = [
    "Tool",
    "ToolParameter",
    "ToolResult",
    "ToolRegistry",
    "create_tool_registry",
]
