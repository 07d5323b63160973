"""
Tool registry for the tools a session exposes to its client.
"""

from typing import TYPE_CHECKING, Any

import structlog

from ..config import Settings, get_settings
from .base import Tool, ToolResult

if TYPE_CHECKING:
    from ..protocol.server import RequestContext

logger = structlog.get_logger()


class ToolRegistry:
    """Registry for managing tools."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            logger.debug("Tool unregistered", tool_name=name)

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions for `tools/list`."""
        return [tool.to_definition() for tool in self._tools.values()]

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        context: "RequestContext",
    ) -> ToolResult:
        """Execute a tool by name."""
        tool = self.get(name)
        if tool is None:
            return ToolResult(
                success=False,
                output="",
                error=f"Tool '{name}' not found",
            )

        try:
            logger.info("Executing tool", tool_name=name, session_id=context.session_id)
            result = await tool.execute(arguments, context)
            logger.info("Tool executed", tool_name=name, success=result.success)
            return result
        except Exception as e:
            logger.error("Tool execution error", tool_name=name, error=str(e))
            return ToolResult(
                success=False,
                output="",
                error=str(e),
            )


def create_tool_registry(settings: Settings | None = None) -> ToolRegistry:
    """Create the registry a new session's server exposes."""
    settings = settings or get_settings()
    registry = ToolRegistry()

    from .server_identity import create_server_identity_tool
    from .enhanced_sampling import create_enhanced_sampling_tool

    registry.register(create_server_identity_tool(settings))
    registry.register(create_enhanced_sampling_tool(settings))
    return registry
