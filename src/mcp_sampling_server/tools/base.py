"""
Base classes for tools.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Coroutine

if TYPE_CHECKING:
    from ..protocol.server import RequestContext


@dataclass
class ToolResult:
    """Result from a tool execution."""

    success: bool
    output: str = ""
    data: Any = None
    error: str | None = None

    def to_call_result(self) -> dict[str, Any]:
        """Render as an MCP `tools/call` result."""
        text = self.output if self.success else (self.error or "Tool execution failed")
        result: dict[str, Any] = {
            "content": [{"type": "text", "text": text}],
            "isError": not self.success,
        }
        if isinstance(self.data, dict):
            result["structuredContent"] = self.data
        return result


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, number, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


def parameters_schema(parameters: list[ToolParameter]) -> dict[str, Any]:
    """Convert parameters to JSON Schema format."""
    properties = {}
    required = []

    for param in parameters:
        prop: dict[str, Any] = {
            "type": param.param_type,
            "description": param.description,
        }
        if param.enum:
            prop["enum"] = param.enum
        if param.default is not None:
            prop["default"] = param.default

        properties[param.name] = prop

        if param.required:
            required.append(param.name)

    return {
        "type": "object",
        "properties": properties,
        "required": required,
    }


ToolHandler = Callable[[dict[str, Any], "RequestContext"], Coroutine[Any, Any, ToolResult]]


@dataclass
class Tool:
    """
    A tool exposed to clients through `tools/list` and `tools/call`.

    The handler receives the raw arguments and the calling request's context.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: ToolHandler
    title: str | None = None

    def get_parameters_schema(self) -> dict[str, Any]:
        return parameters_schema(self.parameters)

    def to_definition(self) -> dict[str, Any]:
        """Convert to an entry of the `tools/list` result."""
        definition: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.get_parameters_schema(),
        }
        if self.title:
            definition["title"] = self.title
        return definition

    async def execute(self, arguments: dict[str, Any], context: "RequestContext") -> ToolResult:
        """Execute the tool handler."""
        return await self.handler(arguments, context)
