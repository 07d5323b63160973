"""
get-server-identity: returns the discovery document as a tool result.
"""

import json
from typing import Any

from ..config import Settings
from ..discovery import get_server_identity_document
from .base import Tool, ToolParameter, ToolResult


def create_server_identity_tool(settings: Settings) -> Tool:

    async def get_server_identity(arguments: dict[str, Any], context) -> ToolResult:
        base_url = arguments.get("baseUrl")
        if base_url is not None and not isinstance(base_url, str):
            return ToolResult(success=False, error="Invalid arguments: baseUrl must be a string")

        identity = get_server_identity_document(settings, base_url or None)
        return ToolResult(
            success=True,
            output=json.dumps(identity, indent=2),
            data=identity,
        )

    return Tool(
        name="get-server-identity",
        title="Get Server Identity",
        description="Returns this server's MCP identity document for discovery purposes",
        parameters=[
            ToolParameter(
                name="baseUrl",
                param_type="string",
                description="Base URL for endpoint URLs (optional)",
                required=False,
            ),
        ],
        handler=get_server_identity,
    )
