"""
Server identity document served at /.well-known/mcp.json.
"""

from typing import Any

from .config import Settings

MCP_VERSION = "2025-11-25"

SERVER_CAPABILITIES: dict[str, Any] = {
    "tools": {"listChanged": False},
}


def get_server_identity_document(settings: Settings, base_url: str | None = None) -> dict[str, Any]:
    """Build the discovery document for this server."""
    base = (base_url or settings.base_url).rstrip("/")
    return {
        "mcp_version": MCP_VERSION,
        "name": settings.server_name,
        "version": settings.server_version,
        "title": settings.server_title,
        "description": settings.server_description,
        "endpoints": {
            "streamable_http": f"{base}/mcp",
            "sse": f"{base}/sse",
            "message": f"{base}/message",
        },
        "capabilities": {
            **SERVER_CAPABILITIES,
            "sampling_orchestration": {"toolUse": True, "resumableStreams": True},
        },
        "authentication": {"required": False},
    }
