"""
mcp-sampling-server - MCP server with resumable streaming transports and a
server-side sampling agent loop.
"""

__version__ = "1.0.0"
