"""
Protocol module: JSON-RPC envelopes and client capabilities.

The per-session protocol core lives in ``protocol.server``.
"""

from .capabilities import ClientCapabilities, SamplingCapability
from .jsonrpc import JSONRPCError, RequestId

__all__ = [
    "ClientCapabilities",
    "JSONRPCError",
    "RequestId",
    "SamplingCapability",
]
