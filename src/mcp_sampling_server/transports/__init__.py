"""
Session transports and the state they share.
"""

from .base import (
    LAST_EVENT_ID_HEADER,
    SESSION_ID_HEADER,
    SSEEvent,
    Transport,
    TransportClosedError,
    TransportError,
    TransportKind,
    TransportState,
)
from .event_store import EventLogClosedError, EventStore, ReplayResult
from .sessions import Session, SessionRegistry, UnknownSessionError
from .sse import SSETransport
from .streamable_http import StreamableHTTPTransport

__all__ = [
    "LAST_EVENT_ID_HEADER",
    "SESSION_ID_HEADER",
    "SSEEvent",
    "Transport",
    "TransportClosedError",
    "TransportError",
    "TransportKind",
    "TransportState",
    "EventLogClosedError",
    "EventStore",
    "ReplayResult",
    "Session",
    "SessionRegistry",
    "UnknownSessionError",
    "SSETransport",
    "StreamableHTTPTransport",
]
