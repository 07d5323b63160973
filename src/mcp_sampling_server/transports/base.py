"""
Base classes for session transports.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from fastapi.responses import JSONResponse

from ..protocol.jsonrpc import JSONRPCMessage, RequestId, make_error

SESSION_ID_HEADER = "mcp-session-id"
LAST_EVENT_ID_HEADER = "last-event-id"


class TransportKind(str, Enum):
    SSE = "sse"
    STREAMABLE_HTTP = "streamable-http"


class TransportState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    TERMINATED = "terminated"


class TransportError(Exception):
    """Raised when an outbound message cannot be delivered."""


class TransportClosedError(TransportError):
    """Raised when sending on a terminated session."""


@dataclass
class SSEEvent:
    """One server-sent event."""

    data: str
    event: str = "message"
    event_id: int | None = None

    def encode(self) -> str:
        lines = []
        if self.event_id is not None:
            lines.append(f"id: {self.event_id}")
        lines.append(f"event: {self.event}")
        lines.extend(f"data: {line}" for line in self.data.splitlines() or [""])
        return "\n".join(lines) + "\n\n"


def serialize(message: JSONRPCMessage) -> str:
    return json.dumps(message, separators=(",", ":"))


def error_response(
    status_code: int,
    code: int,
    message: str,
    request_id: RequestId | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Structured JSON-RPC error body for HTTP-level failures."""
    return JSONResponse(
        status_code=status_code,
        content=make_error(request_id, code, message),
        headers=headers,
    )


MessageHandler = Callable[[JSONRPCMessage], Awaitable[None]]
CloseHandler = Callable[[], Awaitable[None]]


class Transport(ABC):
    """A session's connection to one client.

    Lifecycle: UNINITIALIZED on construction, INITIALIZING once connected to a
    protocol server, ACTIVE once registered, TERMINATED after close.
    """

    kind: TransportKind

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.state = TransportState.UNINITIALIZED
        self.on_message: MessageHandler | None = None
        self.on_close: CloseHandler | None = None

    async def start(self) -> None:
        """Called by the protocol server when it connects."""
        if self.state is not TransportState.UNINITIALIZED:
            raise RuntimeError(f"Transport {self.session_id} already started")
        self.state = TransportState.INITIALIZING

    def activate(self) -> None:
        """Called by the session registry once the transport is registered."""
        if self.state is not TransportState.INITIALIZING:
            raise RuntimeError(f"Transport {self.session_id} cannot be activated from {self.state.value}")
        self.state = TransportState.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.state is TransportState.ACTIVE

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether a client stream is currently attached."""

    @abstractmethod
    async def send(self, message: JSONRPCMessage, related_request_id: RequestId | None = None) -> None:
        """Deliver a message to the client."""

    @abstractmethod
    async def close(self) -> None:
        """Terminate the session. Safe to call more than once."""

    async def _dispatch(self, message: JSONRPCMessage) -> None:
        if self.on_message is None:
            raise RuntimeError(f"Transport {self.session_id} is not connected to a server")
        await self.on_message(message)

    async def _notify_closed(self) -> None:
        if self.on_close is not None:
            await self.on_close()
