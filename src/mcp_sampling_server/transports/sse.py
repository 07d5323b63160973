"""
Push-only transport: one long-lived GET stream per session.

The first event names the endpoint the client must POST its messages to.
Nothing is logged for replay; when the stream ends the session ends with it.
"""

import asyncio
from typing import AsyncIterator

import structlog

from ..protocol.jsonrpc import JSONRPCMessage, RequestId, validate_message
from .base import SSEEvent, Transport, TransportClosedError, TransportError, TransportKind, TransportState, serialize

logger = structlog.get_logger()


class SSETransport(Transport):
    """Server-sent events out, POST /message in."""

    kind = TransportKind.SSE

    def __init__(self, session_id: str, endpoint: str = "/message"):
        super().__init__(session_id)
        self.endpoint = f"{endpoint}?sessionId={session_id}"
        self._queue: asyncio.Queue[SSEEvent | None] = asyncio.Queue()
        self._streaming = False
        self._closing: asyncio.Task | None = None
        self._queue.put_nowait(SSEEvent(data=self.endpoint, event="endpoint"))

    @property
    def is_connected(self) -> bool:
        return self._streaming

    async def handle_post_message(self, message: JSONRPCMessage) -> None:
        """Hand one client message to the server. The reply goes out on the stream."""
        if self.state is not TransportState.ACTIVE:
            raise TransportClosedError(self.session_id)
        await self._dispatch(validate_message(message))

    async def send(self, message: JSONRPCMessage, related_request_id: RequestId | None = None) -> None:
        if self.state is TransportState.TERMINATED:
            raise TransportClosedError(self.session_id)
        try:
            payload = serialize(message)
        except (TypeError, ValueError) as e:
            logger.error("Failed to serialize outbound message", session_id=self.session_id, error=str(e))
            await self.close()
            raise TransportError(f"Could not deliver message on session {self.session_id}: {e}") from e
        self._queue.put_nowait(SSEEvent(data=payload))

    async def event_stream(self) -> AsyncIterator[str]:
        """Body of the GET response."""
        self._streaming = True
        try:
            while True:
                event = await self._queue.get()
                if event is None:
                    break
                yield event.encode()
        finally:
            self._streaming = False
            if self.state is not TransportState.TERMINATED:
                # The generator may be cancelled; close on a fresh task
                self._closing = asyncio.get_running_loop().create_task(self.close())

    async def close(self) -> None:
        if self.state is TransportState.TERMINATED:
            return
        self.state = TransportState.TERMINATED
        self._queue.put_nowait(None)
        logger.info("SSE session closed", session_id=self.session_id)
        await self._notify_closed()
