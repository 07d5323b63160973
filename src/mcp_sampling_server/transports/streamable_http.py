"""
Resumable bidirectional transport (streamable HTTP).

POST carries client messages; each POST holding requests gets its own SSE
stream that ends once every request in it has been answered. GET opens the
standalone stream for everything else and, given a Last-Event-ID, first
replays the session's event log after that marker. Every outbound message is
appended to the log before it is delivered.
"""

import asyncio
import itertools
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import structlog
from fastapi.responses import Response, StreamingResponse

from ..protocol.jsonrpc import (
    INVALID_REQUEST,
    JSONRPCError,
    JSONRPCMessage,
    RequestId,
    first_request_id,
    is_initialize_request,
    is_request,
    is_response,
    validate_message,
)
from .base import (
    SESSION_ID_HEADER,
    SSEEvent,
    Transport,
    TransportClosedError,
    TransportError,
    TransportKind,
    TransportState,
    error_response,
    serialize,
)
from .event_store import EventStore

logger = structlog.get_logger()

STANDALONE_STREAM_ID = "_GET_stream"
SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


def check_post_batch(messages: list[Any]) -> None:
    """Validate every envelope; an initialize request must travel alone."""
    for message in messages:
        validate_message(message)
    if len(messages) > 1 and any(is_initialize_request(message) for message in messages):
        raise JSONRPCError(INVALID_REQUEST, "Invalid Request: Only one initialization request is allowed")


@dataclass(eq=False)
class _Stream:
    """One open SSE response."""

    stream_id: str
    request_ids: set[RequestId] = field(default_factory=set)
    queue: "asyncio.Queue[SSEEvent | None]" = field(default_factory=asyncio.Queue)
    closed: bool = False

    def push(self, event: SSEEvent) -> None:
        if not self.closed:
            self.queue.put_nowait(event)

    def finish(self) -> None:
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(None)


class StreamableHTTPTransport(Transport):
    """Session transport with resumable delivery."""

    kind = TransportKind.STREAMABLE_HTTP

    def __init__(self, session_id: str, event_store: EventStore):
        super().__init__(session_id)
        self._events = event_store
        self._lock = asyncio.Lock()
        self._request_streams: dict[RequestId, _Stream] = {}
        self._standalone: _Stream | None = None
        self._stream_numbers = itertools.count(1)
        self._initialized = False

    async def start(self) -> None:
        await self._events.open(self.session_id)
        await super().start()

    @property
    def is_connected(self) -> bool:
        return self._standalone is not None or bool(self._request_streams)

    def _headers(self) -> dict[str, str]:
        return {SESSION_ID_HEADER: self.session_id}

    # ------------------------------------------------------------------ #
    # HTTP methods
    # ------------------------------------------------------------------ #
    async def handle_post(self, messages: list[Any]) -> Response:
        """Accept client messages; stream replies to any requests among them."""
        if self.state is not TransportState.ACTIVE:
            raise TransportClosedError(self.session_id)

        request_id = first_request_id(messages)
        try:
            check_post_batch(messages)
        except JSONRPCError as e:
            return error_response(400, e.code, e.message, request_id, self._headers())

        if any(is_initialize_request(message) for message in messages):
            if self._initialized:
                return error_response(
                    400, INVALID_REQUEST, "Invalid Request: Server already initialized", request_id, self._headers()
                )
            self._initialized = True

        requests = [message for message in messages if is_request(message)]
        if not requests:
            for message in messages:
                await self._dispatch(message)
            return Response(status_code=202, headers=self._headers())

        stream = _Stream(stream_id=f"post-{next(self._stream_numbers)}")
        async with self._lock:
            duplicate = [m["id"] for m in requests if m["id"] in self._request_streams]
            if duplicate:
                return error_response(
                    400, INVALID_REQUEST, f"Invalid Request: request id {duplicate[0]!r} is already in flight",
                    duplicate[0], self._headers(),
                )
            for message in requests:
                stream.request_ids.add(message["id"])
                self._request_streams[message["id"]] = stream

        for message in messages:
            await self._dispatch(message)

        return StreamingResponse(
            self._event_source(stream),
            media_type="text/event-stream",
            headers={**SSE_HEADERS, **self._headers()},
        )

    async def handle_get(self, last_event_id: int | None = None) -> Response:
        """Open the standalone stream, replaying after ``last_event_id`` first."""
        stream = _Stream(stream_id=STANDALONE_STREAM_ID)
        async with self._lock:
            if self.state is not TransportState.ACTIVE:
                raise TransportClosedError(self.session_id)

            if last_event_id is not None:
                replay = await self._events.replay(self.session_id, last_event_id)
                if replay.gap:
                    stream.push(SSEEvent(
                        data=json.dumps({
                            "requestedAfter": last_event_id,
                            "oldestAvailable": replay.oldest_available,
                        }),
                        event="gap",
                    ))
                for entry in replay.events:
                    stream.push(SSEEvent(data=entry.payload, event_id=entry.sequence))
                logger.info(
                    "Client resuming stream",
                    session_id=self.session_id,
                    last_event_id=last_event_id,
                    replayed=len(replay.events),
                    gap=replay.gap,
                )
            else:
                logger.info("Establishing standalone stream", session_id=self.session_id)

            if self._standalone is not None:
                self._standalone.finish()
            self._standalone = stream

        return StreamingResponse(
            self._event_source(stream),
            media_type="text/event-stream",
            headers={**SSE_HEADERS, **self._headers()},
        )

    # ------------------------------------------------------------------ #
    # Delivery
    # ------------------------------------------------------------------ #
    async def send(self, message: JSONRPCMessage, related_request_id: RequestId | None = None) -> None:
        try:
            payload = serialize(message)
        except (TypeError, ValueError) as e:
            logger.error("Failed to serialize outbound message", session_id=self.session_id, error=str(e))
            await self.close()
            raise TransportError(f"Could not deliver message on session {self.session_id}: {e}") from e

        response_to = message.get("id") if is_response(message) else None
        route_id = response_to if response_to is not None else related_request_id

        async with self._lock:
            if self.state is TransportState.TERMINATED:
                raise TransportClosedError(self.session_id)

            stream = self._request_streams.get(route_id) if route_id is not None else None
            if stream is None or stream.closed:
                stream = self._standalone

            sequence = await self._events.append(self.session_id, payload)
            if stream is not None:
                stream.push(SSEEvent(data=payload, event_id=sequence))

            if response_to is not None:
                self._complete_request(response_to)

    def _complete_request(self, request_id: RequestId) -> None:
        stream = self._request_streams.pop(request_id, None)
        if stream is None:
            return
        stream.request_ids.discard(request_id)
        if not stream.request_ids:
            stream.finish()

    async def _event_source(self, stream: _Stream) -> AsyncIterator[str]:
        try:
            while True:
                event = await stream.queue.get()
                if event is None:
                    break
                yield event.encode()
        finally:
            self._detach(stream)

    def _detach(self, stream: _Stream) -> None:
        stream.closed = True
        if self._standalone is stream:
            self._standalone = None
            logger.info("Standalone stream detached", session_id=self.session_id)
        for request_id in list(stream.request_ids):
            if self._request_streams.get(request_id) is stream:
                del self._request_streams[request_id]

    async def close(self) -> None:
        async with self._lock:
            if self.state is TransportState.TERMINATED:
                return
            self.state = TransportState.TERMINATED

            streams = set(self._request_streams.values())
            if self._standalone is not None:
                streams.add(self._standalone)
            for stream in streams:
                stream.finish()
            self._request_streams.clear()
            self._standalone = None
            await self._events.close(self.session_id)

        logger.info("Streamable HTTP session terminated", session_id=self.session_id)
        await self._notify_closed()
