"""
Protocol core: one MCPServer per session, connected to exactly one transport.

It dispatches client requests, tracks what the client declared at initialize,
and correlates the requests it sends to the client with their responses.
"""

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..discovery import SERVER_CAPABILITIES
from ..tools.registry import ToolRegistry, create_tool_registry
from ..transports.base import Transport, TransportClosedError
from .capabilities import ClientCapabilities
from .jsonrpc import (
    CONNECTION_CLOSED,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    JSONRPCError,
    JSONRPCMessage,
    RequestId,
    is_notification,
    is_request,
    is_response,
    make_error,
    make_request,
    make_response,
)

logger = structlog.get_logger()

SUPPORTED_PROTOCOL_VERSIONS = ("2025-11-25", "2025-06-18", "2025-03-26", "2024-11-05")
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]

RequestHandler = Callable[[dict[str, Any], RequestId], Awaitable[dict[str, Any]]]


@dataclass
class RequestContext:
    """What a tool handler can see of the request that invoked it."""

    request_id: RequestId
    session_id: str | None
    client_capabilities: ClientCapabilities
    server: "MCPServer"

    async def send_request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a request to the client on this request's stream and await the result."""
        return await self.server.send_request(
            method,
            params,
            related_request_id=self.request_id,
            timeout=timeout,
        )


class MCPServer:
    """Handles one client session's JSON-RPC traffic."""

    def __init__(
        self,
        settings: Settings | None = None,
        tool_registry: ToolRegistry | None = None,
    ):
        self.settings = settings or get_settings()
        self.tool_registry = tool_registry or create_tool_registry(self.settings)
        self.transport: Transport | None = None
        self.on_close: Callable[[], Awaitable[None]] | None = None

        self.client_capabilities = ClientCapabilities()
        self.client_info: dict[str, Any] = {}
        self.protocol_version: str | None = None
        self.initialized = False

        self._request_ids = itertools.count(1)
        self._pending: dict[RequestId, asyncio.Future] = {}
        self._inflight: dict[RequestId, asyncio.Task] = {}
        self._handlers: dict[str, RequestHandler] = {
            "initialize": self._handle_initialize,
            "ping": self._handle_ping,
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
        }

    @property
    def session_id(self) -> str | None:
        return self.transport.session_id if self.transport else None

    async def connect(self, transport: Transport) -> None:
        """Attach to a transport and start it."""
        if self.transport is not None:
            raise RuntimeError("Server is already connected to a transport")
        self.transport = transport
        transport.on_message = self.handle_message
        transport.on_close = self._handle_transport_closed
        await transport.start()

    def get_client_capabilities(self) -> ClientCapabilities:
        """Capabilities the client declared at initialize."""
        return self.client_capabilities

    async def close(self) -> None:
        if self.transport is not None:
            await self.transport.close()

    # ------------------------------------------------------------------ #
    # Incoming messages
    # ------------------------------------------------------------------ #
    async def handle_message(self, message: JSONRPCMessage) -> None:
        """Route one validated message from the transport."""
        if is_response(message):
            self._resolve_pending(message)
        elif is_notification(message):
            self._handle_notification(message)
        elif is_request(message):
            request_id = message["id"]
            task = asyncio.create_task(self._handle_request(message))
            self._inflight[request_id] = task
            task.add_done_callback(lambda _t, rid=request_id: self._inflight.pop(rid, None))

    async def _handle_request(self, message: JSONRPCMessage) -> None:
        request_id = message["id"]
        method = message["method"]
        params = message.get("params") or {}

        try:
            handler = self._handlers.get(method)
            if handler is None:
                raise JSONRPCError(METHOD_NOT_FOUND, f"Method not found: {method}")
            if not isinstance(params, dict):
                raise JSONRPCError(INVALID_PARAMS, "params must be an object")
            response = make_response(request_id, await handler(params, request_id))
        except JSONRPCError as e:
            response = e.to_response(request_id)
        except asyncio.CancelledError:
            logger.info("Request cancelled", method=method, request_id=request_id, session_id=self.session_id)
            raise
        except Exception as e:
            logger.error("Request handler failed", method=method, error=str(e), session_id=self.session_id)
            response = make_error(request_id, INTERNAL_ERROR, f"Internal error: {e}")

        await self._respond(response)

    def _handle_notification(self, message: JSONRPCMessage) -> None:
        method = message["method"]
        params = message.get("params") or {}
        if not isinstance(params, dict):
            logger.warning("Ignoring notification with malformed params", method=method, session_id=self.session_id)
            return

        if method == "notifications/initialized":
            self.initialized = True
            logger.info("Client initialized", session_id=self.session_id)
        elif method == "notifications/cancelled":
            request_id = params.get("requestId")
            if isinstance(request_id, bool) or not isinstance(request_id, (str, int)):
                logger.warning("Ignoring cancellation without a valid requestId", session_id=self.session_id)
                return
            task = self._inflight.get(request_id)
            if task is not None:
                task.cancel()
        else:
            logger.debug("Ignoring notification", method=method, session_id=self.session_id)

    def _resolve_pending(self, message: JSONRPCMessage) -> None:
        future = self._pending.get(message["id"])
        if future is None or future.done():
            logger.warning("Response for unknown request", request_id=message["id"], session_id=self.session_id)
            return
        future.set_result(message)

    async def _respond(self, response: JSONRPCMessage) -> None:
        try:
            await self.transport.send(response)
        except TransportClosedError:
            logger.info("Dropping response for closed session", session_id=self.session_id)

    # ------------------------------------------------------------------ #
    # Outgoing requests
    # ------------------------------------------------------------------ #
    async def send_request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        related_request_id: RequestId | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a request to the client and wait for its result."""
        if self.transport is None:
            raise RuntimeError("Server is not connected")

        request_id = next(self._request_ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self.transport.send(make_request(request_id, method, params), related_request_id=related_request_id)
            if timeout is None:
                response = await future
            else:
                response = await asyncio.wait_for(future, timeout=timeout)
        finally:
            self._pending.pop(request_id, None)

        if "error" in response:
            error = response["error"] or {}
            raise JSONRPCError(error.get("code", INTERNAL_ERROR), error.get("message", "Unknown error"), error.get("data"))
        return response.get("result") or {}

    # ------------------------------------------------------------------ #
    # Method handlers
    # ------------------------------------------------------------------ #
    async def _handle_initialize(self, params: dict[str, Any], request_id: RequestId) -> dict[str, Any]:
        try:
            self.client_capabilities = ClientCapabilities.model_validate(params.get("capabilities") or {})
        except ValidationError as e:
            raise JSONRPCError(INVALID_PARAMS, f"Invalid capabilities: {e}") from e

        requested = params.get("protocolVersion")
        self.protocol_version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        self.client_info = params.get("clientInfo") or {}

        logger.info(
            "Session initialized",
            session_id=self.session_id,
            client=self.client_info.get("name"),
            protocol_version=self.protocol_version,
            sampling=self.client_capabilities.supports_sampling,
            sampling_tools=self.client_capabilities.supports_sampling_tools,
        )
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": SERVER_CAPABILITIES,
            "serverInfo": {
                "name": self.settings.server_name,
                "title": self.settings.server_title,
                "version": self.settings.server_version,
            },
        }

    async def _handle_ping(self, params: dict[str, Any], request_id: RequestId) -> dict[str, Any]:
        return {}

    async def _handle_list_tools(self, params: dict[str, Any], request_id: RequestId) -> dict[str, Any]:
        return {"tools": self.tool_registry.get_definitions()}

    async def _handle_call_tool(self, params: dict[str, Any], request_id: RequestId) -> dict[str, Any]:
        name = params.get("name")
        arguments = params.get("arguments") or {}
        if not isinstance(name, str):
            raise JSONRPCError(INVALID_PARAMS, "Tool name is required")
        if not isinstance(arguments, dict):
            raise JSONRPCError(INVALID_PARAMS, "Tool arguments must be an object")
        if self.tool_registry.get(name) is None:
            raise JSONRPCError(INVALID_PARAMS, f"Unknown tool: {name}")

        context = RequestContext(
            request_id=request_id,
            session_id=self.session_id,
            client_capabilities=self.client_capabilities,
            server=self,
        )
        result = await self.tool_registry.execute(name, arguments, context)
        return result.to_call_result()

    # ------------------------------------------------------------------ #
    # Teardown
    # ------------------------------------------------------------------ #
    async def _handle_transport_closed(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_result(make_error(None, CONNECTION_CLOSED, "Connection closed"))
        self._pending.clear()

        current = asyncio.current_task()
        for task in list(self._inflight.values()):
            if task is not current:
                task.cancel()

        logger.info("Server connection closed", session_id=self.session_id)
        if self.on_close is not None:
            await self.on_close()
