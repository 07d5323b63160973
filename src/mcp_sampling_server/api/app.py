"""
FastAPI application factory.

Serves both session transports:
- Streamable HTTP on /mcp (POST, GET, DELETE), resumable via Last-Event-ID
- Push-only SSE on /sse (alias /stream) with client messages on POST /message

Manages the lifecycle of:
- Session registries and the shared event log
- Idle-session reaper
- Graceful shutdown of every open session
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncGenerator, Callable

import structlog
from fastapi import FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from .. import __version__
from ..config import Settings, get_settings
from ..discovery import get_server_identity_document
from ..protocol.jsonrpc import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    PARSE_ERROR,
    SESSION_ERROR,
    JSONRPCError,
    RequestId,
    first_request_id,
    is_initialize_request,
)
from ..protocol.server import MCPServer
from ..transports.base import (
    LAST_EVENT_ID_HEADER,
    SESSION_ID_HEADER,
    Transport,
    TransportClosedError,
    TransportKind,
    error_response,
)
from ..transports.event_store import EventStore
from ..transports.sessions import Session, SessionRegistry, UnknownSessionError
from ..transports.sse import SSETransport
from ..transports.streamable_http import SSE_HEADERS, StreamableHTTPTransport, check_post_batch

logger = structlog.get_logger()

NO_SESSION_MESSAGE = "Bad Request: No valid session ID provided"


def _session_error(request_id: RequestId | None = None) -> JSONResponse:
    return error_response(400, SESSION_ERROR, NO_SESSION_MESSAGE, request_id)


async def _open_session(
    registry: SessionRegistry,
    transport_factory: Callable[[str], Transport],
    settings: Settings,
) -> Session:
    """Connect a fresh transport to its own server, then register it."""
    session = registry.create()
    transport = transport_factory(session.id)
    server = MCPServer(settings=settings)

    async def remove_session() -> None:
        await registry.remove(session.id)

    server.on_close = remove_session
    try:
        await server.connect(transport)
        await registry.attach(session, transport)
    except Exception:
        registry.discard(session)
        raise
    return session


async def _reap_idle_sessions(app: FastAPI) -> None:
    """Terminate disconnected sessions idle longer than the configured window."""
    settings: Settings = app.state.settings
    max_idle = timedelta(minutes=settings.session_idle_timeout_minutes)

    while True:
        await asyncio.sleep(settings.session_sweep_interval_seconds)
        for registry in (app.state.http_sessions, app.state.sse_sessions):
            for session in await registry.idle_sessions(max_idle):
                logger.info(
                    "Reaping idle session",
                    session_id=session.id,
                    idle_seconds=int(session.idle_for().total_seconds()),
                )
                try:
                    await session.transport.close()
                except Exception as e:
                    logger.error("Failed to reap idle session", session_id=session.id, error=str(e))


async def _close_all_sessions(app: FastAPI) -> None:
    for registry in (app.state.http_sessions, app.state.sse_sessions):
        for session in await registry.sessions():
            try:
                await session.transport.close()
            except Exception as e:
                logger.error("Failed to close session on shutdown", session_id=session.id, error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings: Settings = app.state.settings

    reaper = asyncio.create_task(_reap_idle_sessions(app))
    logger.info(
        "Server started",
        name=settings.server_name,
        idle_timeout_minutes=settings.session_idle_timeout_minutes,
        event_log_max_events=settings.event_log_max_events,
    )

    yield

    # Shutdown
    reaper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await reaper

    await _close_all_sessions(app)
    logger.info("Application shutdown complete")


async def _read_messages(request: Request) -> list[Any] | JSONResponse:
    """Parse a JSON-RPC message or batch from the request body."""
    try:
        body = await request.json()
    except ValueError:
        return error_response(400, PARSE_ERROR, "Parse error: Invalid JSON")
    messages = body if isinstance(body, list) else [body]
    if not messages:
        return error_response(400, INVALID_REQUEST, "Invalid Request: empty batch")
    return messages


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=settings.server_description,
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.event_store = EventStore(max_events_per_session=settings.event_log_max_events)
    app.state.http_sessions = SessionRegistry(TransportKind.STREAMABLE_HTTP)
    app.state.sse_sessions = SessionRegistry(TransportKind.SSE)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[SESSION_ID_HEADER, LAST_EVENT_ID_HEADER, "mcp-protocol-version"],
    )

    http_sessions: SessionRegistry = app.state.http_sessions
    sse_sessions: SessionRegistry = app.state.sse_sessions
    event_store: EventStore = app.state.event_store

    # ------------------------------------------------------------------ #
    # Streamable HTTP
    # ------------------------------------------------------------------ #
    @app.post("/mcp")
    async def mcp_post(request: Request, mcp_session_id: str | None = Header(None)):
        """Client messages for a resumable session; initialize opens one."""
        messages = await _read_messages(request)
        if isinstance(messages, JSONResponse):
            return messages
        request_id = first_request_id(messages)

        if mcp_session_id:
            try:
                session = await http_sessions.lookup(mcp_session_id)
            except UnknownSessionError:
                logger.warning("Unknown session on POST", session_id=mcp_session_id)
                return _session_error(request_id)
        elif any(is_initialize_request(message) for message in messages):
            try:
                check_post_batch(messages)
            except JSONRPCError as e:
                return error_response(400, e.code, e.message, request_id)
            try:
                session = await _open_session(
                    http_sessions,
                    lambda session_id: StreamableHTTPTransport(session_id, event_store),
                    settings,
                )
            except Exception as e:
                logger.error("Failed to open session", error=str(e))
                return error_response(500, INTERNAL_ERROR, "Internal server error", request_id)
            logger.info("New streamable HTTP session", session_id=session.id)
        else:
            return _session_error(request_id)

        try:
            return await session.transport.handle_post(messages)
        except TransportClosedError:
            return _session_error(request_id)

    @app.get("/mcp")
    async def mcp_get(
        request: Request,
        mcp_session_id: str | None = Header(None),
        last_event_id: str | None = Header(None),
    ):
        """Standalone stream, optionally resuming after Last-Event-ID."""
        if "text/event-stream" not in request.headers.get("accept", ""):
            return error_response(406, SESSION_ERROR, "Not Acceptable: Client must accept text/event-stream")

        try:
            session = await http_sessions.lookup(mcp_session_id)
        except UnknownSessionError:
            return _session_error()

        marker = None
        if last_event_id is not None:
            try:
                marker = int(last_event_id)
            except ValueError:
                marker = -1
            if marker < 0:
                return error_response(400, INVALID_REQUEST, "Bad Request: Invalid Last-Event-ID header")

        try:
            return await session.transport.handle_get(marker)
        except TransportClosedError:
            return _session_error()

    @app.delete("/mcp")
    async def mcp_delete(mcp_session_id: str | None = Header(None)):
        """Terminate a session and release everything it holds."""
        try:
            session = await http_sessions.lookup(mcp_session_id)
        except UnknownSessionError:
            return _session_error()

        await session.transport.close()
        logger.info("Session terminated by client", session_id=session.id)
        return Response(status_code=200)

    # ------------------------------------------------------------------ #
    # Push-only SSE
    # ------------------------------------------------------------------ #
    @app.get("/sse")
    @app.get("/stream")
    async def sse_stream(session_id: str | None = Query(None, alias="sessionId")):
        """Open a push-only session; the first event names its message endpoint."""
        if session_id:
            logger.warning("Push-only streams cannot resume; starting a new session", requested=session_id)

        try:
            session = await _open_session(sse_sessions, SSETransport, settings)
        except Exception as e:
            logger.error("Failed to open SSE session", error=str(e))
            return error_response(500, INTERNAL_ERROR, "Internal server error")

        logger.info("New SSE session", session_id=session.id)
        return StreamingResponse(
            session.transport.event_stream(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.post("/message")
    async def sse_message(request: Request, session_id: str | None = Query(None, alias="sessionId")):
        """Client-to-server messages for a push-only session."""
        messages = await _read_messages(request)
        if isinstance(messages, JSONResponse):
            return messages
        request_id = first_request_id(messages)

        try:
            session = await sse_sessions.lookup(session_id)
        except UnknownSessionError:
            logger.warning("Unknown session on message POST", session_id=session_id)
            return _session_error(request_id)

        try:
            for message in messages:
                await session.transport.handle_post_message(message)
        except JSONRPCError as e:
            return error_response(400, e.code, e.message, request_id)
        except TransportClosedError:
            return _session_error(request_id)

        return Response(content="Accepted", status_code=202)

    # ------------------------------------------------------------------ #
    # Discovery & Health
    # ------------------------------------------------------------------ #
    @app.get("/.well-known/mcp.json")
    @app.get("/.well-known/mcp")
    async def discovery(request: Request):
        """Server identity document."""
        base_url = settings.public_base_url or str(request.base_url)
        return get_server_identity_document(settings, base_url)

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "server": settings.server_name,
            "sessions": {
                "streamable_http": len(http_sessions),
                "sse": len(sse_sessions),
            },
        }

    return app
