"""
Tests for the session registry.
"""

from datetime import timedelta

import pytest

from mcp_sampling_server.transports.base import Transport, TransportKind, TransportState
from mcp_sampling_server.transports.sessions import (
    SessionAlreadyRegisteredError,
    SessionRegistry,
    UnknownSessionError,
)


class FakeTransport(Transport):
    kind = TransportKind.STREAMABLE_HTTP

    def __init__(self, session_id: str, connected: bool = False):
        super().__init__(session_id)
        self.connected = connected
        self.sent = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def send(self, message, related_request_id=None) -> None:
        self.sent.append(message)

    async def close(self) -> None:
        self.state = TransportState.TERMINATED


async def _attach(registry: SessionRegistry, connected: bool = False):
    session = registry.create()
    transport = FakeTransport(session.id, connected=connected)
    await transport.start()
    await registry.attach(session, transport)
    return session, transport


def test_create_does_not_register():
    """Test a new session is invisible until attached."""
    registry = SessionRegistry(TransportKind.STREAMABLE_HTTP)
    session = registry.create()

    assert session.id not in registry
    assert len(registry) == 0
    assert session.state is TransportState.INITIALIZING


def test_create_unique_ids():
    """Test identifiers are never reused."""
    registry = SessionRegistry(TransportKind.SSE)
    ids = {registry.create().id for _ in range(100)}

    assert len(ids) == 100


@pytest.mark.asyncio
async def test_attach_activates_and_registers():
    """Test attach moves the transport to ACTIVE and makes it resolvable."""
    registry = SessionRegistry(TransportKind.STREAMABLE_HTTP)
    session, transport = await _attach(registry)

    assert transport.state is TransportState.ACTIVE
    assert await registry.lookup(session.id) is session
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_attach_requires_started_transport():
    """Test a transport that was never connected cannot be registered."""
    registry = SessionRegistry(TransportKind.STREAMABLE_HTTP)
    session = registry.create()

    with pytest.raises(RuntimeError):
        await registry.attach(session, FakeTransport(session.id))
    assert session.id not in registry


@pytest.mark.asyncio
async def test_attach_twice_fails():
    """Test at most one transport is registered per id."""
    registry = SessionRegistry(TransportKind.STREAMABLE_HTTP)
    session, _ = await _attach(registry)

    second = FakeTransport(session.id)
    await second.start()
    with pytest.raises(SessionAlreadyRegisteredError):
        await registry.attach(session, second)


@pytest.mark.asyncio
async def test_lookup_unknown_session():
    """Test unknown and missing identifiers raise."""
    registry = SessionRegistry(TransportKind.STREAMABLE_HTTP)

    with pytest.raises(UnknownSessionError):
        await registry.lookup("nope")
    with pytest.raises(UnknownSessionError):
        await registry.lookup(None)


@pytest.mark.asyncio
async def test_lookup_terminated_session():
    """Test a terminated transport is not routable even before removal."""
    registry = SessionRegistry(TransportKind.STREAMABLE_HTTP)
    session, transport = await _attach(registry)

    await transport.close()

    with pytest.raises(UnknownSessionError):
        await registry.lookup(session.id)


@pytest.mark.asyncio
async def test_remove_is_idempotent():
    """Test removing twice never raises."""
    registry = SessionRegistry(TransportKind.STREAMABLE_HTTP)
    session, _ = await _attach(registry)

    assert await registry.remove(session.id) is session
    assert await registry.remove(session.id) is None
    assert session.id not in registry


@pytest.mark.asyncio
async def test_lookup_touches_session():
    """Test lookups refresh last activity."""
    registry = SessionRegistry(TransportKind.STREAMABLE_HTTP)
    session, _ = await _attach(registry)
    session.last_activity -= timedelta(hours=1)

    await registry.lookup(session.id)

    assert session.idle_for() < timedelta(minutes=1)


@pytest.mark.asyncio
async def test_idle_sessions_only_disconnected():
    """Test only sessions without a stream and past the window are idle."""
    registry = SessionRegistry(TransportKind.STREAMABLE_HTTP)
    idle, _ = await _attach(registry)
    streaming, _ = await _attach(registry, connected=True)
    fresh, _ = await _attach(registry)

    idle.last_activity -= timedelta(hours=1)
    streaming.last_activity -= timedelta(hours=1)

    result = await registry.idle_sessions(timedelta(minutes=30))

    assert [s.id for s in result] == [idle.id]
    assert fresh not in result


@pytest.mark.asyncio
async def test_sessions_snapshot():
    """Test listing every registered session."""
    registry = SessionRegistry(TransportKind.SSE)
    first, _ = await _attach(registry)
    second, _ = await _attach(registry)

    assert {s.id for s in await registry.sessions()} == {first.id, second.id}
