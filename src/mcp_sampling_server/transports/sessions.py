"""
Session registry: maps session identifiers to live transports.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import structlog

from .base import Transport, TransportKind, TransportState

logger = structlog.get_logger()


class UnknownSessionError(LookupError):
    """No live session matches the identifier."""

    def __init__(self, session_id: str | None):
        super().__init__(session_id)
        self.session_id = session_id


class SessionAlreadyRegisteredError(RuntimeError):
    """A transport is already registered under the identifier."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """A logical client connection, independent of any physical stream."""

    id: str
    kind: TransportKind
    created_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)
    transport: Transport | None = None

    @property
    def state(self) -> TransportState:
        if self.transport is None:
            return TransportState.INITIALIZING
        return self.transport.state

    def touch(self) -> None:
        self.last_activity = _utcnow()

    def idle_for(self, now: datetime | None = None) -> timedelta:
        return (now or _utcnow()) - self.last_activity


class SessionRegistry:
    """Owns creation, lookup and teardown of one transport kind's sessions.

    A session becomes visible to lookup only after its transport has been
    connected to a protocol server and attached here.
    """

    def __init__(self, kind: TransportKind):
        self.kind = kind
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def create(self) -> Session:
        """Mint a new, not yet registered session."""
        return Session(id=str(uuid4()), kind=self.kind)

    async def attach(self, session: Session, transport: Transport) -> None:
        """Register a connected transport under its session id."""
        async with self._lock:
            if session.id in self._sessions:
                raise SessionAlreadyRegisteredError(session.id)
            transport.activate()
            session.transport = transport
            session.touch()
            self._sessions[session.id] = session
        logger.info("Session registered", session_id=session.id, transport=self.kind.value)

    async def lookup(self, session_id: str | None) -> Session:
        """Get a live session, raising UnknownSessionError otherwise."""
        if not session_id:
            raise UnknownSessionError(session_id)
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.state is TransportState.TERMINATED:
                raise UnknownSessionError(session_id)
            session.touch()
            return session

    async def remove(self, session_id: str) -> Session | None:
        """Unregister a session. Removing twice is a no-op."""
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.info("Session removed", session_id=session_id, transport=self.kind.value)
        return session

    def discard(self, session: Session) -> None:
        """Forget a session whose connection never completed."""
        logger.warning("Discarding unconnected session", session_id=session.id, transport=self.kind.value)
        session.transport = None

    async def sessions(self) -> list[Session]:
        async with self._lock:
            return list(self._sessions.values())

    async def idle_sessions(self, max_idle: timedelta) -> list[Session]:
        """Sessions with no attached stream and no activity for ``max_idle``."""
        now = _utcnow()
        async with self._lock:
            return [
                session for session in self._sessions.values()
                if session.transport is not None
                and not session.transport.is_connected
                and session.idle_for(now) > max_idle
            ]

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
