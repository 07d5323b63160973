"""
Resumable event log for streamable HTTP sessions.

Each session gets its own append-only sequence numbered from 1. Retention is
bounded per session; a replay that reaches past the oldest retained entry is
flagged as a gap instead of looking complete.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger()


class EventLogClosedError(RuntimeError):
    """The session's log was never opened or has been released."""


@dataclass(frozen=True)
class EventEntry:
    sequence: int
    payload: str


@dataclass
class ReplayResult:
    """Entries after a marker, and whether some of them were already evicted."""

    events: list[EventEntry] = field(default_factory=list)
    gap: bool = False
    oldest_available: int | None = None


class _SessionLog:
    def __init__(self, max_events: int):
        self.entries: deque[EventEntry] = deque(maxlen=max_events)
        self.next_sequence = 1
        self.lock = asyncio.Lock()


class EventStore:
    """Per-session append-only event sequences."""

    def __init__(self, max_events_per_session: int = 1000):
        if max_events_per_session < 1:
            raise ValueError("max_events_per_session must be at least 1")
        self.max_events_per_session = max_events_per_session
        self._logs: dict[str, _SessionLog] = {}

    async def open(self, session_id: str) -> None:
        """Start a log for a session. Opening an open log is a no-op."""
        self._logs.setdefault(session_id, _SessionLog(self.max_events_per_session))

    async def append(self, session_id: str, payload: str) -> int:
        """Append a payload and return its sequence number."""
        log = self._get(session_id)
        async with log.lock:
            if self._logs.get(session_id) is not log:
                raise EventLogClosedError(session_id)
            entry = EventEntry(sequence=log.next_sequence, payload=payload)
            log.entries.append(entry)
            log.next_sequence += 1
        return entry.sequence

    async def replay(self, session_id: str, after: int) -> ReplayResult:
        """Every retained entry with a sequence number greater than ``after``."""
        if after < 0:
            raise ValueError("replay marker must not be negative")
        log = self._get(session_id)
        async with log.lock:
            oldest = log.entries[0].sequence if log.entries else log.next_sequence
            events = [entry for entry in log.entries if entry.sequence > after]
        gap = after < oldest - 1
        if gap:
            logger.warning(
                "Replay requested past retained events",
                session_id=session_id,
                after=after,
                oldest_available=oldest,
            )
        return ReplayResult(events=events, gap=gap, oldest_available=oldest if log.entries else None)

    def last_sequence(self, session_id: str) -> int:
        """Sequence number of the latest entry, 0 when empty."""
        return self._get(session_id).next_sequence - 1

    async def close(self, session_id: str) -> None:
        """Release a session's log. Closing twice is a no-op."""
        log = self._logs.pop(session_id, None)
        if log is not None:
            logger.debug("Event log released", session_id=session_id, retained=len(log.entries))

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._logs

    def _get(self, session_id: str) -> _SessionLog:
        log = self._logs.get(session_id)
        if log is None:
            raise EventLogClosedError(session_id)
        return log
