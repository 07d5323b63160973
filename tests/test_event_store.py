"""
Tests for the resumable event log.
"""

import asyncio

import pytest

from mcp_sampling_server.transports.event_store import EventLogClosedError, EventStore


@pytest.mark.asyncio
async def test_append_assigns_increasing_sequence_numbers():
    """Test sequence numbers start at 1 and increase by one."""
    store = EventStore()
    await store.open("s1")

    assert await store.append("s1", "a") == 1
    assert await store.append("s1", "b") == 2
    assert await store.append("s1", "c") == 3
    assert store.last_sequence("s1") == 3


@pytest.mark.asyncio
async def test_sequences_are_per_session():
    """Test each session numbers its own events."""
    store = EventStore()
    await store.open("s1")
    await store.open("s2")

    await store.append("s1", "a")
    await store.append("s1", "b")

    assert await store.append("s2", "x") == 1


@pytest.mark.asyncio
async def test_replay_after_marker():
    """Test replay returns exactly the events after the marker, in order."""
    store = EventStore()
    await store.open("s1")
    for payload in ["a1", "a2", "a3", "a4"]:
        await store.append("s1", payload)

    replay = await store.replay("s1", 2)

    assert [e.sequence for e in replay.events] == [3, 4]
    assert [e.payload for e in replay.events] == ["a3", "a4"]
    assert replay.gap is False


@pytest.mark.asyncio
async def test_replay_latest_marker_is_empty():
    """Test replaying after the newest event returns nothing."""
    store = EventStore()
    await store.open("s1")
    await store.append("s1", "a1")

    replay = await store.replay("s1", 1)

    assert replay.events == []
    assert replay.gap is False


@pytest.mark.asyncio
async def test_replay_from_zero_returns_everything():
    """Test marker 0 replays the whole log."""
    store = EventStore()
    await store.open("s1")
    await store.append("s1", "a1")
    await store.append("s1", "a2")

    replay = await store.replay("s1", 0)

    assert [e.payload for e in replay.events] == ["a1", "a2"]
    assert replay.gap is False


@pytest.mark.asyncio
async def test_replay_past_retention_reports_gap():
    """Test evicted events are flagged as a gap."""
    store = EventStore(max_events_per_session=3)
    await store.open("s1")
    for i in range(1, 6):
        await store.append("s1", f"a{i}")

    replay = await store.replay("s1", 1)

    assert replay.gap is True
    assert replay.oldest_available == 3
    assert [e.sequence for e in replay.events] == [3, 4, 5]

    # The oldest retained minus one is still a complete replay
    replay = await store.replay("s1", 2)
    assert replay.gap is False


@pytest.mark.asyncio
async def test_replay_rejects_negative_marker():
    """Test negative markers are invalid."""
    store = EventStore()
    await store.open("s1")

    with pytest.raises(ValueError):
        await store.replay("s1", -1)


@pytest.mark.asyncio
async def test_append_after_close_fails():
    """Test a released log accepts no appends."""
    store = EventStore()
    await store.open("s1")
    await store.append("s1", "a1")

    await store.close("s1")
    await store.close("s1")

    assert "s1" not in store
    with pytest.raises(EventLogClosedError):
        await store.append("s1", "a2")


@pytest.mark.asyncio
async def test_append_to_unopened_log_fails():
    """Test appending to a session that was never opened."""
    store = EventStore()

    with pytest.raises(EventLogClosedError):
        await store.append("missing", "a1")


@pytest.mark.asyncio
async def test_concurrent_appends_get_distinct_sequences():
    """Test concurrent appends never share a sequence number."""
    store = EventStore()
    await store.open("s1")

    sequences = await asyncio.gather(*(store.append("s1", str(i)) for i in range(50)))

    assert sorted(sequences) == list(range(1, 51))


def test_invalid_retention():
    """Test retention must hold at least one event."""
    with pytest.raises(ValueError):
        EventStore(max_events_per_session=0)
