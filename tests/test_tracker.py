from __future__ import annotations

import random

from conftest import make_event

from cfn_operations.engine.tracker import EventLog


def _keys(events) -> list[str]:
    return [event.sequence_key for event in events]


def test_ingest_sorts_and_dedupes() -> None:
    log = EventLog()
    e1 = make_event(1, "Bucket", "CREATE_IN_PROGRESS")
    e2 = make_event(2, "Bucket", "CREATE_COMPLETE")

    accepted = log.ingest([e2, e1, e2])

    assert _keys(accepted) == ["event-0001", "event-0002"]
    assert len(log) == 2
    assert log.ingest([e1, e2]) == []
    assert log.seen_keys == {"event-0001", "event-0002"}


def test_same_timestamp_orders_by_sequence_key() -> None:
    log = EventLog()
    a = make_event(1, "A", "CREATE_IN_PROGRESS", key="b-key")
    b = make_event(1, "B", "CREATE_IN_PROGRESS", key="a-key")

    log.ingest([a, b])

    assert _keys(log.subscribe().drain()) == ["a-key", "b-key"]


def test_overlapping_reordered_pages_are_strictly_increasing() -> None:
    rng = random.Random(7)
    events = [make_event(i, f"Unit{i % 3}", "CREATE_IN_PROGRESS") for i in range(1, 41)]
    log = EventLog()
    cursor = log.subscribe()
    delivered = []

    # Each poll sees the full history so far, shuffled, like an unordered pager.
    for visible in range(5, 41, 5):
        page = events[:visible]
        rng.shuffle(page)
        log.ingest(page)
        delivered.extend(cursor.drain())

    assert [event.sort_key for event in delivered] == sorted(
        {event.sort_key for event in delivered}
    )
    assert len(delivered) == 40


def test_late_subscriber_sees_full_history() -> None:
    log = EventLog()
    early = log.subscribe()
    log.ingest([make_event(i, "Bucket", "CREATE_IN_PROGRESS") for i in range(1, 4)])
    assert len(early.drain()) == 3

    late = log.subscribe()
    assert late.pending == 3
    log.ingest([make_event(4, "Bucket", "CREATE_COMPLETE")])

    assert _keys(late.drain()) == ["event-0001", "event-0002", "event-0003", "event-0004"]
    assert _keys(early.drain()) == ["event-0004"]
    assert early.pending == 0


def test_event_older_than_tail_is_kept_aside() -> None:
    log = EventLog()
    cursor = log.subscribe()
    log.ingest([make_event(5, "Bucket", "CREATE_COMPLETE")])
    cursor.drain()

    straggler = make_event(3, "Queue", "CREATE_FAILED", reason="boom")
    accepted = log.ingest([straggler])

    assert accepted == [straggler]
    assert log.late == [straggler]
    assert cursor.drain() == []
    assert "event-0003" in log.seen_keys
    # Seen late events are not reconsidered on the next poll.
    assert log.ingest([straggler]) == []
