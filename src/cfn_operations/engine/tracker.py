"""Deduplicated, ordered event history with independent subscriber cursors."""

from __future__ import annotations

import logging
from typing import Iterable

from cfn_operations.domain.models import OperationEvent

logger = logging.getLogger(__name__)


class EventCursor:
    """A subscriber's read position in an :class:`EventLog`.

    Cursors only ever move forward, so a subscriber never sees an event twice
    and always sees events in ``(timestamp, sequence_key)`` order. A cursor
    created late starts at the beginning and catches up on the full history.
    """

    def __init__(self, log: "EventLog") -> None:
        self._log = log
        self._position = 0

    @property
    def pending(self) -> int:
        return len(self._log) - self._position

    def drain(self) -> list[OperationEvent]:
        events = self._log.slice_from(self._position)
        self._position += len(events)
        return events


class EventLog:
    """Append-only buffer of every event accepted for one operation.

    Each poll hands over the full (or paged) history it fetched. Already-seen
    sequence keys are dropped, the remainder is sorted, and events newer than
    the tail are appended. Events that sort before the tail arrived too late
    to be delivered in order; they are kept aside in :attr:`late` so that
    failure accounting still sees them.
    """

    def __init__(self) -> None:
        self._events: list[OperationEvent] = []
        self._seen: set[str] = set()
        self.late: list[OperationEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    @property
    def seen_keys(self) -> frozenset[str]:
        return frozenset(self._seen)

    @property
    def last(self) -> OperationEvent | None:
        return self._events[-1] if self._events else None

    def slice_from(self, position: int) -> list[OperationEvent]:
        return self._events[position:]

    def subscribe(self) -> EventCursor:
        return EventCursor(self)

    def ingest(self, events: Iterable[OperationEvent]) -> list[OperationEvent]:
        """Accept unseen events and return them in delivery order.

        The returned list includes late events (which are not appended to the
        buffer) so callers can account for every event exactly once.
        """
        fresh: dict[str, OperationEvent] = {}
        for event in events:
            if event.sequence_key in self._seen or event.sequence_key in fresh:
                continue
            fresh[event.sequence_key] = event
        if not fresh:
            return []

        accepted = sorted(fresh.values(), key=lambda event: event.sort_key)
        self._seen.update(fresh)

        tail = self.last
        for event in accepted:
            if tail is not None and event.sort_key <= tail.sort_key:
                logger.warning(
                    "Event %s for %s arrived after newer events were delivered; "
                    "it will not be streamed",
                    event.sequence_key,
                    event.unit_name,
                )
                self.late.append(event)
                continue
            self._events.append(event)
            tail = event
        return accepted
