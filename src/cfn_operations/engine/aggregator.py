"""Per-unit failure accounting for a running operation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from cfn_operations.domain.models import OperationEvent, ResourceOutcome
from cfn_operations.domain.status import is_failure_status

logger = logging.getLogger(__name__)


class ResourceOutcomeAggregator:
    """Collects one :class:`ResourceOutcome` per unit.

    Events may be observed out of order, so each outcome remembers the sort
    key of the event it came from and an older event never replaces a newer
    one of the same kind. The latest failure observed for a unit wins, and no
    non-failure event clears a recorded failure: a resource that failed to
    create and was then deleted during rollback still counts as failed.

    Events for the operation's own unit (``root_unit``) are tracked separately
    and only contribute the last failure reason.
    """

    def __init__(self, root_unit: str) -> None:
        self._root_unit = root_unit
        self._outcomes: dict[str, ResourceOutcome] = {}
        self._keys: dict[str, tuple[datetime, str]] = {}
        self._reason_key: tuple[datetime, str] | None = None
        self.last_failure_reason: str | None = None

    def observe(self, event: OperationEvent) -> None:
        failed = is_failure_status(event.status)
        key = event.sort_key
        if failed and event.status_reason:
            if self._reason_key is None or key > self._reason_key:
                self.last_failure_reason = event.status_reason
                self._reason_key = key

        if event.unit_name == self._root_unit:
            return

        existing = self._outcomes.get(event.unit_name)
        newer = existing is None or key > self._keys[event.unit_name]
        if failed:
            if existing is not None and existing.failed and not newer:
                return
        elif existing is not None and (existing.failed or not newer):
            return

        if failed:
            logger.info(
                "Unit %s (%s) reported %s: %s",
                event.unit_name,
                event.unit_type,
                event.status,
                event.status_reason or "no reason reported",
            )
        self._outcomes[event.unit_name] = ResourceOutcome(
            unit_name=event.unit_name,
            unit_type=event.unit_type,
            failed=failed,
            status=event.status,
            reason=event.status_reason,
        )
        self._keys[event.unit_name] = key

    def observe_all(self, events: Iterable[OperationEvent]) -> None:
        for event in events:
            self.observe(event)

    @property
    def outcomes(self) -> list[ResourceOutcome]:
        return list(self._outcomes.values())

    @property
    def failures(self) -> list[ResourceOutcome]:
        return [outcome for outcome in self._outcomes.values() if outcome.failed]

    @property
    def has_failures(self) -> bool:
        return any(outcome.failed for outcome in self._outcomes.values())
