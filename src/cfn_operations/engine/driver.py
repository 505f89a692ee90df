"""The state machine that drives one operation to a terminal phase.

One :class:`OperationDriver` owns one :class:`OperationRecord` and is its
only writer. Readers (event streams, result awaiters) observe the record
through its append-only event log and monotonic phase, and wake up whenever
the driver publishes a change. No locking is needed: everything runs on a
single event loop and the driver never yields while the record is
half-updated.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from enum import Enum
from typing import Awaitable, Callable, Mapping

from cfn_operations.config import PollingSettings
from cfn_operations.domain.models import OperationEvent, OperationId
from cfn_operations.domain.status import (
    ActionKind,
    OperationPhase,
    StackStatus,
    classify,
    in_action_family,
)
from cfn_operations.engine.aggregator import ResourceOutcomeAggregator
from cfn_operations.engine.backoff import PollBackoff
from cfn_operations.engine.plan import Plan
from cfn_operations.engine.retry import call_with_retry
from cfn_operations.engine.tracker import EventLog
from cfn_operations.errors import NotFoundError
from cfn_operations.gateway.base import OperationStatus, RemoteGateway

logger = logging.getLogger(__name__)


class DriverState(str, Enum):
    NOT_STARTED = "NotStarted"
    SUBMITTING = "Submitting"
    POLLING = "Polling"
    TERMINAL = "Terminal"


class OperationRecord:
    def __init__(self, unit_name: str) -> None:
        self.unit_name = unit_name
        self.operation_id: OperationId | None = None
        self.unit_id: str | None = None
        self.action = ActionKind.NOOP
        self.phase = OperationPhase.PENDING
        self.phase_history: list[OperationPhase] = [OperationPhase.PENDING]
        self.status: str | None = None
        self.status_reason: str | None = None
        self.outputs: Mapping[str, str] = {}
        self.acknowledged = False
        self.events = EventLog()
        self.aggregator = ResourceOutcomeAggregator(unit_name)
        self.closed = False
        self._version = 0
        self._changed = asyncio.Event()

    @property
    def version(self) -> int:
        return self._version

    def advance(self, phase: OperationPhase) -> bool:
        """Move to ``phase`` unless that would go backwards or leave a terminal phase."""
        if self.phase.is_terminal or phase.rank < self.phase.rank or phase is self.phase:
            return False
        logger.info("%s: %s -> %s", self.unit_name, self.phase.value, phase.value)
        self.phase = phase
        self.phase_history.append(phase)
        return True

    def publish(self) -> None:
        self._version += 1
        waiter, self._changed = self._changed, asyncio.Event()
        waiter.set()

    def close(self) -> None:
        self.closed = True
        self.publish()

    async def wait_for_change(self, version: int) -> None:
        while self._version == version:
            await self._changed.wait()


class OperationDriver:
    """Plans, submits and polls one operation.

    ``plan`` performs the action-specific part (deciding between create,
    update and no-op, or delete) and submits it; everything after submission
    is shared between apply and delete.
    """

    def __init__(
        self,
        record: OperationRecord,
        gateway: RemoteGateway,
        plan: Callable[[], Awaitable[Plan]],
        settings: PollingSettings,
    ) -> None:
        self.record = record
        self.state = DriverState.NOT_STARTED
        self._gateway = gateway
        self._plan = plan
        self._settings = settings
        self._aggregator_cursor = record.events.subscribe()
        self._late_seen = 0
        self._unacknowledged_polls = 0

    async def run(self) -> OperationRecord:
        record = self.record
        try:
            self.state = DriverState.SUBMITTING
            plan = await self._plan()
            record.action = plan.action
            if plan.is_noop:
                self._settle_noop(plan)
                return record

            submission = plan.submission
            record.operation_id = submission.operation_id
            record.unit_id = submission.unit_id
            self.state = DriverState.POLLING
            record.publish()
            await self._poll_until_settled()
            return record
        finally:
            if record.phase.is_terminal:
                self.state = DriverState.TERMINAL
            if record.operation_id is not None:
                self._gateway.release(record.operation_id)
            record.close()

    def _settle_noop(self, plan: Plan) -> None:
        record = self.record
        if plan.settled is not None:
            record.unit_id = plan.settled.unit_id
            record.status = plan.settled.status
        record.outputs = dict(plan.outputs)
        record.advance(OperationPhase.SUCCEEDED)

    async def _poll_until_settled(self) -> None:
        backoff = PollBackoff(self._settings)
        while True:
            status = await self._describe()
            fresh = await self._fetch_events()
            progressed = self._absorb(status, fresh)
            self.record.publish()
            if self.record.phase.is_terminal:
                return
            await asyncio.sleep(backoff.next_delay(progressed))

    async def _describe(self) -> OperationStatus:
        record = self.record
        try:
            return await call_with_retry(
                functools.partial(self._gateway.describe, record.operation_id),
                settings=self._settings,
                what=f"describe operation {record.operation_id}",
            )
        except NotFoundError:
            if record.action is not ActionKind.DELETE:
                raise
            # A unit that vanished after a delete was submitted has been deleted.
            record.acknowledged = True
            return OperationStatus(status=StackStatus.DELETE_COMPLETE.value)

    async def _fetch_events(self) -> int:
        # Pages arrive in any order, so the whole history is sorted before ingest.
        record = self.record
        fetched: list[OperationEvent] = []
        token: str | None = None
        for _ in range(self._settings.max_event_pages):
            page = await call_with_retry(
                functools.partial(self._gateway.list_events, record.operation_id, token),
                settings=self._settings,
                what=f"list events for operation {record.operation_id}",
            )
            fetched.extend(page.events)
            token = page.next_token
            if not token:
                break
        else:
            logger.warning(
                "Stopped paging events for %s after %d pages",
                record.unit_name,
                self._settings.max_event_pages,
            )
        return len(record.events.ingest(fetched))

    def _absorb(self, status: OperationStatus, fresh: int) -> bool:
        record = self.record
        record.status = status.status
        if status.reason:
            record.status_reason = status.reason

        aggregator = record.aggregator
        aggregator.observe_all(self._aggregator_cursor.drain())
        late: list[OperationEvent] = record.events.late[self._late_seen :]
        aggregator.observe_all(late)
        self._late_seen += len(late)

        if not record.acknowledged:
            if not self._acknowledge(status, fresh):
                return False
            record.acknowledged = True

        changed = record.advance(OperationPhase.IN_PROGRESS)
        phase = classify(
            status.status,
            record.action,
            has_resource_failures=aggregator.has_failures,
        )
        if phase.is_success:
            record.outputs = dict(status.outputs)
        changed = record.advance(phase) or changed
        return bool(fresh) or changed

    def _acknowledge(self, status: OperationStatus, fresh: int) -> bool:
        """Whether ``status`` may be taken as this operation's status."""
        record = self.record
        if fresh or status.acknowledged:
            return True
        self._unacknowledged_polls += 1
        if self._unacknowledged_polls < self._settings.max_unacknowledged_polls:
            logger.debug(
                "%s still reports %s; waiting for %s to start",
                record.unit_name,
                status.status,
                record.action.value,
            )
            return False
        if not in_action_family(status.status, record.action):
            return False
        logger.warning(
            "%s reported %s for %d polls without confirming operation %s; accepting it",
            record.unit_name,
            status.status,
            self._unacknowledged_polls,
            record.operation_id,
        )
        return True
