from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Mapping

import pytest

from cfn_operations.config import PollingSettings
from cfn_operations.domain.models import (
    ApplyOptions,
    DeleteOptions,
    OperationEvent,
    OperationId,
)
from cfn_operations.domain.status import ActionKind
from cfn_operations.gateway.base import (
    EventPage,
    NoChanges,
    OperationStatus,
    Submission,
    UnitDescription,
)

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)

TEMPLATE = {
    "Resources": {
        "Bucket": {"Type": "AWS::S3::Bucket"},
    },
}


def make_event(
    seq: int,
    unit_name: str,
    status: str,
    *,
    unit_type: str = "AWS::S3::Bucket",
    reason: str | None = None,
    key: str | None = None,
) -> OperationEvent:
    return OperationEvent(
        timestamp=BASE_TIME + timedelta(seconds=seq),
        sequence_key=key or f"event-{seq:04d}",
        unit_name=unit_name,
        unit_type=unit_type,
        status=status,
        status_reason=reason,
    )


@dataclass
class Tick:
    """What the fake reports on one describe call, plus events that become visible."""

    status: str
    events: list[OperationEvent] = field(default_factory=list)
    outputs: Mapping[str, str] = field(default_factory=dict)
    reason: str | None = None
    error: Exception | None = None
    acknowledged: bool = True


class FakeGateway:
    """In-memory gateway that replays a scripted operation.

    Each ``describe`` call consumes one :class:`Tick` (the last one repeats).
    ``list_events`` returns every event made visible so far, newest first and
    split into pages of ``page_size``.
    """

    def __init__(
        self,
        *,
        existing: UnitDescription | None = None,
        ticks: list[Tick] | None = None,
        no_changes: bool = False,
        page_size: int = 100,
    ) -> None:
        self.existing = existing
        self.ticks = list(ticks or [])
        self.no_changes = no_changes
        self.page_size = page_size
        self.visible: list[OperationEvent] = []
        self.describe_unit_errors: list[Exception] = []
        self.list_event_errors: list[Exception] = []
        self.submit_error: Exception | None = None
        self.submitted_action: ActionKind | None = None
        self.released: list[OperationId] = []
        self.calls: dict[str, int] = {
            "describe_unit": 0,
            "begin_create_or_update": 0,
            "execute": 0,
            "begin_delete": 0,
            "describe": 0,
            "list_events": 0,
        }
        self._tick = 0

    async def describe_unit(self, unit_name: str) -> UnitDescription | None:
        self.calls["describe_unit"] += 1
        if self.describe_unit_errors:
            raise self.describe_unit_errors.pop(0)
        return self.existing

    async def begin_create_or_update(
        self,
        unit_name: str,
        definition: str,
        params: Mapping[str, str],
        *,
        action: ActionKind,
        options: ApplyOptions,
    ) -> Submission | NoChanges:
        self.calls["begin_create_or_update"] += 1
        if self.submit_error is not None:
            raise self.submit_error
        if self.no_changes:
            return NoChanges(unit_id=self.existing.unit_id if self.existing else None)
        self.calls["execute"] += 1
        self.submitted_action = action
        return Submission(
            operation_id=options.client_request_token or "op-1",
            action=action,
            unit_id=f"arn:{unit_name}",
        )

    async def begin_delete(self, unit_name: str, *, options: DeleteOptions) -> Submission:
        self.calls["begin_delete"] += 1
        if self.submit_error is not None:
            raise self.submit_error
        return Submission(
            operation_id=options.client_request_token or "op-1",
            action=ActionKind.DELETE,
            unit_id=f"arn:{unit_name}",
        )

    async def describe(self, operation_id: OperationId) -> OperationStatus:
        self.calls["describe"] += 1
        tick = self.ticks[min(self._tick, len(self.ticks) - 1)]
        self._tick += 1
        if tick.error is not None:
            error, tick.error = tick.error, None
            raise error
        self.visible.extend(tick.events)
        return OperationStatus(
            status=tick.status,
            outputs=tick.outputs,
            reason=tick.reason,
            acknowledged=tick.acknowledged,
        )

    async def list_events(
        self, operation_id: OperationId, pagination_token: str | None = None
    ) -> EventPage:
        self.calls["list_events"] += 1
        if self.list_event_errors:
            raise self.list_event_errors.pop(0)
        newest_first = list(reversed(self.visible))
        start = int(pagination_token or 0)
        end = start + self.page_size
        next_token = str(end) if end < len(newest_first) else None
        return EventPage(events=newest_first[start:end], next_token=next_token)

    def release(self, operation_id: OperationId) -> None:
        self.released.append(operation_id)


@pytest.fixture
def polling() -> PollingSettings:
    return PollingSettings(
        min_interval_seconds=0.001,
        max_interval_seconds=0.005,
        max_transient_retries=3,
        retry_budget_seconds=5.0,
        throttle_multiplier=2.0,
        jitter_ratio=0.25,
        change_set_poll_seconds=0,
    )


@pytest.fixture
def template() -> dict:
    return TEMPLATE


@pytest.fixture(autouse=True)
def _close_default_event_loop() -> None:
    yield
    policy = asyncio.get_event_loop_policy()
    local = getattr(policy, "_local", None)
    loop = getattr(local, "_loop", None) if local is not None else None
    if loop is not None and not loop.is_running() and not loop.is_closed():
        with contextlib.suppress(Exception):
            loop.close()
    if loop is not None:
        with contextlib.suppress(Exception):
            policy.set_event_loop(None)
