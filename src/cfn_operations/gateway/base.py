"""The remote capability the operation engine drives."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Protocol, runtime_checkable

from cfn_operations.domain.models import (
    ApplyOptions,
    DeleteOptions,
    OperationEvent,
    OperationId,
)
from cfn_operations.domain.status import ActionKind


@dataclass(frozen=True)
class UnitDescription:
    """Current remote state of a deployable unit."""

    unit_id: str
    unit_name: str
    status: str
    outputs: Mapping[str, str] = field(default_factory=dict)
    status_reason: str | None = None


@dataclass(frozen=True)
class NoChanges:
    """Returned instead of an operation id when the definition has no drift."""

    unit_id: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class Submission:
    """An accepted apply or delete request.

    ``action`` is what the remote system actually started, which may differ
    from the planned action (a create that found the unit already present
    proceeds as an update).
    """

    operation_id: OperationId
    action: ActionKind
    unit_id: str | None = None


@dataclass(frozen=True)
class OperationStatus:
    """Status of the unit as seen by one operation.

    ``acknowledged`` is false while the unit still reports the outcome of an
    earlier operation because the submitted one has not visibly started.
    """

    status: str
    outputs: Mapping[str, str] = field(default_factory=dict)
    reason: str | None = None
    acknowledged: bool = True


@dataclass(frozen=True)
class EventPage:
    events: list[OperationEvent]
    next_token: str | None = None


@runtime_checkable
class RemoteGateway(Protocol):
    """Submit and query capability for long-running unit operations.

    Every method may raise :class:`~cfn_operations.errors.NotFoundError`,
    :class:`~cfn_operations.errors.ThrottlingError`,
    :class:`~cfn_operations.errors.TransportError` or
    :class:`~cfn_operations.errors.ValidationError`.

    The engine retries the read-only calls (``describe_unit``, ``describe``,
    ``list_events``). ``begin_create_or_update`` and ``begin_delete`` are
    called once: they are multi-step and must retry each remote step
    themselves, so a retried step never repeats an earlier one.
    """

    async def describe_unit(self, unit_name: str) -> UnitDescription | None:
        """Return the unit, or ``None`` when it does not exist."""

    async def begin_create_or_update(
        self,
        unit_name: str,
        definition: str,
        params: Mapping[str, str],
        *,
        action: ActionKind,
        options: ApplyOptions,
    ) -> Submission | NoChanges:
        ...

    async def begin_delete(self, unit_name: str, *, options: DeleteOptions) -> Submission:
        ...

    async def describe(self, operation_id: OperationId) -> OperationStatus:
        """Return the unit's status for this operation.

        A settled status reported with ``acknowledged=True`` is the
        operation's outcome.
        """

    async def list_events(
        self, operation_id: OperationId, pagination_token: str | None = None
    ) -> EventPage:
        """Return one page of the operation's events, in any order."""

    def release(self, operation_id: OperationId) -> None:
        """Forget a finished operation; later queries for it raise ``NotFoundError``."""
