"""Domain objects for apply and delete operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping

from cfn_operations.domain.status import ActionKind, OperationPhase
from cfn_operations.domain.status_reason import StatusReasonDetail, parse_status_reason
from cfn_operations.errors import PartialSuccessError, RemoteOperationFailed

OperationId = str

_NO_REASON = "no reason reported"


@dataclass(frozen=True, order=True)
class OperationEvent:
    """A single progress record reported by the remote system.

    Events order by ``(timestamp, sequence_key)``; the remaining fields do not
    take part in comparisons.
    """

    timestamp: datetime
    sequence_key: str
    unit_name: str = field(compare=False)
    unit_type: str = field(compare=False)
    status: str = field(compare=False)
    status_reason: str | None = field(default=None, compare=False)
    physical_id: str | None = field(default=None, compare=False)

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return (self.timestamp, self.sequence_key)


@dataclass(frozen=True)
class ResourceOutcome:
    unit_name: str
    unit_type: str
    failed: bool
    status: str
    reason: str | None = None

    @property
    def reason_detail(self) -> StatusReasonDetail | None:
        return parse_status_reason(self.reason)

    def describe(self) -> str:
        return f"- {self.unit_name} ({self.unit_type}): {self.status} ({self.reason or _NO_REASON})"


@dataclass(frozen=True)
class OperationOutput:
    operation_id: OperationId | None
    unit_id: str | None
    outputs: Mapping[str, str]


class Capability(str, Enum):
    IAM = "CAPABILITY_IAM"
    NAMED_IAM = "CAPABILITY_NAMED_IAM"
    AUTO_EXPAND = "CAPABILITY_AUTO_EXPAND"


@dataclass(frozen=True)
class ApplyOptions:
    capabilities: tuple[Capability, ...] = ()
    tags: Mapping[str, str] = field(default_factory=dict)
    role_arn: str | None = None
    notification_arns: tuple[str, ...] = ()
    disable_rollback: bool = False
    client_request_token: str | None = None


@dataclass(frozen=True)
class DeleteOptions:
    retain_resources: tuple[str, ...] = ()
    role_arn: str | None = None
    client_request_token: str | None = None


def _format_outcomes(outcomes: list[ResourceOutcome]) -> str:
    return "\n".join(outcome.describe() for outcome in outcomes)


@dataclass(frozen=True)
class ApplySuccess:
    """A successful apply.

    ``warnings`` lists units that failed even though the operation as a whole
    succeeded (for example a resource that could not be cleaned up after an
    update). Whether that matters is up to the caller.
    """

    operation_id: OperationId | None
    unit_name: str
    unit_id: str | None
    action: ActionKind
    outputs: Mapping[str, str]
    warnings: list[ResourceOutcome] = field(default_factory=list)

    succeeded = True

    @property
    def phase(self) -> OperationPhase:
        if self.warnings:
            return OperationPhase.SUCCEEDED_WITH_WARNINGS
        return OperationPhase.SUCCEEDED

    @property
    def output(self) -> OperationOutput:
        return OperationOutput(self.operation_id, self.unit_id, self.outputs)

    def raise_for_status(self, *, warnings_as_errors: bool = False) -> "ApplySuccess":
        if warnings_as_errors and self.warnings:
            raise PartialSuccessError(str(self), self.warnings)
        return self

    def __str__(self) -> str:
        if not self.warnings:
            return f"Unit {self.unit_name} applied successfully ({self.action.value})"
        return (
            f"Unit {self.unit_name} applied successfully but some resources had errors:\n"
            + _format_outcomes(self.warnings)
        )


@dataclass(frozen=True)
class DeleteSuccess:
    operation_id: OperationId | None
    unit_name: str
    unit_id: str | None
    warnings: list[ResourceOutcome] = field(default_factory=list)

    succeeded = True

    @property
    def phase(self) -> OperationPhase:
        if self.warnings:
            return OperationPhase.SUCCEEDED_WITH_WARNINGS
        return OperationPhase.SUCCEEDED

    @property
    def output(self) -> OperationOutput:
        return OperationOutput(self.operation_id, self.unit_id, {})

    def raise_for_status(self, *, warnings_as_errors: bool = False) -> "DeleteSuccess":
        if warnings_as_errors and self.warnings:
            raise PartialSuccessError(str(self), self.warnings)
        return self

    def __str__(self) -> str:
        if not self.warnings:
            return f"Unit {self.unit_name} deleted successfully"
        return (
            f"Unit {self.unit_name} deleted successfully but some resources had errors:\n"
            + _format_outcomes(self.warnings)
        )


@dataclass(frozen=True)
class _Failure:
    """A remote operation that settled in a failed phase.

    ``reason`` is the last failure reason reported while the operation ran,
    which is usually more descriptive than the reason attached to the final
    status.
    """

    operation_id: OperationId
    unit_name: str
    unit_id: str | None
    status: str
    reason: str
    resource_failures: list[ResourceOutcome] = field(default_factory=list)

    succeeded = False
    phase = OperationPhase.FAILED

    @property
    def reason_detail(self) -> StatusReasonDetail | None:
        return parse_status_reason(self.reason)

    def raise_for_status(self, *, warnings_as_errors: bool = False) -> None:
        raise RemoteOperationFailed(self)

    def __str__(self) -> str:
        message = (
            f"Operation failed for {self.unit_name}; terminal status: {self.status} "
            f"({self.reason})"
        )
        if self.resource_failures:
            message += "\nThe following resources had errors:\n" + _format_outcomes(
                self.resource_failures
            )
        return message


@dataclass(frozen=True)
class ApplyFailure(_Failure):
    action: ActionKind = ActionKind.CREATE


@dataclass(frozen=True)
class DeleteFailure(_Failure):
    pass


ApplyResult = ApplySuccess | ApplyFailure
DeleteResult = DeleteSuccess | DeleteFailure
