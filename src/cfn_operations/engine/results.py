"""Turn a settled operation record into a typed result."""

from __future__ import annotations

from typing import TYPE_CHECKING

from cfn_operations.domain.models import (
    ApplyFailure,
    ApplyResult,
    ApplySuccess,
    DeleteFailure,
    DeleteResult,
    DeleteSuccess,
)
from cfn_operations.domain.status import OperationPhase

if TYPE_CHECKING:
    from cfn_operations.engine.driver import OperationRecord

_NO_REASON = "no reason reported"


def _failure_reason(record: "OperationRecord") -> str:
    return (
        record.aggregator.last_failure_reason
        or record.status_reason
        or _NO_REASON
    )


def _require_terminal(record: "OperationRecord") -> None:
    if not record.phase.is_terminal:
        raise RuntimeError(
            f"operation on {record.unit_name} has not settled (phase {record.phase.value})"
        )


def build_apply_result(record: "OperationRecord") -> ApplyResult:
    _require_terminal(record)
    if record.phase is OperationPhase.FAILED:
        return ApplyFailure(
            operation_id=record.operation_id or "",
            unit_name=record.unit_name,
            unit_id=record.unit_id,
            status=record.status or "",
            reason=_failure_reason(record),
            resource_failures=record.aggregator.failures,
            action=record.action,
        )
    warnings = (
        record.aggregator.failures
        if record.phase is OperationPhase.SUCCEEDED_WITH_WARNINGS
        else []
    )
    return ApplySuccess(
        operation_id=record.operation_id,
        unit_name=record.unit_name,
        unit_id=record.unit_id,
        action=record.action,
        outputs=dict(record.outputs),
        warnings=warnings,
    )


def build_delete_result(record: "OperationRecord") -> DeleteResult:
    _require_terminal(record)
    if record.phase is OperationPhase.FAILED:
        return DeleteFailure(
            operation_id=record.operation_id or "",
            unit_name=record.unit_name,
            unit_id=record.unit_id,
            status=record.status or "",
            reason=_failure_reason(record),
            resource_failures=record.aggregator.failures,
        )
    warnings = (
        record.aggregator.failures
        if record.phase is OperationPhase.SUCCEEDED_WITH_WARNINGS
        else []
    )
    return DeleteSuccess(
        operation_id=record.operation_id,
        unit_name=record.unit_name,
        unit_id=record.unit_id,
        warnings=warnings,
    )
