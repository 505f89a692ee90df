"""Idempotent, observable CloudFormation apply and delete operations."""

from cfn_operations.domain.models import (
    ApplyFailure,
    ApplyOptions,
    ApplyResult,
    ApplySuccess,
    Capability,
    DeleteFailure,
    DeleteOptions,
    DeleteResult,
    DeleteSuccess,
    OperationEvent,
    OperationOutput,
    ResourceOutcome,
)
from cfn_operations.domain.status import ActionKind, OperationPhase
from cfn_operations.errors import (
    ConcurrentModificationError,
    FatalOperationError,
    GatewayError,
    NotFoundError,
    OperationError,
    PartialSuccessError,
    RemoteOperationFailed,
    ThrottlingError,
    TransportError,
    ValidationError,
)
from cfn_operations.operations import ApplyHandle, DeleteHandle, OperationHandle, apply, delete

__all__ = [
    "ActionKind",
    "ApplyFailure",
    "ApplyHandle",
    "ApplyOptions",
    "ApplyResult",
    "ApplySuccess",
    "Capability",
    "ConcurrentModificationError",
    "DeleteFailure",
    "DeleteHandle",
    "DeleteOptions",
    "DeleteResult",
    "DeleteSuccess",
    "FatalOperationError",
    "GatewayError",
    "NotFoundError",
    "OperationError",
    "OperationEvent",
    "OperationHandle",
    "OperationOutput",
    "OperationPhase",
    "PartialSuccessError",
    "RemoteOperationFailed",
    "ResourceOutcome",
    "ThrottlingError",
    "TransportError",
    "ValidationError",
    "apply",
    "delete",
]
