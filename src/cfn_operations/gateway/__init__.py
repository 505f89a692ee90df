"""Remote gateway protocol and the CloudFormation implementation."""

from cfn_operations.gateway.base import (
    EventPage,
    NoChanges,
    OperationStatus,
    RemoteGateway,
    Submission,
    UnitDescription,
)
from cfn_operations.gateway.cloudformation import CloudFormationGateway

__all__ = [
    "CloudFormationGateway",
    "EventPage",
    "NoChanges",
    "OperationStatus",
    "RemoteGateway",
    "Submission",
    "UnitDescription",
]
