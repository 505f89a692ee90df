"""Raw CloudFormation status vocabularies and the status classifier."""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class StatusSentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class OperationPhase(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SUCCEEDED_WITH_WARNINGS = "SucceededWithWarnings"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_PHASES

    @property
    def is_success(self) -> bool:
        return self in (OperationPhase.SUCCEEDED, OperationPhase.SUCCEEDED_WITH_WARNINGS)

    @property
    def rank(self) -> int:
        if self is OperationPhase.PENDING:
            return 0
        if self is OperationPhase.IN_PROGRESS:
            return 1
        return 2


_TERMINAL_PHASES = frozenset(
    {
        OperationPhase.SUCCEEDED,
        OperationPhase.FAILED,
        OperationPhase.SUCCEEDED_WITH_WARNINGS,
    }
)


class ActionKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"


class StackStatus(str, Enum):
    CREATE_IN_PROGRESS = "CREATE_IN_PROGRESS"
    CREATE_FAILED = "CREATE_FAILED"
    CREATE_COMPLETE = "CREATE_COMPLETE"
    ROLLBACK_IN_PROGRESS = "ROLLBACK_IN_PROGRESS"
    ROLLBACK_FAILED = "ROLLBACK_FAILED"
    ROLLBACK_COMPLETE = "ROLLBACK_COMPLETE"
    DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
    DELETE_FAILED = "DELETE_FAILED"
    DELETE_COMPLETE = "DELETE_COMPLETE"
    UPDATE_IN_PROGRESS = "UPDATE_IN_PROGRESS"
    UPDATE_COMPLETE_CLEANUP_IN_PROGRESS = "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS"
    UPDATE_COMPLETE = "UPDATE_COMPLETE"
    UPDATE_FAILED = "UPDATE_FAILED"
    UPDATE_ROLLBACK_IN_PROGRESS = "UPDATE_ROLLBACK_IN_PROGRESS"
    UPDATE_ROLLBACK_FAILED = "UPDATE_ROLLBACK_FAILED"
    UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS = "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS"
    UPDATE_ROLLBACK_COMPLETE = "UPDATE_ROLLBACK_COMPLETE"
    REVIEW_IN_PROGRESS = "REVIEW_IN_PROGRESS"
    IMPORT_IN_PROGRESS = "IMPORT_IN_PROGRESS"
    IMPORT_COMPLETE = "IMPORT_COMPLETE"
    IMPORT_ROLLBACK_IN_PROGRESS = "IMPORT_ROLLBACK_IN_PROGRESS"
    IMPORT_ROLLBACK_FAILED = "IMPORT_ROLLBACK_FAILED"
    IMPORT_ROLLBACK_COMPLETE = "IMPORT_ROLLBACK_COMPLETE"

    @property
    def is_settled(self) -> bool:
        return not self.value.endswith("_IN_PROGRESS")

    @property
    def sentiment(self) -> StatusSentiment:
        if self in _POSITIVE_STACK_STATUSES:
            return StatusSentiment.POSITIVE
        if self in _NEGATIVE_STACK_STATUSES:
            return StatusSentiment.NEGATIVE
        return StatusSentiment.NEUTRAL


_POSITIVE_STACK_STATUSES = frozenset(
    {
        StackStatus.CREATE_COMPLETE,
        StackStatus.DELETE_COMPLETE,
        StackStatus.UPDATE_COMPLETE,
        StackStatus.IMPORT_COMPLETE,
    }
)

_NEGATIVE_STACK_STATUSES = frozenset(
    {
        StackStatus.CREATE_FAILED,
        StackStatus.ROLLBACK_IN_PROGRESS,
        StackStatus.ROLLBACK_FAILED,
        StackStatus.ROLLBACK_COMPLETE,
        StackStatus.DELETE_FAILED,
        StackStatus.UPDATE_FAILED,
        StackStatus.UPDATE_ROLLBACK_IN_PROGRESS,
        StackStatus.UPDATE_ROLLBACK_FAILED,
        StackStatus.UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS,
        StackStatus.UPDATE_ROLLBACK_COMPLETE,
        StackStatus.IMPORT_ROLLBACK_IN_PROGRESS,
        StackStatus.IMPORT_ROLLBACK_FAILED,
        StackStatus.IMPORT_ROLLBACK_COMPLETE,
    }
)


class ResourceStatus(str, Enum):
    CREATE_IN_PROGRESS = "CREATE_IN_PROGRESS"
    CREATE_FAILED = "CREATE_FAILED"
    CREATE_COMPLETE = "CREATE_COMPLETE"
    DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
    DELETE_FAILED = "DELETE_FAILED"
    DELETE_COMPLETE = "DELETE_COMPLETE"
    DELETE_SKIPPED = "DELETE_SKIPPED"
    UPDATE_IN_PROGRESS = "UPDATE_IN_PROGRESS"
    UPDATE_FAILED = "UPDATE_FAILED"
    UPDATE_COMPLETE = "UPDATE_COMPLETE"
    IMPORT_FAILED = "IMPORT_FAILED"
    IMPORT_COMPLETE = "IMPORT_COMPLETE"
    IMPORT_IN_PROGRESS = "IMPORT_IN_PROGRESS"
    IMPORT_ROLLBACK_IN_PROGRESS = "IMPORT_ROLLBACK_IN_PROGRESS"
    IMPORT_ROLLBACK_FAILED = "IMPORT_ROLLBACK_FAILED"
    IMPORT_ROLLBACK_COMPLETE = "IMPORT_ROLLBACK_COMPLETE"

    @property
    def is_settled(self) -> bool:
        return not self.value.endswith("_IN_PROGRESS")

    @property
    def sentiment(self) -> StatusSentiment:
        if self in (
            ResourceStatus.CREATE_COMPLETE,
            ResourceStatus.DELETE_COMPLETE,
            ResourceStatus.UPDATE_COMPLETE,
            ResourceStatus.IMPORT_COMPLETE,
        ):
            return StatusSentiment.POSITIVE
        if self in (
            ResourceStatus.CREATE_FAILED,
            ResourceStatus.DELETE_FAILED,
            ResourceStatus.UPDATE_FAILED,
            ResourceStatus.IMPORT_FAILED,
            ResourceStatus.IMPORT_ROLLBACK_IN_PROGRESS,
            ResourceStatus.IMPORT_ROLLBACK_FAILED,
            ResourceStatus.IMPORT_ROLLBACK_COMPLETE,
        ):
            return StatusSentiment.NEGATIVE
        return StatusSentiment.NEUTRAL


class ChangeSetStatus(str, Enum):
    CREATE_PENDING = "CREATE_PENDING"
    CREATE_IN_PROGRESS = "CREATE_IN_PROGRESS"
    CREATE_COMPLETE = "CREATE_COMPLETE"
    DELETE_PENDING = "DELETE_PENDING"
    DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
    DELETE_COMPLETE = "DELETE_COMPLETE"
    DELETE_FAILED = "DELETE_FAILED"
    FAILED = "FAILED"

    @property
    def is_settled(self) -> bool:
        return self in (
            ChangeSetStatus.CREATE_COMPLETE,
            ChangeSetStatus.DELETE_COMPLETE,
            ChangeSetStatus.DELETE_FAILED,
            ChangeSetStatus.FAILED,
        )


# Stack statuses each action may legitimately pass through.
ACTION_FAMILIES: dict[ActionKind, frozenset[StackStatus]] = {
    ActionKind.CREATE: frozenset(
        {
            StackStatus.CREATE_IN_PROGRESS,
            StackStatus.CREATE_FAILED,
            StackStatus.CREATE_COMPLETE,
            StackStatus.ROLLBACK_IN_PROGRESS,
            StackStatus.ROLLBACK_FAILED,
            StackStatus.ROLLBACK_COMPLETE,
        }
    ),
    ActionKind.UPDATE: frozenset(
        {
            StackStatus.UPDATE_IN_PROGRESS,
            StackStatus.UPDATE_COMPLETE_CLEANUP_IN_PROGRESS,
            StackStatus.UPDATE_COMPLETE,
            StackStatus.UPDATE_FAILED,
            StackStatus.UPDATE_ROLLBACK_IN_PROGRESS,
            StackStatus.UPDATE_ROLLBACK_FAILED,
            StackStatus.UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS,
            StackStatus.UPDATE_ROLLBACK_COMPLETE,
        }
    ),
    ActionKind.DELETE: frozenset(
        {
            StackStatus.DELETE_IN_PROGRESS,
            StackStatus.DELETE_FAILED,
            StackStatus.DELETE_COMPLETE,
        }
    ),
}

SUCCESS_STATUS: dict[ActionKind, StackStatus] = {
    ActionKind.CREATE: StackStatus.CREATE_COMPLETE,
    ActionKind.UPDATE: StackStatus.UPDATE_COMPLETE,
    ActionKind.DELETE: StackStatus.DELETE_COMPLETE,
}


def parse_stack_status(raw: str | None) -> StackStatus | None:
    if raw is None:
        return None
    try:
        return StackStatus(raw)
    except ValueError:
        return None


def parse_resource_status(raw: str | None) -> ResourceStatus | None:
    if raw is None:
        return None
    try:
        return ResourceStatus(raw)
    except ValueError:
        return None


def is_failure_status(raw: str | None) -> bool:
    """Whether a raw status reported for a unit denotes a failure."""
    status = parse_resource_status(raw) or parse_stack_status(raw)
    return status is not None and status.sentiment is StatusSentiment.NEGATIVE


def is_blocked_status(raw: str | None) -> bool:
    """Whether a unit in this status is busy and cannot accept a new operation.

    ``REVIEW_IN_PROGRESS`` is excluded: a unit in review was created by a
    change set that never executed and may be applied again.
    """
    status = parse_stack_status(raw)
    return (
        status is not None
        and not status.is_settled
        and status is not StackStatus.REVIEW_IN_PROGRESS
    )


def classify(
    raw_status: str,
    action: ActionKind,
    *,
    has_resource_failures: bool = False,
) -> OperationPhase:
    """Map a raw unit status onto the semantic phase of an ``action``.

    Priority order:

    1. Settled failure or rollback statuses are ``Failed``.
    2. The nominal success status for ``action`` is ``Succeeded``, or
       ``SucceededWithWarnings`` when any unit failed along the way.
    3. Every other known status is ``InProgress``.
    4. Unknown statuses are ``InProgress`` as well, and logged as anomalous.
    """
    status = parse_stack_status(raw_status)
    if status is None:
        logger.warning(
            "Unrecognized status %r while %s; treating as in progress",
            raw_status,
            action.value,
        )
        return OperationPhase.IN_PROGRESS

    if status.is_settled and status.sentiment is StatusSentiment.NEGATIVE:
        return OperationPhase.FAILED

    if status is SUCCESS_STATUS.get(action):
        if has_resource_failures:
            return OperationPhase.SUCCEEDED_WITH_WARNINGS
        return OperationPhase.SUCCEEDED

    return OperationPhase.IN_PROGRESS


def acknowledges(raw_status: str, action: ActionKind) -> bool:
    """Whether ``raw_status`` proves the remote system has started ``action``.

    Only in-progress members of the action's family count: a settled status
    may be left over from the previous operation on the same unit.
    """
    status = parse_stack_status(raw_status)
    if status is None or status.is_settled:
        return False
    return status in ACTION_FAMILIES.get(action, frozenset())


def in_action_family(raw_status: str, action: ActionKind) -> bool:
    status = parse_stack_status(raw_status)
    return status is not None and status in ACTION_FAMILIES.get(action, frozenset())
