from __future__ import annotations

import pytest

from cfn_operations.domain.status import (
    ACTION_FAMILIES,
    ActionKind,
    ChangeSetStatus,
    OperationPhase,
    ResourceStatus,
    StackStatus,
    StatusSentiment,
    acknowledges,
    classify,
    is_blocked_status,
    is_failure_status,
)


@pytest.mark.parametrize("status", list(StackStatus))
@pytest.mark.parametrize("action", [ActionKind.CREATE, ActionKind.UPDATE, ActionKind.DELETE])
def test_classify_is_total_over_known_statuses(status: StackStatus, action: ActionKind) -> None:
    phase = classify(status.value, action)
    assert phase in set(OperationPhase)
    assert phase is not OperationPhase.PENDING


def test_classify_unknown_status_is_in_progress(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("WARNING"):
        phase = classify("SOMETHING_NEW_IN_PROGRESS", ActionKind.CREATE)
    assert phase is OperationPhase.IN_PROGRESS
    assert "Unrecognized status" in caplog.text


@pytest.mark.parametrize(
    ("status", "action", "expected"),
    [
        ("CREATE_COMPLETE", ActionKind.CREATE, OperationPhase.SUCCEEDED),
        ("UPDATE_COMPLETE", ActionKind.UPDATE, OperationPhase.SUCCEEDED),
        ("DELETE_COMPLETE", ActionKind.DELETE, OperationPhase.SUCCEEDED),
        ("ROLLBACK_COMPLETE", ActionKind.CREATE, OperationPhase.FAILED),
        ("ROLLBACK_FAILED", ActionKind.CREATE, OperationPhase.FAILED),
        ("CREATE_FAILED", ActionKind.CREATE, OperationPhase.FAILED),
        ("UPDATE_ROLLBACK_COMPLETE", ActionKind.UPDATE, OperationPhase.FAILED),
        ("DELETE_FAILED", ActionKind.DELETE, OperationPhase.FAILED),
        ("CREATE_IN_PROGRESS", ActionKind.CREATE, OperationPhase.IN_PROGRESS),
        ("ROLLBACK_IN_PROGRESS", ActionKind.CREATE, OperationPhase.IN_PROGRESS),
        ("UPDATE_COMPLETE_CLEANUP_IN_PROGRESS", ActionKind.UPDATE, OperationPhase.IN_PROGRESS),
        ("UPDATE_ROLLBACK_IN_PROGRESS", ActionKind.UPDATE, OperationPhase.IN_PROGRESS),
        ("DELETE_IN_PROGRESS", ActionKind.DELETE, OperationPhase.IN_PROGRESS),
    ],
)
def test_classify_table(status: str, action: ActionKind, expected: OperationPhase) -> None:
    assert classify(status, action) is expected


def test_classify_success_with_resource_failures_is_warning() -> None:
    phase = classify("UPDATE_COMPLETE", ActionKind.UPDATE, has_resource_failures=True)
    assert phase is OperationPhase.SUCCEEDED_WITH_WARNINGS


def test_failure_wins_over_resource_failures() -> None:
    phase = classify("ROLLBACK_COMPLETE", ActionKind.CREATE, has_resource_failures=True)
    assert phase is OperationPhase.FAILED


def test_success_status_of_another_action_is_not_success() -> None:
    # A leftover UPDATE_COMPLETE does not mean a delete finished.
    assert classify("UPDATE_COMPLETE", ActionKind.DELETE) is OperationPhase.IN_PROGRESS


def test_phase_properties() -> None:
    assert not OperationPhase.PENDING.is_terminal
    assert not OperationPhase.IN_PROGRESS.is_terminal
    assert OperationPhase.FAILED.is_terminal
    assert OperationPhase.SUCCEEDED_WITH_WARNINGS.is_success
    assert not OperationPhase.FAILED.is_success
    assert OperationPhase.PENDING.rank < OperationPhase.IN_PROGRESS.rank < OperationPhase.FAILED.rank


def test_stack_status_settled_and_sentiment() -> None:
    assert StackStatus.CREATE_COMPLETE.is_settled
    assert not StackStatus.UPDATE_ROLLBACK_IN_PROGRESS.is_settled
    assert StackStatus.CREATE_COMPLETE.sentiment is StatusSentiment.POSITIVE
    assert StackStatus.UPDATE_ROLLBACK_COMPLETE.sentiment is StatusSentiment.NEGATIVE
    assert StackStatus.REVIEW_IN_PROGRESS.sentiment is StatusSentiment.NEUTRAL


def test_resource_and_change_set_statuses() -> None:
    assert ResourceStatus.DELETE_SKIPPED.is_settled
    assert ResourceStatus.DELETE_SKIPPED.sentiment is StatusSentiment.NEUTRAL
    assert ResourceStatus.IMPORT_FAILED.sentiment is StatusSentiment.NEGATIVE
    assert ChangeSetStatus.FAILED.is_settled
    assert not ChangeSetStatus.CREATE_PENDING.is_settled


def test_is_failure_status() -> None:
    assert is_failure_status("CREATE_FAILED")
    assert is_failure_status("UPDATE_ROLLBACK_COMPLETE")
    assert not is_failure_status("CREATE_COMPLETE")
    assert not is_failure_status("DELETE_SKIPPED")
    assert not is_failure_status("NOT_A_STATUS")
    assert not is_failure_status(None)


def test_is_blocked_status() -> None:
    assert is_blocked_status("UPDATE_IN_PROGRESS")
    assert is_blocked_status("ROLLBACK_IN_PROGRESS")
    assert not is_blocked_status("REVIEW_IN_PROGRESS")
    assert not is_blocked_status("UPDATE_ROLLBACK_COMPLETE")
    assert not is_blocked_status("UNKNOWN")


def test_acknowledges_only_in_progress_family_members() -> None:
    assert acknowledges("UPDATE_IN_PROGRESS", ActionKind.UPDATE)
    assert acknowledges("ROLLBACK_IN_PROGRESS", ActionKind.CREATE)
    assert not acknowledges("UPDATE_COMPLETE", ActionKind.UPDATE)
    assert not acknowledges("UPDATE_IN_PROGRESS", ActionKind.DELETE)
    assert not acknowledges("NOT_A_STATUS", ActionKind.CREATE)


def test_action_families_are_disjoint() -> None:
    create = ACTION_FAMILIES[ActionKind.CREATE]
    update = ACTION_FAMILIES[ActionKind.UPDATE]
    delete = ACTION_FAMILIES[ActionKind.DELETE]
    assert not create & update
    assert not create & delete
    assert not update & delete
