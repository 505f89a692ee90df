"""CloudFormation implementation of the remote gateway.

Applies go through change sets: a change set is created and described until
it settles, which tells us whether the definition drifted at all, and only
then executed. Every execution and deletion carries a client request token,
either the caller's or a generated one. That token is the operation id, and it
is how events belonging to this operation are told apart from the unit's
earlier history. Each remote step of a submission is retried on its own.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping
from uuid import uuid4

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cfn_operations.config import Settings, load_settings
from cfn_operations.domain.models import (
    ApplyOptions,
    DeleteOptions,
    OperationEvent,
    OperationId,
)
from cfn_operations.domain.status import ActionKind, ChangeSetStatus, acknowledges
from cfn_operations.engine.retry import call_with_retry
from cfn_operations.errors import (
    ConcurrentModificationError,
    GatewayError,
    NotFoundError,
    OperationError,
    ThrottlingError,
    TransportError,
    ValidationError,
)
from cfn_operations.gateway.base import (
    EventPage,
    NoChanges,
    OperationStatus,
    Submission,
    UnitDescription,
)
from cfn_operations.utils.time import utc_now

logger = logging.getLogger(__name__)

_THROTTLING_CODES = {
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "RequestThrottled",
    "TooManyRequestsException",
}

_VALIDATION_CODES = {
    "ValidationError",
    "AlreadyExistsException",
    "InsufficientCapabilitiesException",
    "InvalidChangeSetStatus",
    "LimitExceededException",
    "TokenAlreadyExistsException",
}

_BLOCKED_PATTERNS = (
    re.compile(
        r"^Stack:[^ ]* is in (?P<status>[_A-Z]+) state and can not be updated",
        re.IGNORECASE,
    ),
    re.compile(
        r"^This stack is currently in a non-terminal \[(?P<status>[_A-Z]+)\] state",
        re.IGNORECASE,
    ),
)

_NO_CHANGES_MARKERS = (
    "The submitted information didn't contain changes.",
    "No updates are to be performed.",
)


def create_cloudformation_client(
    settings: Settings,
    region: str | None = None,
    profile: str | None = None,
):
    session = boto3.Session(
        profile_name=profile or settings.aws.default_profile,
        region_name=region or settings.aws.default_region,
    )
    config = Config(
        read_timeout=settings.aws.sdk_timeout_seconds,
        connect_timeout=settings.aws.sdk_timeout_seconds,
        retries={"max_attempts": settings.aws.sdk_max_attempts, "mode": "standard"},
    )
    return session.client("cloudformation", config=config)


def _blocked_status(message: str) -> str | None:
    for pattern in _BLOCKED_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group("status").upper()
    return None


def map_client_error(exc: ClientError, unit_name: str) -> OperationError:
    error = exc.response.get("Error", {})
    code = error.get("Code", "Unknown")
    message = error.get("Message", str(exc))
    status_code = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)

    if code in _THROTTLING_CODES:
        return ThrottlingError(message, code=code)
    blocked = _blocked_status(message)
    if blocked is not None:
        return ConcurrentModificationError(unit_name, blocked, message)
    if "does not exist" in message:
        return NotFoundError(message, code=code)
    if code in _VALIDATION_CODES:
        return ValidationError(message)
    if status_code >= 500:
        return TransportError(message, code=code)
    logger.warning("CloudFormation error for %s: %s: %s", unit_name, code, message)
    return GatewayError(message, code=code)


def is_no_changes(status_reason: str | None) -> bool:
    reason = status_reason or ""
    return any(marker in reason for marker in _NO_CHANGES_MARKERS)


def _outputs(stack: Mapping[str, Any]) -> dict[str, str]:
    return {
        output["OutputKey"]: output.get("OutputValue", "")
        for output in stack.get("Outputs") or []
        if "OutputKey" in output
    }


def _event_from_raw(raw: Mapping[str, Any]) -> OperationEvent:
    return OperationEvent(
        timestamp=raw["Timestamp"],
        sequence_key=raw["EventId"],
        unit_name=raw.get("LogicalResourceId", ""),
        unit_type=raw.get("ResourceType", ""),
        status=raw.get("ResourceStatus", ""),
        status_reason=raw.get("ResourceStatusReason"),
        physical_id=raw.get("PhysicalResourceId"),
    )


_STACK_EXISTS = re.compile(r"^Stack \[[^\]]*\] already exists")

_EXECUTION_STARTED = ("EXECUTE_IN_PROGRESS", "EXECUTE_COMPLETE")

# Operations whose driver never released them are dropped oldest first.
_MAX_TRACKED_OPERATIONS = 1024


def _changed_since(stack: Mapping[str, Any], started_at: datetime) -> bool:
    stamp = stack.get("DeletionTime") or stack.get("LastUpdatedTime")
    return isinstance(stamp, datetime) and stamp >= started_at


@dataclass
class _TrackedOperation:
    unit_name: str
    stack_id: str
    action: ActionKind
    started_at: datetime
    acknowledged: bool = False


class CloudFormationGateway:
    """Thread-offloaded boto3 CloudFormation client speaking the gateway protocol."""

    def __init__(
        self,
        client: Any = None,
        *,
        region: str | None = None,
        profile: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings
        self._region = region
        self._profile = profile
        self._client = client
        self._lock = threading.Lock()
        self._operations: OrderedDict[OperationId, _TrackedOperation] = OrderedDict()

    def _get_settings(self) -> Settings:
        if self._settings is None:
            self._settings = load_settings()
        return self._settings

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        with self._lock:
            if self._client is not None:
                return self._client
            self._client = create_cloudformation_client(
                self._get_settings(), self._region, self._profile
            )
            logger.info("CloudFormation client initialized (region=%s)", self._region)
            return self._client

    def _call_sync(self, method: str, unit_name: str, kwargs: dict[str, Any]) -> dict[str, Any]:
        client = self._get_client()
        try:
            return getattr(client, method)(**kwargs)
        except ClientError as exc:
            raise map_client_error(exc, unit_name) from exc
        except BotoCoreError as exc:
            raise TransportError(str(exc)) from exc

    async def _invoke(self, method: str, unit_name: str, **kwargs: Any) -> dict[str, Any]:
        return await asyncio.to_thread(self._call_sync, method, unit_name, kwargs)

    async def _invoke_step(self, method: str, unit_name: str, **kwargs: Any) -> dict[str, Any]:
        """One step of a submission, retried on its own when it fails transiently."""
        return await call_with_retry(
            functools.partial(self._invoke, method, unit_name, **kwargs),
            settings=self._get_settings().polling,
            what=f"{method} {unit_name}",
        )

    def _track(self, token: OperationId, tracked: _TrackedOperation) -> None:
        self._operations[token] = tracked
        while len(self._operations) > _MAX_TRACKED_OPERATIONS:
            dropped, _ = self._operations.popitem(last=False)
            logger.warning("Dropped tracking for operation %s; too many in flight", dropped)

    def _tracked(self, operation_id: OperationId) -> _TrackedOperation:
        tracked = self._operations.get(operation_id)
        if tracked is None:
            raise NotFoundError(f"unknown operation {operation_id}")
        return tracked

    def release(self, operation_id: OperationId) -> None:
        self._operations.pop(operation_id, None)

    async def describe_unit(self, unit_name: str) -> UnitDescription | None:
        try:
            response = await self._invoke("describe_stacks", unit_name, StackName=unit_name)
        except NotFoundError:
            return None
        stacks = response.get("Stacks") or []
        if not stacks:
            return None
        stack = stacks[0]
        return UnitDescription(
            unit_id=stack["StackId"],
            unit_name=stack.get("StackName", unit_name),
            status=stack["StackStatus"],
            outputs=_outputs(stack),
            status_reason=stack.get("StackStatusReason"),
        )

    def _change_set_request(
        self,
        unit_name: str,
        definition: str,
        params: Mapping[str, str],
        change_set_type: str,
        options: ApplyOptions,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "StackName": unit_name,
            "ChangeSetName": f"apply-stack-{int(time.time() * 1000)}",
            "ChangeSetType": change_set_type,
            "ClientToken": uuid4().hex,
            "TemplateBody": definition,
            "Parameters": [
                {"ParameterKey": key, "ParameterValue": value} for key, value in params.items()
            ],
            "Capabilities": [capability.value for capability in options.capabilities],
            "Tags": [{"Key": key, "Value": value} for key, value in options.tags.items()],
            "NotificationARNs": list(options.notification_arns),
        }
        if options.role_arn:
            request["RoleARN"] = options.role_arn
        return request

    async def begin_create_or_update(
        self,
        unit_name: str,
        definition: str,
        params: Mapping[str, str],
        *,
        action: ActionKind,
        options: ApplyOptions,
    ) -> Submission | NoChanges:
        change_set_type = "CREATE" if action is ActionKind.CREATE else "UPDATE"
        try:
            created = await self._invoke_step(
                "create_change_set",
                unit_name,
                **self._change_set_request(unit_name, definition, params, change_set_type, options),
            )
        except ValidationError as exc:
            if change_set_type != "CREATE" or not _STACK_EXISTS.search(str(exc)):
                raise
            logger.info("Unit %s already exists; applying as an update", unit_name)
            change_set_type = "UPDATE"
            created = await self._invoke_step(
                "create_change_set",
                unit_name,
                **self._change_set_request(unit_name, definition, params, change_set_type, options),
            )

        change_set_id = created["Id"]
        change_set = await self._wait_for_change_set(unit_name, change_set_id)
        stack_id = change_set.get("StackId") or created.get("StackId")
        status = change_set["Status"]
        reason = change_set.get("StatusReason")
        if status == ChangeSetStatus.FAILED.value:
            if is_no_changes(reason):
                return NoChanges(unit_id=stack_id, reason=reason)
            raise ValidationError(f"change set {change_set_id} failed: {reason}")

        token = options.client_request_token or f"cfn-operations-{uuid4().hex}"
        submitted = ActionKind(change_set_type.lower())
        started_at = utc_now()
        await self._execute_change_set(unit_name, change_set_id, token, options)
        self._track(token, _TrackedOperation(unit_name, stack_id, submitted, started_at))
        return Submission(operation_id=token, action=submitted, unit_id=stack_id)

    async def _execute_change_set(
        self, unit_name: str, change_set_id: str, token: str, options: ApplyOptions
    ) -> None:
        # Every attempt carries the same token, so a retry after a lost
        # response cannot start a second execution.
        attempts = 0

        async def execute() -> None:
            nonlocal attempts
            attempts += 1
            try:
                await self._invoke(
                    "execute_change_set",
                    unit_name,
                    ChangeSetName=change_set_id,
                    ClientRequestToken=token,
                    DisableRollback=options.disable_rollback,
                )
            except ValidationError as exc:
                if attempts == 1 or not any(marker in str(exc) for marker in _EXECUTION_STARTED):
                    raise
                logger.info("Change set %s was already executing after a retry", change_set_id)

        await call_with_retry(
            execute,
            settings=self._get_settings().polling,
            what=f"execute_change_set {unit_name}",
        )

    async def _wait_for_change_set(self, unit_name: str, change_set_id: str) -> dict[str, Any]:
        interval = self._get_settings().polling.change_set_poll_seconds
        while True:
            await asyncio.sleep(interval)
            change_set = await self._invoke_step(
                "describe_change_set", unit_name, ChangeSetName=change_set_id
            )
            status = change_set.get("Status")
            if status in (
                ChangeSetStatus.CREATE_PENDING.value,
                ChangeSetStatus.CREATE_IN_PROGRESS.value,
            ):
                continue
            if status in (ChangeSetStatus.CREATE_COMPLETE.value, ChangeSetStatus.FAILED.value):
                return change_set
            raise GatewayError(f"change set {change_set_id} has unexpected status {status}")

    async def begin_delete(self, unit_name: str, *, options: DeleteOptions) -> Submission:
        unit = await call_with_retry(
            lambda: self.describe_unit(unit_name),
            settings=self._get_settings().polling,
            what=f"describe_stacks {unit_name}",
        )
        if unit is None:
            raise NotFoundError(f"Stack with id {unit_name} does not exist")

        token = options.client_request_token or f"cfn-operations-{uuid4().hex}"
        request: dict[str, Any] = {"StackName": unit.unit_id, "ClientRequestToken": token}
        if options.retain_resources:
            request["RetainResources"] = list(options.retain_resources)
        if options.role_arn:
            request["RoleARN"] = options.role_arn
        started_at = utc_now()
        await self._invoke_step("delete_stack", unit_name, **request)
        self._track(
            token, _TrackedOperation(unit_name, unit.unit_id, ActionKind.DELETE, started_at)
        )
        return Submission(operation_id=token, action=ActionKind.DELETE, unit_id=unit.unit_id)

    async def describe(self, operation_id: OperationId) -> OperationStatus:
        """Describe the stack on behalf of one operation.

        Right after submission the stack may still report the settled status
        of the previous operation. The status is acknowledged once it is an
        in-progress status of this action, the stack changed after the
        submission, or an event carrying this operation's token exists.
        """
        tracked = self._tracked(operation_id)
        response = await self._invoke(
            "describe_stacks", tracked.unit_name, StackName=tracked.stack_id
        )
        stacks = response.get("Stacks") or []
        if not stacks:
            raise NotFoundError(f"Stack with id {tracked.stack_id} does not exist")
        stack = stacks[0]
        status = stack["StackStatus"]
        if not tracked.acknowledged:
            tracked.acknowledged = (
                acknowledges(status, tracked.action)
                or _changed_since(stack, tracked.started_at)
                or await self._has_own_events(operation_id, tracked)
            )
            if not tracked.acknowledged:
                logger.debug(
                    "%s still reports %s; waiting for operation %s to start",
                    tracked.unit_name,
                    status,
                    operation_id,
                )
        return OperationStatus(
            status=status,
            outputs=_outputs(stack),
            reason=stack.get("StackStatusReason"),
            acknowledged=tracked.acknowledged,
        )

    async def _has_own_events(self, operation_id: OperationId, tracked: _TrackedOperation) -> bool:
        response = await self._invoke(
            "describe_stack_events", tracked.unit_name, StackName=tracked.stack_id
        )
        return any(
            raw.get("ClientRequestToken") == operation_id
            for raw in response.get("StackEvents") or []
        )

    async def list_events(
        self, operation_id: OperationId, pagination_token: str | None = None
    ) -> EventPage:
        """Return this operation's events from one page of the unit's history.

        History is newest first, so the first event carrying a different
        request token marks the end of this operation's events and paging
        stops there.
        """
        tracked = self._tracked(operation_id)
        request: dict[str, Any] = {"StackName": tracked.stack_id}
        if pagination_token:
            request["NextToken"] = pagination_token
        response = await self._invoke("describe_stack_events", tracked.unit_name, **request)

        events: list[OperationEvent] = []
        exhausted = False
        for raw in response.get("StackEvents") or []:
            if raw.get("ClientRequestToken") != operation_id:
                exhausted = True
                continue
            events.append(_event_from_raw(raw))
        if not events and pagination_token is None:
            logger.debug(
                "No events yet for %s (submitted %s)",
                tracked.unit_name,
                tracked.started_at.isoformat(),
            )
        next_token = None if exhausted else response.get("NextToken")
        return EventPage(events=events, next_token=next_token)
