"""Public entry points: ``apply`` and ``delete``.

Both return an :class:`OperationHandle` immediately. Nothing is sent to the
remote system until the handle is first consumed, either by awaiting it (or
its :meth:`~OperationHandle.result`) or by iterating
:meth:`~OperationHandle.events`. However many consumers attach, exactly one
poll loop runs per operation.

Closing a handle stops *local* observation only. The remote operation is
never cancelled or rolled back by this package and keeps running to
completion on its own.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any, AsyncIterator, Callable, Generator, Generic, Mapping, TypeVar

from cfn_operations.config import PollingSettings, load_settings
from cfn_operations.domain.models import (
    ApplyOptions,
    ApplyResult,
    DeleteOptions,
    DeleteResult,
    OperationEvent,
    OperationId,
)
from cfn_operations.domain.status import ActionKind, OperationPhase
from cfn_operations.engine.driver import DriverState, OperationDriver, OperationRecord
from cfn_operations.engine.plan import (
    normalize_definition,
    plan_apply,
    plan_delete,
    validate_parameters,
    validate_unit_name,
)
from cfn_operations.engine.results import build_apply_result, build_delete_result
from cfn_operations.gateway.base import RemoteGateway

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")


def _stop_polling(task: asyncio.Task[OperationRecord]) -> None:
    if not task.done() and not task.get_loop().is_closed():
        task.cancel()


class OperationHandle(Generic[ResultT]):
    """Dual view over one running operation: a live event stream and a result."""

    def __init__(
        self,
        driver: OperationDriver,
        build_result: Callable[[OperationRecord], ResultT],
    ) -> None:
        self._driver = driver
        self._record = driver.record
        self._build_result = build_result
        self._task: asyncio.Task[OperationRecord] | None = None
        self._result: ResultT | None = None

    @property
    def unit_name(self) -> str:
        return self._record.unit_name

    @property
    def operation_id(self) -> OperationId | None:
        return self._record.operation_id

    @property
    def action(self) -> ActionKind:
        return self._record.action

    @property
    def phase(self) -> OperationPhase:
        return self._record.phase

    @property
    def state(self) -> DriverState:
        return self._driver.state

    def _ensure_started(self) -> asyncio.Task[OperationRecord]:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(
                self._driver.run(), name=f"cfn-operation:{self.unit_name}"
            )
            # Polling stops once no handle is left to observe it.
            weakref.finalize(self, _stop_polling, self._task)
        return self._task

    async def events(self) -> AsyncIterator[OperationEvent]:
        """Yield every event of the operation in order, then stop.

        Each call starts a new, independent pass from the first event, so a
        late subscriber still sees the full history. The stream also ends if
        the operation errors out or is closed; await the handle to find out
        why.
        """
        self._ensure_started()
        record = self._record
        cursor = record.events.subscribe()
        while True:
            version = record.version
            for event in cursor.drain():
                yield event
            if record.closed and cursor.pending == 0:
                return
            await record.wait_for_change(version)

    async def result(self) -> ResultT:
        """Wait for the operation to settle and return its typed result.

        Remote failures are returned, not raised. Errors raised here are
        local validation problems, concurrent modification, or transient
        remote errors that outlasted the retry budget.
        """
        if self._result is None:
            record = await asyncio.shield(self._ensure_started())
            if self._result is None:
                self._result = self._build_result(record)
        return self._result

    def __await__(self) -> Generator[Any, None, ResultT]:
        return self.result().__await__()

    def close(self) -> None:
        """Stop polling. The remote operation is left running."""
        if self._task is not None and not self._task.done():
            logger.info(
                "Stopped observing %s; the remote operation %s continues",
                self.unit_name,
                self.operation_id or "(not yet submitted)",
            )
            self._task.cancel()

    async def __aenter__(self) -> "OperationHandle[ResultT]":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


ApplyHandle = OperationHandle[ApplyResult]
DeleteHandle = OperationHandle[DeleteResult]


def _polling_settings(settings: PollingSettings | None) -> PollingSettings:
    return settings if settings is not None else load_settings().polling


def apply(
    gateway: RemoteGateway,
    unit_name: str,
    definition: str | Mapping[str, Any],
    params: Mapping[str, Any] | None = None,
    *,
    options: ApplyOptions | None = None,
    settings: PollingSettings | None = None,
) -> ApplyHandle:
    """Create ``unit_name`` from ``definition``, or update it to match.

    Input is validated before anything is sent; invalid input raises
    :class:`~cfn_operations.errors.ValidationError` right here. Applying a
    definition that is already deployed settles as a successful no-op
    without executing anything.
    """
    validate_unit_name(unit_name)
    body = normalize_definition(definition)
    parameters = validate_parameters(params)
    apply_options = options or ApplyOptions()
    polling = _polling_settings(settings)

    record = OperationRecord(unit_name)
    driver = OperationDriver(
        record,
        gateway,
        lambda: plan_apply(gateway, unit_name, body, parameters, apply_options, polling),
        polling,
    )
    return OperationHandle(driver, build_apply_result)


def delete(
    gateway: RemoteGateway,
    unit_name: str,
    *,
    options: DeleteOptions | None = None,
    settings: PollingSettings | None = None,
) -> DeleteHandle:
    """Tear down ``unit_name``. Deleting an absent unit succeeds immediately."""
    validate_unit_name(unit_name)
    delete_options = options or DeleteOptions()
    polling = _polling_settings(settings)

    record = OperationRecord(unit_name)
    driver = OperationDriver(
        record,
        gateway,
        lambda: plan_delete(gateway, unit_name, delete_options, polling),
        polling,
    )
    return OperationHandle(driver, build_delete_result)
