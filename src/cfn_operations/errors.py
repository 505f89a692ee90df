"""Error hierarchy for apply and delete operations.

Local input problems and remote validation rejections fail fast. Transport
and throttling errors are retried internally and only surface, wrapped in
:class:`FatalOperationError`, once the retry budget is exhausted. A remote
operation that ends in a failed phase is *not* an exception: it is delivered
as a failure value, and callers opt in to raising via ``raise_for_status``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cfn_operations.domain.models import ApplyFailure, DeleteFailure, ResourceOutcome


class OperationError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(OperationError):
    """Malformed input, detected locally or rejected by the remote system."""


class GatewayError(OperationError):
    """A remote call failed."""

    retryable = False

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class NotFoundError(GatewayError):
    """The named unit or operation does not exist remotely."""


class TransportError(GatewayError):
    """Network or IO failure while talking to the remote system."""

    retryable = True


class ThrottlingError(GatewayError):
    """The remote system asked us to slow down."""

    retryable = True


class ConcurrentModificationError(OperationError):
    """The unit is busy with another operation and cannot be modified now.

    The whole apply or delete may be retried by the caller once the blocking
    operation settles.
    """

    def __init__(self, unit_name: str, status: str, message: str | None = None) -> None:
        super().__init__(
            message
            or f"unit {unit_name} is in non-terminal status {status} and cannot be modified"
        )
        self.unit_name = unit_name
        self.status = status


class FatalOperationError(OperationError):
    """Transient remote errors persisted beyond the retry budget."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class RemoteOperationFailed(OperationError):
    """Raised on request when the tracked operation settled in a failed phase."""

    def __init__(self, failure: "ApplyFailure | DeleteFailure") -> None:
        super().__init__(str(failure))
        self.failure = failure


class PartialSuccessError(OperationError):
    """Raised on request when a successful operation carried unit failures."""

    def __init__(self, message: str, warnings: "list[ResourceOutcome]") -> None:
        super().__init__(message)
        self.warnings = warnings
