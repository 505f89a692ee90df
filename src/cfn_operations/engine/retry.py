"""Retry wrapper for transient remote failures."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

from cfn_operations.config import PollingSettings
from cfn_operations.engine.backoff import retry_delay
from cfn_operations.errors import FatalOperationError, GatewayError, ThrottlingError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    call: Callable[[], Awaitable[T]],
    *,
    settings: PollingSettings,
    what: str,
) -> T:
    """Await ``call()``, retrying transport and throttling errors.

    Non-retryable errors propagate unchanged. Once either the attempt count
    or the time budget is spent the last transient error is wrapped in
    :class:`FatalOperationError`.
    """
    attempt = 0
    started = time.monotonic()
    while True:
        try:
            return await call()
        except GatewayError as exc:
            if not exc.retryable:
                raise
            attempt += 1
            elapsed = time.monotonic() - started
            if attempt > settings.max_transient_retries or elapsed >= settings.retry_budget_seconds:
                logger.error("Giving up on %s after %d attempts: %s", what, attempt, exc)
                raise FatalOperationError(
                    f"{what} failed after {attempt} attempts: {exc}", attempts=attempt
                ) from exc
            delay = retry_delay(settings, attempt, throttled=isinstance(exc, ThrottlingError))
            logger.warning(
                "Transient error during %s (attempt %d/%d), retrying in %.2fs: %s",
                what,
                attempt,
                settings.max_transient_retries,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
