from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from cfn_operations.config import PollingSettings
from cfn_operations.engine.backoff import PollBackoff, retry_delay
from cfn_operations.engine.retry import call_with_retry
from cfn_operations.errors import (
    FatalOperationError,
    NotFoundError,
    ThrottlingError,
    TransportError,
    ValidationError,
)


def test_poll_backoff_doubles_caps_and_resets() -> None:
    settings = PollingSettings(min_interval_seconds=1.0, max_interval_seconds=5.0)
    backoff = PollBackoff(settings)

    assert backoff.current == 1.0
    assert [backoff.next_delay(False) for _ in range(4)] == [2.0, 4.0, 5.0, 5.0]
    assert backoff.next_delay(True) == 1.0
    assert backoff.next_delay(False) == 2.0


def test_poll_backoff_with_zero_floor_stays_bounded() -> None:
    settings = PollingSettings(min_interval_seconds=0.0, max_interval_seconds=0.0)
    backoff = PollBackoff(settings)
    assert backoff.next_delay(False) == 0.0


def test_retry_delay_throttled_is_longer(monkeypatch: pytest.MonkeyPatch) -> None:
    settings = PollingSettings(
        min_interval_seconds=1.0,
        max_interval_seconds=100.0,
        throttle_multiplier=3.0,
        jitter_ratio=0.5,
    )
    monkeypatch.setattr("cfn_operations.engine.backoff.random.uniform", lambda a, b: b)

    assert retry_delay(settings, 1, throttled=False) == 1.0
    assert retry_delay(settings, 3, throttled=False) == 4.0
    assert retry_delay(settings, 1, throttled=True) == pytest.approx(4.5)


def test_retry_delay_is_capped() -> None:
    settings = PollingSettings(min_interval_seconds=1.0, max_interval_seconds=3.0)
    assert retry_delay(settings, 10, throttled=False) == 3.0


def test_capped_throttled_delay_is_still_longer_and_jittered(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    settings = PollingSettings(
        min_interval_seconds=1.0, max_interval_seconds=3.0, jitter_ratio=0.25
    )
    monkeypatch.setattr("cfn_operations.engine.backoff.random.uniform", lambda a, b: b)
    assert retry_delay(settings, 10, throttled=True) == pytest.approx(3.75)

    monkeypatch.setattr("cfn_operations.engine.backoff.random.uniform", lambda a, b: a)
    assert retry_delay(settings, 10, throttled=True) == 3.0


@pytest.mark.asyncio
async def test_call_with_retry_recovers_from_transient_errors(polling: PollingSettings) -> None:
    call = AsyncMock(side_effect=[TransportError("reset"), ThrottlingError("slow down"), "ok"])

    result = await call_with_retry(call, settings=polling, what="describe")

    assert result == "ok"
    assert call.await_count == 3


@pytest.mark.asyncio
async def test_call_with_retry_exhaustion_is_fatal(polling: PollingSettings) -> None:
    call = AsyncMock(side_effect=TransportError("connection refused"))

    with pytest.raises(FatalOperationError) as excinfo:
        await call_with_retry(call, settings=polling, what="describe")

    assert excinfo.value.attempts == polling.max_transient_retries + 1
    assert isinstance(excinfo.value.__cause__, TransportError)
    assert call.await_count == polling.max_transient_retries + 1


@pytest.mark.asyncio
async def test_call_with_retry_respects_time_budget() -> None:
    settings = PollingSettings(
        min_interval_seconds=0.0,
        max_interval_seconds=0.0,
        max_transient_retries=100,
        retry_budget_seconds=0.0,
    )
    call = AsyncMock(side_effect=ThrottlingError("slow down"))

    with pytest.raises(FatalOperationError):
        await call_with_retry(call, settings=settings, what="list events")

    assert call.await_count == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [ValidationError("bad template"), NotFoundError("Stack with id x does not exist")],
)
async def test_call_with_retry_does_not_retry_permanent_errors(
    polling: PollingSettings, error: Exception
) -> None:
    call = AsyncMock(side_effect=error)

    with pytest.raises(type(error)):
        await call_with_retry(call, settings=polling, what="describe")

    assert call.await_count == 1
