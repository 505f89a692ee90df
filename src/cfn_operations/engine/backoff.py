"""Poll cadence and retry delays."""

from __future__ import annotations

import random

from cfn_operations.config import PollingSettings


class PollBackoff:
    """Capped exponential poll interval.

    The interval doubles after every poll that observed nothing new and drops
    back to the floor as soon as the operation makes progress.
    """

    def __init__(self, settings: PollingSettings) -> None:
        self._settings = settings
        self._current = settings.min_interval_seconds

    @property
    def current(self) -> float:
        return self._current

    def next_delay(self, progressed: bool) -> float:
        floor = self._settings.min_interval_seconds
        ceiling = self._settings.max_interval_seconds
        if progressed:
            self._current = floor
        else:
            self._current = min(ceiling, max(self._current * 2, floor))
        return self._current


def retry_delay(settings: PollingSettings, attempt: int, *, throttled: bool) -> float:
    """Delay before retry number ``attempt`` (starting at 1).

    Throttling waits longer and is jittered so independent operations sharing
    an account spread their retries. Jitter is added after the cap, so a
    capped throttled delay still lands above the cap by up to ``jitter_ratio``.
    """
    base = settings.min_interval_seconds * (2 ** (attempt - 1))
    if not throttled:
        return min(settings.max_interval_seconds, base)
    delay = min(settings.max_interval_seconds, base * settings.throttle_multiplier)
    return delay + random.uniform(0, delay * settings.jitter_ratio)
