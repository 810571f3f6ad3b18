"""Time sources for SLA accounting and history timestamps."""
from __future__ import annotations

import time
from datetime import datetime, timezone


class Clock:
    """Returns the current time in seconds since the epoch."""

    def now(self) -> float:
        raise NotImplementedError

    def now_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.now(), tz=timezone.utc)


class SystemClock(Clock):
    def now(self) -> float:
        return time.time()


class ManualClock(Clock):
    """Clock that only moves when told to; used for simulations and tests."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float = 0.0, ms: float = 0.0) -> float:
        self._now += seconds + ms / 1000.0
        return self._now
