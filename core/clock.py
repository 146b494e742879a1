"""
core/clock.py -- Injectable time source.

Every expiry comparison in the service (token exp, OTP window, upstream OAuth
assertion lifetime) asks a Clock for the current time instead of calling
datetime.now() inline, so tests can freeze and advance time.

Layer rule: core/ is the kernel. No imports from api/, auth/, cache/, or mail/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """A clock that only moves when told to.

    Usage:
        clock = FrozenClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        clock.advance(seconds=301)
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment


def epoch_seconds(moment: datetime) -> int:
    return int(moment.timestamp())
