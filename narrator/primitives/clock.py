"""
Narrator — Clock Source

Every component that reads the time takes a ``Clock``. Nothing in the
engine calls ``datetime.now()`` directly, so escalation, cooldowns and
absence detection can be driven deterministically in tests and replays.

Clocks return timezone-aware datetimes in the *local* zone: time-of-day
periods (late night, deep night) are a property of the user's wall clock,
not of UTC.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Supplies the current wall-clock time."""

    def now(self) -> datetime: ...


class SystemClock:
    """Real local time."""

    def now(self) -> datetime:
        return datetime.now().astimezone()


class ManualClock:
    """
    A clock that only moves when told to.

    Naive datetimes passed in are interpreted in the local zone so that
    ``ManualClock(datetime(2024, 1, 1, 3, 0))`` really is 3am for the
    time-of-day rules.
    """

    def __init__(self, start: datetime | None = None) -> None:
        if start is None:
            start = datetime.now()
        self._now = start if start.tzinfo is not None else start.astimezone()

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when if when.tzinfo is not None else when.astimezone()

    def advance(self, seconds: float = 0.0, minutes: float = 0.0, hours: float = 0.0) -> datetime:
        self._now = self._now + timedelta(seconds=seconds, minutes=minutes, hours=hours)
        return self._now

