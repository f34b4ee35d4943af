"""
Narrator — Time-of-Day Rules

Pure helpers over a wall-clock datetime. The periods use the local hour:

  morning     06:00 - 12:00
  afternoon   12:00 - 17:00
  evening     17:00 - 21:00
  late_night  21:00 - 02:00
  deep_night  02:00 - 06:00   (the witching hours)

``is_late_night`` is a separate, wider window (22:00 - 06:00) used for
prompt context; it is not the same thing as the late_night period.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from narrator.systems.awareness.types import TimePeriod

DEEP_NIGHT_START_HOUR = 2
DEEP_NIGHT_END_HOUR = 6


def time_period(when: datetime) -> TimePeriod:
    hour = when.hour
    if 6 <= hour < 12:
        return TimePeriod.MORNING
    if 12 <= hour < 17:
        return TimePeriod.AFTERNOON
    if 17 <= hour < 21:
        return TimePeriod.EVENING
    if hour >= 21 or hour < 2:
        return TimePeriod.LATE_NIGHT
    return TimePeriod.DEEP_NIGHT


def is_deep_night(when: datetime) -> bool:
    return DEEP_NIGHT_START_HOUR <= when.hour < DEEP_NIGHT_END_HOUR


def is_late_night(when: datetime) -> bool:
    return when.hour >= 22 or when.hour < 6


def touched_deep_night(start: datetime, end: datetime) -> bool:
    """
    Whether any instant in ``[start, end]`` fell inside the deep-night window.

    Used by escalation so that the late-hour boost, once earned, is never
    taken back when the sun comes up.
    """
    if end < start:
        return False
    if end - start >= timedelta(days=1):
        return True
    day = start.replace(hour=0, minute=0, second=0, microsecond=0)
    while day <= end:
        window_start = day.replace(hour=DEEP_NIGHT_START_HOUR)
        window_end = day.replace(hour=DEEP_NIGHT_END_HOUR)
        if start < window_end and end >= window_start:
            return True
        day += timedelta(days=1)
    return False


def format_clock(when: datetime) -> str:
    """``3:07 AM`` style, no leading zero on the hour."""
    hour = when.hour % 12 or 12
    suffix = "AM" if when.hour < 12 else "PM"
    return f"{hour}:{when.minute:02d} {suffix}"


def format_duration(seconds: float) -> str:
    minutes = int(seconds // 60)
    hours = minutes // 60
    if hours > 0:
        remaining = minutes % 60
        return f"{hours}h {remaining}m" if remaining > 0 else f"{hours} hours"
    return f"{minutes} minutes"
