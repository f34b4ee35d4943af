"""
Narrator — Escalation

Volume is a pure function of (engagement start, interaction count, now).
Nothing is cached: the engine recomputes it every time it needs it, which
is what lets tests drive it with a plain datetime instead of a clock.

Volume never drops within a session. Session age only grows, the density
modifier only switches on, and the late-hour modifier is latched: once the
session has been alive during the deep-night window, it keeps the +1 for
the rest of the session instead of losing it at dawn.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from narrator.systems.awareness.timekeeping import touched_deep_night
from narrator.systems.voice.personas import MAX_VOLUME

if TYPE_CHECKING:
    from datetime import datetime

    from narrator.config import EngineConfig


def base_volume(session_minutes: float, breakpoints: list[float]) -> int:
    """Count how many breakpoints the session has passed."""
    volume = 0
    for threshold in breakpoints:
        if session_minutes >= threshold:
            volume += 1
    return min(volume, MAX_VOLUME)


def calculate_volume(
    first_engaged_at: datetime | None,
    interaction_count: int,
    now: datetime,
    config: EngineConfig,
) -> int:
    """0 before first engagement, otherwise 0..5."""
    if first_engaged_at is None:
        return 0

    minutes = max(0.0, (now - first_engaged_at).total_seconds() / 60.0)
    volume = base_volume(minutes, config.volume_breakpoints_minutes)

    if interaction_count > config.density_threshold:
        volume = min(MAX_VOLUME, volume + 1)

    if touched_deep_night(first_engaged_at, now):
        volume = min(MAX_VOLUME, volume + 1)

    return volume
