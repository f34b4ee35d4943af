"""
Narrator — Fidget Pattern Detection

Looks at the rolling roll history after each new roll and names at most
one pattern. Rules are checked in a fixed order and the first match wins:

  frantic            many rolls packed into a few seconds
  rapid              a streak of rolls, each close on the heels of the last
  unlucky_streak     the last few totals were all low
  cursed             repeated worst-case outcomes in the window
  blessed            repeated best-case outcomes in the window
  late_night_fidget  a handful of rolls in one session after 23:00

Recovery (calming_down) and interventions are session-level judgements;
the tracker makes them, using ``intervention_level`` below for the latter.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from narrator.systems.awareness.types import (
    FidgetPattern,
    InteractionRecord,
    PatternDetection,
)

if TYPE_CHECKING:
    from datetime import datetime

    from narrator.config import AwarenessConfig

LATE_NIGHT_FIDGET_START_HOUR = 23
LATE_NIGHT_FIDGET_END_HOUR = 5


def late_night_intensity(now: datetime) -> int | None:
    """Worse the later it gets; None outside 23:00 - 05:00."""
    hour = now.hour
    if 2 <= hour < LATE_NIGHT_FIDGET_END_HOUR:
        return 10
    if 0 <= hour < 2:
        return 8
    if hour >= LATE_NIGHT_FIDGET_START_HOUR:
        return 6
    return None


def intervention_level(rolls: int, peak_intensity: int, config: AwarenessConfig) -> int:
    """
    0-5. Each roll threshold passed adds a level; a high enough peak
    intensity lifts the session straight to level 3, 4 or 5.
    """
    level = sum(1 for threshold in config.intervention_roll_thresholds if rolls >= threshold)
    for lifted, threshold in zip((3, 4, 5), config.intervention_intensity_thresholds):
        if peak_intensity >= threshold:
            level = max(level, lifted)
    return min(level, 5)


class PatternDetector:
    """Stateless rule set; the streak counter lives on AwarenessState."""

    def __init__(self, config: AwarenessConfig) -> None:
        self._config = config

    def detect(
        self,
        history: list[InteractionRecord],
        streak: int,
        now: datetime,
        session_rolls: int = 0,
    ) -> PatternDetection | None:
        cfg = self._config

        recent = [
            r for r in history
            if (now - r.timestamp).total_seconds() < cfg.frantic_window_seconds
        ]
        if len(recent) >= cfg.frantic_min_rolls:
            return PatternDetection(
                name=FidgetPattern.FRANTIC,
                intensity=8,
                count=len(recent),
            )

        if streak >= cfg.rapid_min_streak:
            return PatternDetection(
                name=FidgetPattern.RAPID,
                intensity=min(streak, 10),
                streak=streak,
            )

        if len(history) >= cfg.unlucky_run:
            tail = history[-cfg.unlucky_run:]
            low = [r for r in tail if r.outcome.total <= cfg.unlucky_total_max]
            if len(low) == cfg.unlucky_run:
                return PatternDetection(
                    name=FidgetPattern.UNLUCKY_STREAK,
                    intensity=len(low) * 2,
                    count=len(low),
                )

        worst = sum(1 for r in history if r.outcome.is_worst_case)
        if worst >= cfg.cursed_min_count:
            return PatternDetection(name=FidgetPattern.CURSED, intensity=10, count=worst)

        best = sum(1 for r in history if r.outcome.is_best_case)
        if best >= cfg.blessed_min_count:
            return PatternDetection(name=FidgetPattern.BLESSED, intensity=7, count=best)

        if session_rolls >= cfg.late_night_min_rolls:
            intensity = late_night_intensity(now)
            if intensity is not None:
                return PatternDetection(
                    name=FidgetPattern.LATE_NIGHT_FIDGET,
                    intensity=intensity,
                    count=session_rolls,
                )

        return None
