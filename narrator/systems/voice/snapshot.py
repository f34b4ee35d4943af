"""
Narrator — Context Snapshot Builder
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from narrator.systems.awareness.timekeeping import (
    format_clock,
    is_deep_night,
    is_late_night,
    time_period,
)
from narrator.systems.voice.escalation import calculate_volume
from narrator.systems.voice.personas import volume_level
from narrator.systems.voice.types import ContextSnapshot, PersonaId, Trigger

if TYPE_CHECKING:
    from datetime import datetime

    from narrator.config import EngineConfig
    from narrator.systems.awareness.types import AwarenessState
    from narrator.systems.voice.types import EngineState


def build_snapshot(
    trigger: Trigger,
    payload: dict[str, Any],
    persona: PersonaId,
    engine: EngineState,
    awareness: AwarenessState,
    now: datetime,
    config: EngineConfig,
    volume: int | None = None,
) -> ContextSnapshot:
    """
    Freeze everything the prompt needs at this instant. A caller that has
    already gated on a volume passes it in so the prompt and the display
    agree on how loud this line is.
    """
    if volume is None:
        volume = calculate_volume(engine.first_engaged_at, engine.interaction_count, now, config)
    session_minutes = 0
    if engine.first_engaged_at is not None:
        session_minutes = max(0, int((now - engine.first_engaged_at).total_seconds() // 60))

    return ContextSnapshot(
        trigger=trigger,
        payload=dict(payload),
        persona=persona,
        volume=volume,
        volume_name=volume_level(volume).name,
        session_minutes=session_minutes,
        interaction_count=engine.interaction_count,
        clock_time=format_clock(now),
        time_period=time_period(now).value,
        is_deep_night=is_deep_night(now),
        is_late_night=is_late_night(now),
        location=awareness.location,
        case_count=awareness.case_count,
    )
