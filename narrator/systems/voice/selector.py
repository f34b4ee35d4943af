"""
Narrator — Persona Selector

Picks which voice answers a trigger. Specific trigger/payload combinations
map straight to a persona; everything else is a weighted draw from the
current volume's row, using the injected random source.
"""

from __future__ import annotations

import random
from typing import Any

import structlog

from narrator.systems.awareness.types import FidgetPattern, TimePeriod
from narrator.systems.voice.personas import PERSONA_ORDER, volume_level
from narrator.systems.voice.types import PersonaId, Trigger

logger = structlog.get_logger()

_FIDGET_OVERRIDES: dict[str, PersonaId] = {
    FidgetPattern.CURSED.value: PersonaId.PROPHET,
    FidgetPattern.BLESSED.value: PersonaId.PROPHET,
    FidgetPattern.FRANTIC.value: PersonaId.SPITE,
    FidgetPattern.LATE_NIGHT_FIDGET.value: PersonaId.SPITE,
    FidgetPattern.CALMING_DOWN.value: PersonaId.WEARY,
}


def contextual_override(trigger: Trigger, payload: dict[str, Any]) -> PersonaId | None:
    """The persona a trigger demands regardless of volume, if any."""
    if trigger == Trigger.DICE_ROLL:
        if payload.get("is_worst_case"):
            return PersonaId.SPITE
        if payload.get("is_best_case") or payload.get("is_double"):
            return PersonaId.PROPHET

    if trigger == Trigger.COMPARTMENT_OPEN:
        period = payload.get("time_period")
        if period == TimePeriod.DEEP_NIGHT:
            return PersonaId.SPITE
        if period == TimePeriod.LATE_NIGHT:
            return PersonaId.PROPHET

    if trigger == Trigger.FIDGET_PATTERN:
        pattern = payload.get("pattern")
        if pattern in _FIDGET_OVERRIDES:
            return _FIDGET_OVERRIDES[pattern]

    if trigger == Trigger.VITALS_CHANGE and payload.get("is_critical"):
        return PersonaId.PROPHET

    return None


class PersonaSelector:
    def __init__(self, rng: random.Random) -> None:
        self._rng = rng

    def weighted_draw(self, volume: int) -> PersonaId:
        weights = volume_level(volume).weights
        total = sum(weights)
        if total <= 0:
            return PERSONA_ORDER[0]

        roll = self._rng.random() * total
        for persona_id, weight in zip(PERSONA_ORDER, weights, strict=True):
            roll -= weight
            if roll < 0:
                return persona_id
        return PERSONA_ORDER[-1]

    def select(
        self,
        trigger: Trigger,
        payload: dict[str, Any],
        volume: int,
    ) -> PersonaId:
        override = contextual_override(trigger, payload)
        if override is not None:
            logger.debug("persona_override", trigger=trigger.value, persona=override.value)
            return override
        return self.weighted_draw(volume)
