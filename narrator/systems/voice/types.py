"""
Narrator — Voice Types

Personas, volume levels, triggers, and the engine's per-session state.
"""

from __future__ import annotations

from datetime import datetime
import enum
from typing import Any

from pydantic import Field

from narrator.primitives.common import NarratorBaseModel, new_id, utc_now


# ─── Enums ───────────────────────────────────────────────────────


class PersonaId(enum.StrEnum):
    WEARY = "weary"
    PROPHET = "prophet"
    SPITE = "spite"


class Trigger(enum.StrEnum):
    """What prompted the engine to consider speaking."""

    COMPARTMENT_OPEN = "compartment_open"
    ABSENCE = "absence"
    DICE_ROLL = "dice_roll"
    FIDGET_PATTERN = "fidget_pattern"
    VITALS_CHANGE = "vitals_change"
    LOCATION_CHANGE = "location_change"
    TIME_SHIFT = "time_shift"
    CASE_CHANGE = "case_change"


class GenerationOrigin(enum.StrEnum):
    GENERATED = "generated"
    FALLBACK = "fallback"


class EnginePhase(enum.StrEnum):
    IDLE = "idle"
    DECIDING = "deciding"
    SUPPRESSED = "suppressed"
    GENERATING = "generating"
    DISPLAYING = "displaying"


class SpeakOutcome(enum.StrEnum):
    """How a single speak() call ended."""

    SPOKEN = "spoken"
    SILENT = "silent"                      # volume 0, nothing touched
    ALREADY_GENERATING = "already_generating"
    COOLDOWN = "cooldown"
    CHANCE_MISSED = "chance_missed"
    FAILED = "failed"


# ─── Data ────────────────────────────────────────────────────────


class Persona(NarratorBaseModel):
    """One of the fixed voices. Data only; no behaviour."""

    model_config = {"frozen": True}

    id: PersonaId
    display_name: str
    tone_description: str
    color: str


class VolumeLevel(NarratorBaseModel):
    model_config = {"frozen": True}

    level: int
    name: str
    response_chance: float
    length_hint: str
    instruction: str
    # Persona selection weights in PERSONA_ORDER
    weights: tuple[int, int, int]


class GenerationResult(NarratorBaseModel):
    text: str
    persona: PersonaId
    origin: GenerationOrigin
    trigger: Trigger
    latency_ms: int = 0
    # Why the fallback was used (timeout / failure / invalid), if it was
    fallback_reason: str | None = None


class SpeakOptions(NarratorBaseModel):
    """
    Caller overrides for a single speak() call.

    ``toast`` is tri-state: None lets volume decide, False never raises a
    notification, True always does.
    """

    force: bool = False
    persona: PersonaId | None = None
    toast: bool | None = None


class LastSpoken(NarratorBaseModel):
    """The persistent slot: whatever the narrator said most recently."""

    text: str
    persona: PersonaId
    color: str
    trigger: Trigger
    origin: GenerationOrigin
    spoken_at: datetime = Field(default_factory=utc_now)


class ContextSnapshot(NarratorBaseModel):
    """Point-in-time view handed to the prompt builder."""

    trigger: Trigger
    payload: dict[str, Any] = Field(default_factory=dict)
    persona: PersonaId

    volume: int
    volume_name: str
    session_minutes: int
    interaction_count: int

    clock_time: str
    time_period: str
    is_deep_night: bool
    is_late_night: bool

    location: str | None = None
    case_count: int = 0


# ─── State ───────────────────────────────────────────────────────


class EngineState(NarratorBaseModel):
    """
    Everything the engine itself remembers about one conversation.

    Volume is not stored here: it is recomputed from ``first_engaged_at``,
    ``interaction_count`` and the clock every time it is needed.
    """

    session_id: str = Field(default_factory=new_id)
    first_engaged_at: datetime | None = None
    interaction_count: int = 0

    in_flight: bool = False
    last_attempt_at: datetime | None = None
    phase: EnginePhase = EnginePhase.IDLE

    generated_count: int = 0
    fallback_count: int = 0
    suppressed_count: int = 0
    # Attempts where not even a static line could be shown
    failed_count: int = 0

    last_spoken: LastSpoken | None = None
