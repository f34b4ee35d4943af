"""
Narrator — Awareness Types

The awareness layer watches what the user is doing (opening the
compartment, rolling dice, losing health, moving around, drifting into the
small hours) and turns it into typed events. These are its working types.
"""

from __future__ import annotations

from datetime import datetime
import enum
from typing import Any

from pydantic import Field, model_validator

from narrator.primitives.common import NarratorBaseModel, new_id, utc_now


# ─── Enums ───────────────────────────────────────────────────────


class AwarenessEventType(enum.StrEnum):
    """Every event the awareness bus knows how to carry."""

    COMPARTMENT_OPEN = "compartment_open"
    ABSENCE = "absence"
    DICE_ROLL = "dice_roll"
    FIDGET_PATTERN = "fidget_pattern"
    VITALS_CHANGE = "vitals_change"
    LOCATION_CHANGE = "location_change"
    TIME_SHIFT = "time_shift"
    CASE_CHANGE = "case_change"
    FORTUNE_READY = "fortune_ready"
    FIDGET_INTERVENTION = "fidget_intervention"


class TimePeriod(enum.StrEnum):
    MORNING = "morning"          # 06:00 - 12:00
    AFTERNOON = "afternoon"      # 12:00 - 17:00
    EVENING = "evening"          # 17:00 - 21:00
    LATE_NIGHT = "late_night"    # 21:00 - 02:00
    DEEP_NIGHT = "deep_night"    # 02:00 - 06:00


class FidgetPattern(enum.StrEnum):
    """Patterns the roll detector recognises, in detection priority order."""

    FRANTIC = "frantic"
    RAPID = "rapid"
    UNLUCKY_STREAK = "unlucky_streak"
    CURSED = "cursed"
    BLESSED = "blessed"
    LATE_NIGHT_FIDGET = "late_night_fidget"
    # Raised by the recovery check after a calm period, not by a roll
    CALMING_DOWN = "calming_down"
    # Escalating concern over one long fidget session
    INTERVENTION = "intervention"


class VitalsChangeType(enum.StrEnum):
    HEALTH_DROP = "health_drop"
    MORALE_DROP = "morale_drop"
    CRITICAL = "critical"


class CaseChangeType(enum.StrEnum):
    NEW_CASE = "new_case"
    CASE_CLOSED = "case_closed"


# ─── Events ──────────────────────────────────────────────────────


class AwarenessEvent(NarratorBaseModel):
    """A single typed emission. Ephemeral: only its timestamp outlives dispatch."""

    id: str = Field(default_factory=new_id)
    event_type: AwarenessEventType
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)


# ─── Payloads ────────────────────────────────────────────────────


class RollOutcome(NarratorBaseModel):
    """One dice-like roll as reported by the host."""

    values: list[int] = Field(default_factory=list)
    total: int = 0
    is_worst_case: bool = False
    is_best_case: bool = False
    is_double: bool = False

    @model_validator(mode="after")
    def _derive_total(self) -> RollOutcome:
        if not self.total and self.values:
            object.__setattr__(self, "total", sum(self.values))
        return self


class InteractionRecord(NarratorBaseModel):
    """A timestamped entry in the rolling interaction history."""

    timestamp: datetime
    outcome: RollOutcome


class AbsenceReport(NarratorBaseModel):
    """How long the user was away, when it matters."""

    duration_seconds: float
    minutes: int
    hours: int
    formatted: str
    current_period: TimePeriod
    is_deep_night: bool


class PatternDetection(NarratorBaseModel):
    """A fidget pattern found in the recent roll window."""

    name: FidgetPattern
    intensity: int
    streak: int = 0
    count: int = 0


class FidgetSession(NarratorBaseModel):
    """
    One burst of rolling. A roll arriving after the session timeout starts
    a fresh session, which also resets the intervention level.
    """

    started_at: datetime | None = None
    rolls: int = 0
    peak_intensity: int = 0
    intervention_level: int = 0


class VitalsSnapshot(NarratorBaseModel):
    health: int | None = None
    morale: int | None = None

    @property
    def is_seeded(self) -> bool:
        return self.health is not None and self.morale is not None


class PendingFortune(NarratorBaseModel):
    """A drawn fortune waiting to be picked up by a later consumer."""

    text: str
    persona_id: str | None = None
    drawn_at: datetime


# ─── State ───────────────────────────────────────────────────────


class PersistedAwareness(NarratorBaseModel):
    """
    The narrow slice of awareness that survives a reload.

    Keyed by conversation identity in the store. Escalation, history and
    cooldown bookkeeping are absent: a reloaded conversation
    starts quiet.
    """

    last_interaction: datetime | None = None
    last_known_period: TimePeriod | None = None
    vitals: VitalsSnapshot = Field(default_factory=VitalsSnapshot)
    location: str | None = None
    case_count: int = 0
    pending_fortune: PendingFortune | None = None


class AwarenessState(NarratorBaseModel):
    """
    Everything the awareness layer knows about one conversation.

    Owned by exactly one NarratorSession. Invariants: ``last_reaction``
    values never move backwards for a given event type, and ``history``
    never exceeds the configured size (the tracker evicts oldest first).
    """

    session_start: datetime | None = None
    last_interaction: datetime | None = None
    last_compartment_open: datetime | None = None

    last_known_period: TimePeriod | None = None
    period_changes: int = 0

    history: list[InteractionRecord] = Field(default_factory=list)
    roll_streak: int = 0
    last_roll_time: datetime | None = None

    fidget: FidgetSession = Field(default_factory=FidgetSession)
    last_intervention: datetime | None = None
    # Set once a heavy session is seen; cleared when recovery is reported
    recently_fidgeting: bool = False

    last_reaction: dict[AwarenessEventType, datetime] = Field(default_factory=dict)

    vitals: VitalsSnapshot = Field(default_factory=VitalsSnapshot)
    location: str | None = None
    case_count: int = 0
    pending_fortune: PendingFortune | None = None

    def to_persisted(self) -> PersistedAwareness:
        return PersistedAwareness(
            last_interaction=self.last_interaction,
            last_known_period=self.last_known_period,
            vitals=self.vitals.model_copy(),
            location=self.location,
            case_count=self.case_count,
            pending_fortune=self.pending_fortune,
        )

    @classmethod
    def from_persisted(cls, saved: PersistedAwareness | None) -> AwarenessState:
        if saved is None:
            return cls()
        return cls(
            last_interaction=saved.last_interaction,
            last_known_period=saved.last_known_period,
            vitals=saved.vitals.model_copy(),
            location=saved.location,
            case_count=saved.case_count,
            pending_fortune=saved.pending_fortune,
        )
