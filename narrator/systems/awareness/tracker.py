"""
Narrator — Awareness Tracker

The producer side of the awareness layer. Hosts call into the tracker
(compartment opened, dice rolled, vitals parsed, location parsed, fortune
drawn) and the tracker mutates the session's AwarenessState and emits
typed events through the AwarenessBus.

All methods are synchronous and run to completion. Nothing here awaits;
persistence is signalled through an optional ``on_persist`` callback that
the session turns into a scheduled background save.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from narrator.systems.awareness.patterns import PatternDetector, intervention_level
from narrator.systems.awareness.timekeeping import (
    format_clock,
    format_duration,
    is_deep_night,
    is_late_night,
    time_period,
)
from narrator.systems.awareness.types import (
    AbsenceReport,
    AwarenessEventType,
    AwarenessState,
    CaseChangeType,
    FidgetPattern,
    FidgetSession,
    InteractionRecord,
    PatternDetection,
    PendingFortune,
    RollOutcome,
    TimePeriod,
    VitalsChangeType,
    VitalsSnapshot,
)

if TYPE_CHECKING:
    from datetime import datetime

    from narrator.config import AwarenessConfig
    from narrator.primitives.clock import Clock
    from narrator.systems.awareness.event_bus import AwarenessBus

logger = structlog.get_logger()


class AwarenessTracker:
    """
    Session, absence, fidget and context-delta tracking for one conversation.
    """

    def __init__(
        self,
        state: AwarenessState,
        bus: AwarenessBus,
        clock: Clock,
        config: AwarenessConfig,
        on_persist: Callable[[], None] | None = None,
    ) -> None:
        self._state = state
        self._bus = bus
        self._clock = clock
        self._config = config
        self._on_persist = on_persist
        self._detector = PatternDetector(config)
        self._logger = logger.bind(system="narrator.awareness.tracker")

    @property
    def state(self) -> AwarenessState:
        return self._state

    def initialize(self) -> None:
        """Anchor the time-of-day watch at the current period."""
        self._state.last_known_period = time_period(self._clock.now())
        self._logger.info(
            "awareness_initialized",
            time_period=self._state.last_known_period.value,
            deep_night=is_deep_night(self._clock.now()),
        )

    # ─── Interaction & Absence ───────────────────────────────────────

    def record_interaction(self) -> None:
        now = self._clock.now()
        if self._state.session_start is None:
            self._state.session_start = now
        self._state.last_interaction = now
        self._persist()

    def check_absence(self) -> AbsenceReport | None:
        """
        How long the user has been away, or None when there is no prior
        interaction or the gap is under the reporting threshold.
        """
        last = self._state.last_interaction
        if last is None:
            return None

        now = self._clock.now()
        seconds = max(0.0, (now - last).total_seconds())
        minutes = int(seconds // 60)
        if minutes < self._config.absence_threshold_minutes:
            return None

        return AbsenceReport(
            duration_seconds=seconds,
            minutes=minutes,
            hours=minutes // 60,
            formatted=format_duration(seconds),
            current_period=time_period(now),
            is_deep_night=is_deep_night(now),
        )

    def open_compartment(self) -> AbsenceReport | None:
        """
        The user opened the narrator's panel. Reports any absence first,
        then records the visit as an interaction.
        """
        now = self._clock.now()
        absence = self.check_absence()

        self._bus.emit(
            AwarenessEventType.COMPARTMENT_OPEN,
            {
                "absence": absence.model_dump() if absence else None,
                "time_period": time_period(now).value,
                "is_deep_night": is_deep_night(now),
                "is_late_night": is_late_night(now),
                "timestamp": now,
            },
        )

        if absence is not None and absence.minutes >= self._config.absence_event_minutes:
            self._bus.emit(AwarenessEventType.ABSENCE, absence.model_dump())

        self._state.last_compartment_open = now
        self.record_interaction()
        return absence

    # ─── Dice & Fidgeting ────────────────────────────────────────────

    def record_roll(self, outcome: RollOutcome) -> PatternDetection | None:
        """
        Log a roll, emit it, and emit whatever fidget pattern it completes.
        """
        now = self._clock.now()
        state = self._state

        state.history.append(InteractionRecord(timestamp=now, outcome=outcome))
        overflow = len(state.history) - self._config.history_size
        if overflow > 0:
            del state.history[:overflow]

        if (
            state.last_roll_time is not None
            and (now - state.last_roll_time).total_seconds() < self._config.rapid_window_seconds
        ):
            state.roll_streak += 1
        else:
            state.roll_streak = 1
        state.last_roll_time = now

        session = self._advance_fidget_session(now)

        self._bus.emit(AwarenessEventType.DICE_ROLL, outcome.model_dump())

        pattern = self._detector.detect(state.history, state.roll_streak, now, session.rolls)
        if pattern is not None:
            session.peak_intensity = max(session.peak_intensity, pattern.intensity)
            self._logger.debug(
                "fidget_pattern_detected",
                pattern=pattern.name.value,
                intensity=pattern.intensity,
            )
            self._bus.emit(
                AwarenessEventType.FIDGET_PATTERN,
                {"pattern": pattern.name.value, **pattern.model_dump(exclude={"name"})},
            )

        self._check_intervention(now)
        self.record_interaction()
        return pattern

    def check_recovery(self) -> PatternDetection | None:
        """
        Report, once, that a heavy fidget session has been followed by a
        calm period. Called periodically by the engine's watch loop.
        """
        state = self._state
        if not state.recently_fidgeting or state.last_roll_time is None:
            return None

        calm_seconds = (self._clock.now() - state.last_roll_time).total_seconds()
        if calm_seconds <= self._config.calm_threshold_seconds:
            return None

        state.recently_fidgeting = False
        recovery = PatternDetection(
            name=FidgetPattern.CALMING_DOWN,
            intensity=0,
            count=state.fidget.rolls,
        )
        self._logger.info("fidget_recovery", calm_s=int(calm_seconds), session_rolls=recovery.count)
        self._bus.emit(
            AwarenessEventType.FIDGET_PATTERN,
            {
                "pattern": recovery.name.value,
                **recovery.model_dump(exclude={"name"}),
                "calm_seconds": calm_seconds,
            },
        )
        return recovery

    def reset_fidget_tracking(self) -> None:
        self._state.roll_streak = 0
        self._state.fidget = FidgetSession()
        self._state.recently_fidgeting = False

    def _advance_fidget_session(self, now: datetime) -> FidgetSession:
        state = self._state
        session = state.fidget
        if (
            session.started_at is None
            or (now - session.started_at).total_seconds() > self._config.fidget_session_timeout_seconds
        ):
            session = FidgetSession(started_at=now)
            state.fidget = session

        session.rolls += 1
        if session.rolls >= self._config.recovery_min_rolls:
            state.recently_fidgeting = True
        return session

    def _check_intervention(self, now: datetime) -> int | None:
        """
        Escalate the session's intervention level and emit when it rises.
        Levels never fall within a session; a rise that lands too soon
        after the last intervention is recorded but not announced.
        """
        state = self._state
        session = state.fidget
        level = intervention_level(session.rolls, session.peak_intensity, self._config)
        if level <= session.intervention_level:
            return None
        session.intervention_level = level

        last = state.last_intervention
        if (
            last is not None
            and (now - last).total_seconds() < self._config.intervention_min_spacing_seconds
        ):
            return None

        state.last_intervention = now
        self._logger.info("fidget_intervention", level=level, session_rolls=session.rolls)
        self._bus.emit(
            AwarenessEventType.FIDGET_INTERVENTION,
            {
                "level": level,
                "session_rolls": session.rolls,
                "peak_intensity": session.peak_intensity,
                "time": format_clock(now),
            },
        )
        return level

    # ─── Time of Day ─────────────────────────────────────────────────

    def check_time_shift(self) -> TimePeriod:
        now = self._clock.now()
        current = time_period(now)
        previous = self._state.last_known_period

        if previous is not None and previous != current:
            self._state.period_changes += 1
            self._bus.emit(
                AwarenessEventType.TIME_SHIFT,
                {
                    "from": previous.value,
                    "to": current.value,
                    "is_deep_night": is_deep_night(now),
                    "is_late_night": is_late_night(now),
                },
            )

        self._state.last_known_period = current
        return current

    # ─── Context Deltas ──────────────────────────────────────────────

    def update_vitals(
        self,
        health: int,
        morale: int,
        max_health: int | None = None,
        max_morale: int | None = None,
    ) -> None:
        """
        Compare against the last snapshot and emit drops and critical entry.
        The first observation only seeds the snapshot.
        """
        prev = self._state.vitals
        drop = self._config.vitals_drop_threshold
        critical = self._config.vitals_critical_threshold

        if prev.is_seeded:
            assert prev.health is not None and prev.morale is not None

            health_drop = prev.health - health
            if health_drop >= drop:
                self._bus.emit(
                    AwarenessEventType.VITALS_CHANGE,
                    {
                        "change_type": VitalsChangeType.HEALTH_DROP.value,
                        "amount": health_drop,
                        "current": health,
                        "max": max_health,
                        "is_critical": health <= critical,
                    },
                )

            morale_drop = prev.morale - morale
            if morale_drop >= drop:
                self._bus.emit(
                    AwarenessEventType.VITALS_CHANGE,
                    {
                        "change_type": VitalsChangeType.MORALE_DROP.value,
                        "amount": morale_drop,
                        "current": morale,
                        "max": max_morale,
                        "is_critical": morale <= critical,
                    },
                )

            now_critical = health <= critical or morale <= critical
            was_clear = prev.health > critical and prev.morale > critical
            if now_critical and was_clear:
                self._bus.emit(
                    AwarenessEventType.VITALS_CHANGE,
                    {
                        "change_type": VitalsChangeType.CRITICAL.value,
                        "health": health,
                        "morale": morale,
                        "is_critical": True,
                    },
                )

        self._state.vitals = VitalsSnapshot(health=health, morale=morale)

    def update_location(self, name: str | None) -> None:
        prev = self._state.location
        if prev and name and prev != name:
            self._bus.emit(
                AwarenessEventType.LOCATION_CHANGE,
                {
                    "from": prev,
                    "to": name,
                    "time_period": time_period(self._clock.now()).value,
                },
            )
        self._state.location = name

    def update_case_count(self, count: int) -> None:
        prev = self._state.case_count
        if count > prev:
            self._bus.emit(
                AwarenessEventType.CASE_CHANGE,
                {"change_type": CaseChangeType.NEW_CASE.value, "count": count, "delta": count - prev},
            )
        elif count < prev:
            self._bus.emit(
                AwarenessEventType.CASE_CHANGE,
                {"change_type": CaseChangeType.CASE_CLOSED.value, "count": count, "delta": prev - count},
            )
        self._state.case_count = count

    # ─── Pending Fortune ─────────────────────────────────────────────

    def record_fortune(self, text: str, persona_id: str | None = None) -> PendingFortune | None:
        """Hold a drawn fortune for a later consumer. Blank fortunes are dropped."""
        if not text or not text.strip():
            return None

        fortune = PendingFortune(
            text=text.strip(),
            persona_id=persona_id,
            drawn_at=self._clock.now(),
        )
        self._state.pending_fortune = fortune
        self._bus.emit(AwarenessEventType.FORTUNE_READY, fortune.model_dump())
        self._persist()
        return fortune

    def pending_fortune(self, consume: bool = False) -> PendingFortune | None:
        pending = self._state.pending_fortune
        if consume and pending is not None:
            self._state.pending_fortune = None
            self._persist()
        return pending

    # ─── Internal ────────────────────────────────────────────────────

    def _persist(self) -> None:
        if self._on_persist is not None:
            self._on_persist()
