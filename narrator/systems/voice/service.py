"""
Narrator — Voice Engine

The single entry point that decides whether the narrator speaks.

speak() walks a short state machine:

  Idle -> Deciding -> Suppressed
                   -> Generating -> Displaying -> Idle

Gate order is fixed: single-flight, then the inter-generation cooldown,
then volume (0 is a silent no-op that touches nothing), then the
volume-scaled response roll. Forced speech skips the last two gates but
never the first two.

The engine also subscribes to the awareness bus. Bus handlers are
synchronous; each one that decides to speak spawns speak() as a tracked
background task so that emission stays run-to-completion.
"""

from __future__ import annotations

import asyncio
import random
from typing import TYPE_CHECKING, Any

import structlog

from narrator.errors import (
    AlreadyGenerating,
    CooldownActive,
    ResponseChanceMissed,
    SpeechSuppressed,
)
from narrator.systems.awareness.timekeeping import time_period
from narrator.systems.awareness.types import (
    AwarenessEvent,
    AwarenessEventType,
    FidgetPattern,
    TimePeriod,
)
from narrator.systems.voice.escalation import calculate_volume
from narrator.systems.voice.personas import volume_level
from narrator.systems.voice.selector import PersonaSelector
from narrator.systems.voice.types import (
    EnginePhase,
    GenerationOrigin,
    PersonaId,
    SpeakOptions,
    SpeakOutcome,
    Trigger,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from narrator.config import AwarenessConfig, EngineConfig
    from narrator.primitives.clock import Clock
    from narrator.systems.awareness.event_bus import AwarenessBus
    from narrator.systems.awareness.tracker import AwarenessTracker
    from narrator.systems.voice.display import DisplayCoordinator
    from narrator.systems.voice.orchestrator import GenerationOrchestrator
    from narrator.systems.voice.types import EngineState

logger = structlog.get_logger()

_SUPPRESSION_OUTCOMES: dict[type[SpeechSuppressed], SpeakOutcome] = {
    AlreadyGenerating: SpeakOutcome.ALREADY_GENERATING,
    CooldownActive: SpeakOutcome.COOLDOWN,
    ResponseChanceMissed: SpeakOutcome.CHANCE_MISSED,
}

# Concern escalates from a tired aside to open contempt
_INTERVENTION_PERSONAS: dict[int, PersonaId] = {
    1: PersonaId.WEARY,
    2: PersonaId.WEARY,
    3: PersonaId.PROPHET,
    4: PersonaId.SPITE,
    5: PersonaId.SPITE,
}


class NarratorEngine:
    """
    Voice engine for one conversation.

    Dependencies:
        state         -- this conversation's EngineState (owned, never shared)
        tracker       -- awareness producer; also runs the time-of-day watch
        bus           -- awareness bus the engine listens on
        orchestrator  -- bounded-latency line generation
        display       -- choreography and rendering
        clock / rng   -- injected time and randomness

    Lifecycle:
        initialize()  -- start the time-of-day watch loop
        shutdown()    -- stop loops, drop subscriptions, settle pending speech
    """

    system_id: str = "narrator.voice"

    def __init__(
        self,
        state: EngineState,
        tracker: AwarenessTracker,
        bus: AwarenessBus,
        orchestrator: GenerationOrchestrator,
        display: DisplayCoordinator,
        clock: Clock,
        rng: random.Random,
        config: EngineConfig,
        awareness_config: AwarenessConfig,
    ) -> None:
        self._state = state
        self._tracker = tracker
        self._bus = bus
        self._orchestrator = orchestrator
        self._display = display
        self._clock = clock
        self._rng = rng
        self._config = config
        self._awareness_config = awareness_config
        self._selector = PersonaSelector(rng)
        self._logger = logger.bind(system="narrator.voice.engine", session_id=state.session_id)

        # Background task tracking -- prevents fire-and-forget error loss
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._background_task_failures: int = 0
        self._time_watch_task: asyncio.Task[Any] | None = None

        self._unsubscribers: list[Callable[[], None]] = [
            bus.subscribe(AwarenessEventType.COMPARTMENT_OPEN, self._on_compartment_open),
            bus.subscribe(AwarenessEventType.DICE_ROLL, self._on_dice_roll),
            bus.subscribe(AwarenessEventType.FIDGET_PATTERN, self._on_fidget_pattern),
            bus.subscribe(AwarenessEventType.VITALS_CHANGE, self._on_vitals_change),
            bus.subscribe(AwarenessEventType.LOCATION_CHANGE, self._on_location_change),
            bus.subscribe(AwarenessEventType.CASE_CHANGE, self._on_case_change),
            bus.subscribe(AwarenessEventType.TIME_SHIFT, self._on_time_shift),
            bus.subscribe(AwarenessEventType.FIDGET_INTERVENTION, self._on_fidget_intervention),
        ]

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def initialize(self) -> None:
        self._tracker.initialize()
        self._time_watch_task = self._spawn_tracked_task(
            self._time_watch_loop(),
            name="narrator_time_watch",
        )
        self._logger.info(
            "voice_engine_initialized",
            time_watch_interval_s=self._config.time_watch_interval_seconds,
        )

    async def shutdown(self) -> None:
        if self._time_watch_task and not self._time_watch_task.done():
            self._time_watch_task.cancel()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        pending = [t for t in self._background_tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self._orchestrator.close()

        self._logger.info(
            "voice_engine_shutdown",
            generated=self._state.generated_count,
            fallback=self._state.fallback_count,
            suppressed=self._state.suppressed_count,
            failed=self._state.failed_count,
        )

    # ─── Volume ──────────────────────────────────────────────────────

    @property
    def state(self) -> EngineState:
        return self._state

    def volume(self) -> int:
        return calculate_volume(
            self._state.first_engaged_at,
            self._state.interaction_count,
            self._clock.now(),
            self._config,
        )

    def mark_engaged(self) -> None:
        """Start the escalation clock. Only the first call counts."""
        if self._state.first_engaged_at is None:
            self._state.first_engaged_at = self._clock.now()
            self._logger.info("engagement_started")

    # ─── Speak ───────────────────────────────────────────────────────

    async def speak(
        self,
        trigger: Trigger,
        payload: dict[str, Any] | None = None,
        options: SpeakOptions | None = None,
    ) -> SpeakOutcome:
        """Decide, generate, display. Never raises."""
        payload = payload or {}
        options = options or SpeakOptions()
        state = self._state

        # Gates never await, so the phase can be restored exactly.
        previous_phase = state.phase
        state.phase = EnginePhase.DECIDING
        try:
            volume = self._pass_gates(options)
        except SpeechSuppressed as exc:
            state.suppressed_count += 1
            state.phase = previous_phase
            self._logger.debug("speech_suppressed", trigger=trigger.value, reason=str(exc))
            return _SUPPRESSION_OUTCOMES.get(type(exc), SpeakOutcome.FAILED)

        if volume is None:
            state.phase = previous_phase
            return SpeakOutcome.SILENT

        state.in_flight = True
        state.last_attempt_at = self._clock.now()
        state.interaction_count += 1
        state.phase = EnginePhase.GENERATING

        persona = options.persona or self._selector.select(trigger, payload, volume)
        try:
            result = await self._orchestrator.generate_line(trigger, payload, persona, volume)
            state.phase = EnginePhase.DISPLAYING
            state.last_spoken = await self._display.display(result, volume, options)
        except Exception:
            self._logger.error("speak_failed", trigger=trigger.value, exc_info=True)
            return await self._display_last_resort(trigger, payload, persona, volume, options)
        else:
            # Counted only once the line is actually on screen
            if result.origin == GenerationOrigin.GENERATED:
                state.generated_count += 1
            else:
                state.fallback_count += 1
            return SpeakOutcome.SPOKEN
        finally:
            state.in_flight = False
            state.phase = EnginePhase.IDLE

    async def force_speak(
        self,
        trigger: Trigger = Trigger.COMPARTMENT_OPEN,
        payload: dict[str, Any] | None = None,
        persona: PersonaId | None = None,
    ) -> SpeakOutcome:
        """Speak regardless of volume or the response roll."""
        return await self.speak(trigger, payload, SpeakOptions(force=True, persona=persona))

    def _pass_gates(self, options: SpeakOptions) -> int | None:
        """
        Raise a SpeechSuppressed subclass, return None for a silent no-op,
        or return the volume to speak at.
        """
        state = self._state
        if state.in_flight:
            raise AlreadyGenerating("a generation is already in flight")

        if state.last_attempt_at is not None:
            elapsed = (self._clock.now() - state.last_attempt_at).total_seconds()
            cooldown = self._config.generation_cooldown_seconds
            if elapsed < cooldown:
                raise CooldownActive(cooldown - elapsed)

        volume = self.volume()
        if volume == 0 and not options.force:
            return None

        if not options.force:
            chance = volume_level(volume).response_chance
            if self._rng.random() > chance:
                raise ResponseChanceMissed(chance)

        return volume

    async def _display_last_resort(
        self,
        trigger: Trigger,
        payload: dict[str, Any],
        persona: PersonaId,
        volume: int,
        options: SpeakOptions,
    ) -> SpeakOutcome:
        """
        Generation or display broke. Show a static line if we can; the
        attempt counts as one fallback, or as one failure when even that
        cannot be shown.
        """
        try:
            result = self._orchestrator.fallback_line(trigger, payload, persona)
            self._state.last_spoken = await self._display.display(result, volume, options)
        except Exception:
            self._state.failed_count += 1
            self._logger.error("last_resort_fallback_failed", trigger=trigger.value, exc_info=True)
            return SpeakOutcome.FAILED
        self._state.fallback_count += 1
        return SpeakOutcome.SPOKEN

    # ─── Awareness Handlers ──────────────────────────────────────────

    def route_compartment_open(self, payload: dict[str, Any]) -> Trigger:
        absence = payload.get("absence") or {}
        if absence.get("minutes", 0) >= self._awareness_config.absence_threshold_minutes:
            return Trigger.ABSENCE
        return Trigger.COMPARTMENT_OPEN

    def _on_compartment_open(self, event: AwarenessEvent) -> None:
        self.mark_engaged()
        trigger = self.route_compartment_open(event.payload)
        self._schedule_speak(trigger, event.payload, SpeakOptions(toast=False))

    def _on_dice_roll(self, event: AwarenessEvent) -> None:
        self._state.interaction_count += 1
        payload = event.payload
        notable = (
            payload.get("is_worst_case")
            or payload.get("is_best_case")
            or payload.get("is_double")
        )
        if self.volume() <= self._config.dice_quiet_max_volume and not notable:
            return
        self._schedule_speak(Trigger.DICE_ROLL, payload)

    def _on_fidget_pattern(self, event: AwarenessEvent) -> None:
        intensity = event.payload.get("intensity", 0)
        if (
            intensity < self._config.fidget_min_intensity
            and event.payload.get("pattern") != FidgetPattern.CALMING_DOWN
        ):
            return
        self._schedule_speak(Trigger.FIDGET_PATTERN, event.payload)

    def _on_fidget_intervention(self, event: AwarenessEvent) -> None:
        """Interventions skip the volume and chance gates."""
        level = int(event.payload.get("level", 1))
        payload = {
            **event.payload,
            "pattern": FidgetPattern.INTERVENTION.value,
            "intensity": 10,
        }
        self._schedule_speak(
            Trigger.FIDGET_PATTERN,
            payload,
            SpeakOptions(
                force=True,
                persona=_INTERVENTION_PERSONAS.get(level, PersonaId.SPITE),
            ),
        )

    def _on_vitals_change(self, event: AwarenessEvent) -> None:
        is_critical = bool(event.payload.get("is_critical"))
        self._schedule_speak(
            Trigger.VITALS_CHANGE,
            event.payload,
            SpeakOptions(toast=True if is_critical else None),
        )

    def _on_location_change(self, event: AwarenessEvent) -> None:
        if self.volume() < self._config.context_change_min_volume:
            return
        self._schedule_speak(Trigger.LOCATION_CHANGE, event.payload)

    def _on_case_change(self, event: AwarenessEvent) -> None:
        if self.volume() < self._config.context_change_min_volume:
            return
        self._schedule_speak(Trigger.CASE_CHANGE, event.payload)

    def _on_time_shift(self, event: AwarenessEvent) -> None:
        if event.payload.get("to") != TimePeriod.DEEP_NIGHT:
            if self._rng.random() > self._config.time_shift_comment_chance:
                return
        self._schedule_speak(Trigger.TIME_SHIFT, event.payload, SpeakOptions(toast=True))

    def _schedule_speak(
        self,
        trigger: Trigger,
        payload: dict[str, Any],
        options: SpeakOptions | None = None,
    ) -> None:
        self._spawn_tracked_task(
            self.speak(trigger, payload, options),
            name=f"narrator_speak_{trigger.value}",
        )

    # ─── Observability ───────────────────────────────────────────────

    async def wait_idle(self) -> None:
        """Wait until every pending speech task has settled."""
        while True:
            pending = [
                t for t in self._background_tasks
                if t is not self._time_watch_task and not t.done()
            ]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def health(self) -> dict[str, Any]:
        """Health check -- returns current metrics snapshot."""
        state = self._state
        volume = self.volume()
        return {
            "status": "healthy",
            "session_id": state.session_id,
            "volume": volume,
            "volume_name": volume_level(volume).name,
            "time_period": time_period(self._clock.now()).value,
            "engaged": state.first_engaged_at is not None,
            "interaction_count": state.interaction_count,
            "in_flight": state.in_flight,
            "phase": state.phase.value,
            "generated": state.generated_count,
            "fallback": state.fallback_count,
            "suppressed": state.suppressed_count,
            "failed": state.failed_count,
            "last_spoken": state.last_spoken.text if state.last_spoken else None,
            "last_persona": state.last_spoken.persona.value if state.last_spoken else None,
            "bus": self._bus.stats,
            "generation": self._orchestrator.metrics(),
            "display": self._display.metrics(),
            "background_task_failures": self._background_task_failures,
        }

    # ─── Private Helpers ─────────────────────────────────────────────

    async def _time_watch_loop(self) -> None:
        """Periodic check for a time-of-day shift and for fidget recovery."""
        while True:
            try:
                await asyncio.sleep(self._config.time_watch_interval_seconds)
                self._tracker.check_time_shift()
                self._tracker.check_recovery()
            except asyncio.CancelledError:
                break
            except Exception:
                self._logger.warning("time_watch_failed", exc_info=True)

    def _spawn_tracked_task(self, coro: Any, name: str = "") -> asyncio.Task[Any]:
        """
        Spawn a background task with lifecycle tracking.

        Keeps a strong reference so the task isn't garbage-collected, and
        logs and counts failures instead of silently dropping them.
        """
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_task_done)
        return task

    def _on_background_task_done(self, task: asyncio.Task) -> None:  # type: ignore[type-arg]
        """Callback when a background task completes."""
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._background_task_failures += 1
            self._logger.warning(
                "background_task_failed",
                task_name=task.get_name(),
                error=str(exc),
            )
