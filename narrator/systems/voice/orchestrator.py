"""
Narrator — Generation Orchestrator

Turns (trigger, payload, persona) into one line of text, always.

The generation call is raced against a hard deadline. The call itself is
shielded: when the deadline passes the orchestrator stops waiting, serves
a static fallback line, and lets the abandoned call run to completion in
the background. Whatever it eventually returns is logged and discarded;
it is never shown and never cached for a later trigger.

Every failure on this path (service error, timeout, unusable output) is
absorbed here. ``generate_line`` does not raise.
"""

from __future__ import annotations

import asyncio
import random
import re
from typing import TYPE_CHECKING, Any

import structlog

from narrator.clients.llm import Message
from narrator.errors import (
    GenerationError,
    GenerationFailure,
    GenerationTimeout,
    InvalidGenerationOutput,
)
from narrator.systems.voice.fallbacks import pick_fallback
from narrator.systems.voice.personas import PERSONAS, volume_level
from narrator.systems.voice.snapshot import build_snapshot
from narrator.systems.voice.types import (
    ContextSnapshot,
    GenerationOrigin,
    GenerationResult,
    PersonaId,
    Trigger,
)

if TYPE_CHECKING:
    from narrator.clients.llm import LLMProvider
    from narrator.config import EngineConfig, GenerationConfig
    from narrator.primitives.clock import Clock
    from narrator.systems.awareness.types import AwarenessState
    from narrator.systems.voice.types import EngineState

logger = structlog.get_logger()


# ─── Trigger Descriptions ─────────────────────────────────────────

_FIDGET_DESCRIPTIONS: dict[str, str] = {
    "rapid": "The user is rolling over and over in quick succession. Nervous energy.",
    "frantic": "Frantic rolling, one throw on top of the next. Their hands will not settle.",
    "cursed": "The worst possible roll has come up more than once. Something feels wrong.",
    "blessed": "The best possible roll keeps turning up. The dice are being unusually kind.",
    "unlucky_streak": "A run of bad rolls. Nothing is landing above a 5.",
    "late_night_fidget": "Rolling dice long after midnight, for no reason in particular.",
    "calming_down": "The fidgeting has stopped. The user is settling.",
    "intervention": "The user has been rolling compulsively for a while now. Tell them to stop.",
}


def describe_trigger(trigger: Trigger, payload: dict[str, Any]) -> str:
    """A plain-language rendering of the event for the user half of the prompt."""
    if trigger in (Trigger.COMPARTMENT_OPEN, Trigger.ABSENCE):
        absence = payload.get("absence") or {}
        if absence.get("minutes", 0) >= 30:
            return (
                f"The user comes back after being away {absence.get('formatted', 'a while')}. "
                "They are opening the hidden drawer again."
            )
        if trigger == Trigger.ABSENCE and payload.get("formatted"):
            return f"The user was gone {payload['formatted']} and has just returned."
        return "The user just opened the hidden drawer."

    if trigger == Trigger.DICE_ROLL:
        total = payload.get("total", 0)
        values = payload.get("values") or []
        if payload.get("is_worst_case"):
            return "The worst possible roll. A critical failure."
        if payload.get("is_best_case"):
            return "The best possible roll. Perfect."
        if payload.get("is_double") and values:
            return f"Doubles, {values[0]} and {values[0]}. The numbers echo each other."
        if total <= 4:
            return f"A low roll: {total}. The dice are not kind."
        if total >= 10:
            return f"A high roll: {total}. Fortune leans their way."
        return f"The user rolled {total}. Unremarkable."

    if trigger == Trigger.FIDGET_PATTERN:
        return _FIDGET_DESCRIPTIONS.get(
            str(payload.get("pattern", "")),
            "The user is fidgeting with the things in the drawer.",
        )

    if trigger == Trigger.VITALS_CHANGE:
        if payload.get("is_critical"):
            return "Critical condition. The user's character is barely holding on."
        change = payload.get("change_type")
        if change == "health_drop":
            return "Physical damage. The character's body is hurting."
        if change == "morale_drop":
            return "Morale is falling. Something broke inside."
        return "The character's condition has changed."

    if trigger == Trigger.TIME_SHIFT:
        text = f"The time of day has shifted from {payload.get('from')} to {payload.get('to')}."
        if payload.get("is_deep_night"):
            text += " The small hours begin."
        return text

    if trigger == Trigger.LOCATION_CHANGE:
        return f"The user has moved to {payload.get('to') or 'somewhere new'}."

    if trigger == Trigger.CASE_CHANGE:
        if payload.get("change_type") == "case_closed":
            return f"A case was closed. {payload.get('count', 0)} remain open."
        return f"A new case was opened. {payload.get('count', 0)} are open now."

    return "Something happened in the drawer."


# ─── Prompt ──────────────────────────────────────────────────────


def build_prompt(context: ContextSnapshot) -> tuple[str, str]:
    """System half (who and how loud) and user half (what happened)."""
    vol = volume_level(context.volume)
    persona = PERSONAS[context.persona]

    time_line = f"TIME: {context.clock_time} ({context.time_period}"
    if context.is_deep_night:
        time_line += ", the small hours"
    time_line += ")"

    system_lines = [
        persona.tone_description,
        "",
        f"VOLUME: {vol.name}. {vol.instruction}".rstrip(),
        time_line,
        f"SESSION: {context.session_minutes} minutes, {context.interaction_count} interactions",
    ]
    if context.location:
        system_lines.append(f"LOCATION: {context.location}")
    system_lines += [
        "",
        "Respond with exactly ONE line. No quotation marks. No attribution. No asterisks.",
        vol.length_hint,
    ]
    system = "\n".join(system_lines).rstrip()

    user = "\n".join([
        f"TRIGGER: {describe_trigger(context.trigger, context.payload)}",
        "",
        f"Respond as {persona.display_name}. One line only.",
    ])
    return system, user


# ─── Sanitisation ────────────────────────────────────────────────

_THINK_BLOCK = re.compile(r"<(think|thinking)>.*?</\1>", re.IGNORECASE | re.DOTALL)
_THINK_UNCLOSED = re.compile(r"<(?:think|thinking)>.*$", re.IGNORECASE | re.DOTALL)
_QUOTE_PAIRS = (('"', '"'), ("'", "'"), ("“", "”"), ("‘", "’"))
_ATTRIBUTION = re.compile(
    r"\s*(?:—|–|\s-+)\s*(?:the\s+)?(?:\w+\s+)?ledger\b.*$",
    re.IGNORECASE | re.DOTALL,
)
_LEADING_LABEL = re.compile(r"^\s*(?:the\s+)?(?:\w+\s+)?ledger\s*:\s*", re.IGNORECASE)
_EDGE_ASTERISKS = re.compile(r"^\*+|\*+$")
_EDGE_QUOTES = re.compile("^[\"'“”‘’]+|[\"'“”‘’]+$")


def sanitize_line(raw: str, persona: PersonaId | None = None) -> str:
    """
    Strip model artefacts: reasoning blocks, wrapping quotes, signature
    suffixes, speaker labels and emote asterisks.
    """
    if not raw:
        return ""

    cleaned = _THINK_BLOCK.sub("", raw)
    cleaned = _THINK_UNCLOSED.sub("", cleaned).strip()

    for opening, closing in _QUOTE_PAIRS:
        if len(cleaned) >= 2 and cleaned.startswith(opening) and cleaned.endswith(closing):
            cleaned = cleaned[1:-1].strip()
            break

    cleaned = _ATTRIBUTION.sub("", cleaned)
    cleaned = _LEADING_LABEL.sub("", cleaned)

    names = [PERSONAS[persona].display_name] if persona else [p.display_name for p in PERSONAS.values()]
    for name in names:
        escaped = re.escape(name)
        cleaned = re.sub(rf"\s*(?:—|–|\s-+)\s*{escaped}\s*$", "", cleaned, flags=re.IGNORECASE)
        cleaned = re.sub(rf"^\s*{escaped}\s*:\s*", "", cleaned, flags=re.IGNORECASE)

    cleaned = _EDGE_ASTERISKS.sub("", cleaned.strip())
    cleaned = _EDGE_QUOTES.sub("", cleaned.strip())
    return cleaned.strip()


# ─── Orchestrator ────────────────────────────────────────────────


class GenerationOrchestrator:
    """
    Prompt, race, sanitise, fall back. One per conversation session.
    """

    def __init__(
        self,
        llm: LLMProvider,
        clock: Clock,
        rng: random.Random,
        engine_state: EngineState,
        awareness_state: AwarenessState,
        config: GenerationConfig,
        engine_config: EngineConfig,
    ) -> None:
        self._llm = llm
        self._clock = clock
        self._rng = rng
        self._engine_state = engine_state
        self._awareness_state = awareness_state
        self._config = config
        self._engine_config = engine_config
        self._logger = logger.bind(system="narrator.voice.orchestrator")

        # Calls that outlived their deadline. Strong refs until they finish.
        self._abandoned: set[asyncio.Task[Any]] = set()
        self._total_abandoned: int = 0
        self._total_late_discarded: int = 0
        self._fallback_reasons: dict[str, int] = {}

    def snapshot(
        self,
        trigger: Trigger,
        payload: dict[str, Any],
        persona: PersonaId,
        volume: int | None = None,
    ) -> ContextSnapshot:
        return build_snapshot(
            trigger,
            payload,
            persona,
            self._engine_state,
            self._awareness_state,
            self._clock.now(),
            self._engine_config,
            volume=volume,
        )

    async def generate_line(
        self,
        trigger: Trigger,
        payload: dict[str, Any],
        persona: PersonaId,
        volume: int | None = None,
    ) -> GenerationResult:
        """Resolves within the deadline plus scheduling slack. Never raises."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        context = self.snapshot(trigger, payload, persona, volume)
        system, user = build_prompt(context)

        try:
            raw = await self._race(system, user)
            text = sanitize_line(raw, persona)
            if len(text) <= self._config.min_line_length:
                raise InvalidGenerationOutput(raw, text)
        except GenerationError as exc:
            return self._fallback(trigger, payload, persona, exc, started)

        latency_ms = int((loop.time() - started) * 1000)
        self._logger.info(
            "line_generated",
            trigger=trigger.value,
            persona=persona.value,
            latency_ms=latency_ms,
        )
        return GenerationResult(
            text=text,
            persona=persona,
            origin=GenerationOrigin.GENERATED,
            trigger=trigger,
            latency_ms=latency_ms,
        )

    def fallback_line(
        self,
        trigger: Trigger,
        payload: dict[str, Any],
        persona: PersonaId,
    ) -> GenerationResult:
        """A static line, without touching the generation service."""
        return GenerationResult(
            text=pick_fallback(trigger, persona, payload, self._rng, self._clock.now()),
            persona=persona,
            origin=GenerationOrigin.FALLBACK,
            trigger=trigger,
        )

    async def _race(self, system: str, user: str) -> str:
        deadline = self._config.deadline_seconds
        task = asyncio.create_task(self._call(system, user), name="narrator_generation")
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=deadline)
        except TimeoutError:
            self._abandon(task)
            raise GenerationTimeout(deadline) from None
        except asyncio.CancelledError:
            self._abandon(task)
            raise
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationFailure(str(exc) or type(exc).__name__) from exc

    async def _call(self, system: str, user: str) -> str:
        response = await self._llm.generate(
            system_prompt=system,
            messages=[Message(role="user", content=user)],
            max_tokens=self._config.max_output_tokens,
            temperature=self._config.temperature,
        )
        return response.text

    def _fallback(
        self,
        trigger: Trigger,
        payload: dict[str, Any],
        persona: PersonaId,
        exc: GenerationError,
        started: float,
    ) -> GenerationResult:
        reason = {
            GenerationTimeout: "timeout",
            InvalidGenerationOutput: "invalid",
        }.get(type(exc), "failure")
        self._fallback_reasons[reason] = self._fallback_reasons.get(reason, 0) + 1

        result = self.fallback_line(trigger, payload, persona)
        result.latency_ms = int((asyncio.get_running_loop().time() - started) * 1000)
        result.fallback_reason = reason
        self._logger.info(
            "generation_fell_back",
            trigger=trigger.value,
            persona=persona.value,
            reason=reason,
            error=str(exc),
        )
        return result

    # ─── Abandoned calls ─────────────────────────────────────────────

    def _abandon(self, task: asyncio.Task[Any]) -> None:
        self._total_abandoned += 1
        self._abandoned.add(task)
        task.add_done_callback(self._on_abandoned_done)

    def _on_abandoned_done(self, task: asyncio.Task[Any]) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.debug("late_generation_failed", error=str(exc))
            return
        self._total_late_discarded += 1
        self._logger.info("late_generation_discarded", chars=len(task.result() or ""))

    async def close(self) -> None:
        """Session teardown: stop any calls still running past their deadline."""
        for task in list(self._abandoned):
            task.cancel()
        if self._abandoned:
            await asyncio.gather(*self._abandoned, return_exceptions=True)
        self._abandoned.clear()

    @property
    def pending_abandoned(self) -> int:
        return len(self._abandoned)

    def metrics(self) -> dict[str, Any]:
        return {
            "abandoned_total": self._total_abandoned,
            "abandoned_pending": len(self._abandoned),
            "late_results_discarded": self._total_late_discarded,
            "fallback_reasons": dict(self._fallback_reasons),
        }
