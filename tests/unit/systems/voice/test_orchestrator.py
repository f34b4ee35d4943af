"""
Unit tests for the generation orchestrator: prompt building, output
sanitisation, the deadline race and static fallbacks.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any

import pytest

from narrator.clients.llm import LLMProvider, NullLLMProvider
from narrator.config import EngineConfig, GenerationConfig
from narrator.primitives.clock import ManualClock
from narrator.systems.awareness.types import AwarenessState
from narrator.systems.voice.fallbacks import fallback_pool
from narrator.systems.voice.orchestrator import (
    GenerationOrchestrator,
    build_prompt,
    describe_trigger,
    sanitize_line,
)
from narrator.systems.voice.types import (
    ContextSnapshot,
    EngineState,
    GenerationOrigin,
    PersonaId,
    Trigger,
)


@pytest.fixture
def make_orchestrator(clock: ManualClock) -> Any:
    def _make(
        llm: LLMProvider,
        rng: random.Random | None = None,
        deadline_seconds: float = 5.0,
    ) -> GenerationOrchestrator:
        return GenerationOrchestrator(
            llm=llm,
            clock=clock,
            rng=rng or random.Random(3),
            engine_state=EngineState(),
            awareness_state=AwarenessState(),
            config=GenerationConfig(deadline_seconds=deadline_seconds),
            engine_config=EngineConfig(),
        )

    return _make


class TestSanitize:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ('"The dice remember every throw." — The Spiteful Ledger', "The dice remember every throw."),
            ("Go to sleep. - the ledger", "Go to sleep."),
            ("“The hour has teeth.”", "The hour has teeth."),
            ("<think>should I be cruel?</think>The candle is nearly out.", "The candle is nearly out."),
            ("The page waits.<think>still reasoning about", "The page waits."),
            ("Weary Ledger: You again.", "You again."),
            ("The Prophetic Ledger: It comes at dawn.", "It comes at dawn."),
            ("*The ink runs thin.*", "The ink runs thin."),
            ("  plain line, nothing to strip  ", "plain line, nothing to strip"),
            ("", ""),
        ],
    )
    def test_cleanup(self, raw: str, expected: str) -> None:
        assert sanitize_line(raw) == expected

    def test_persona_name_suffix(self) -> None:
        cleaned = sanitize_line("Stop rolling. – The Weary Ledger", PersonaId.WEARY)
        assert cleaned == "Stop rolling."


class TestPrompt:
    def _context(self, **overrides: Any) -> ContextSnapshot:
        values: dict[str, Any] = {
            "trigger": Trigger.DICE_ROLL,
            "payload": {"total": 7, "values": [3, 4]},
            "persona": PersonaId.WEARY,
            "volume": 1,
            "volume_name": "whisper",
            "session_minutes": 4,
            "interaction_count": 3,
            "clock_time": "3:07 AM",
            "time_period": "deep_night",
            "is_deep_night": True,
            "is_late_night": True,
        }
        values.update(overrides)
        return ContextSnapshot(**values)

    def test_system_half_carries_persona_and_volume(self) -> None:
        system, _ = build_prompt(self._context(location="Harbour"))

        assert system.startswith("You are an old, stained notebook")
        assert "VOLUME: whisper. Barely audible. A fragment." in system
        assert "TIME: 3:07 AM (deep_night, the small hours)" in system
        assert "SESSION: 4 minutes, 3 interactions" in system
        assert "LOCATION: Harbour" in system
        assert system.endswith("5-10 words maximum.")

    def test_location_line_omitted_when_unknown(self) -> None:
        system, _ = build_prompt(self._context())
        assert "LOCATION" not in system

    def test_user_half_describes_trigger(self) -> None:
        _, user = build_prompt(self._context(persona=PersonaId.SPITE))

        assert user.startswith("TRIGGER: The user rolled 7. Unremarkable.")
        assert user.endswith("Respond as The Spiteful Ledger. One line only.")


class TestDescribeTrigger:
    def test_return_after_absence(self) -> None:
        text = describe_trigger(
            Trigger.ABSENCE,
            {"absence": {"minutes": 90, "formatted": "1h 30m"}},
        )
        assert "1h 30m" in text

    def test_dice_extremes(self) -> None:
        assert "worst" in describe_trigger(Trigger.DICE_ROLL, {"is_worst_case": True})
        assert "Doubles, 4 and 4" in describe_trigger(
            Trigger.DICE_ROLL, {"is_double": True, "values": [4, 4], "total": 8}
        )

    def test_time_shift_into_small_hours(self) -> None:
        text = describe_trigger(
            Trigger.TIME_SHIFT,
            {"from": "late_night", "to": "deep_night", "is_deep_night": True},
        )
        assert "late_night to deep_night" in text
        assert "small hours" in text

    def test_unknown_fidget_pattern(self) -> None:
        text = describe_trigger(Trigger.FIDGET_PATTERN, {"pattern": "something_new"})
        assert "fidgeting" in text


class TestGenerateLine:
    @pytest.mark.asyncio
    async def test_generated_line_is_sanitised(self, make_orchestrator: Any, make_llm: Any) -> None:
        llm = make_llm('"The dice remember every throw." — The Spiteful Ledger')
        orchestrator = make_orchestrator(llm)

        result = await orchestrator.generate_line(Trigger.DICE_ROLL, {"total": 7}, PersonaId.SPITE)

        assert result.origin == GenerationOrigin.GENERATED
        assert result.text == "The dice remember every throw."
        assert result.fallback_reason is None
        system, messages, max_tokens = llm.calls[0]
        assert "VOLUME:" in system
        assert messages[0].content.startswith("TRIGGER:")
        assert max_tokens == 80

    @pytest.mark.asyncio
    async def test_too_short_output_falls_back(self, make_orchestrator: Any, make_llm: Any) -> None:
        orchestrator = make_orchestrator(make_llm('"ok"'))

        result = await orchestrator.generate_line(Trigger.DICE_ROLL, {}, PersonaId.WEARY)

        assert result.origin == GenerationOrigin.FALLBACK
        assert result.fallback_reason == "invalid"
        assert result.text in fallback_pool(Trigger.DICE_ROLL, PersonaId.WEARY)

    @pytest.mark.asyncio
    async def test_service_error_falls_back(self, make_orchestrator: Any, failing_llm: Any) -> None:
        orchestrator = make_orchestrator(failing_llm)

        result = await orchestrator.generate_line(Trigger.CASE_CHANGE, {}, PersonaId.PROPHET)

        assert result.origin == GenerationOrigin.FALLBACK
        assert result.fallback_reason == "failure"
        assert result.text in fallback_pool(Trigger.CASE_CHANGE, PersonaId.PROPHET)
        assert orchestrator.metrics()["fallback_reasons"] == {"failure": 1}

    @pytest.mark.asyncio
    async def test_no_service_fallback_is_deterministic(self, make_orchestrator: Any) -> None:
        first = make_orchestrator(NullLLMProvider(), rng=random.Random(7))
        second = make_orchestrator(NullLLMProvider(), rng=random.Random(7))

        a = [await first.generate_line(Trigger.VITALS_CHANGE, {}, PersonaId.SPITE) for _ in range(5)]
        b = [await second.generate_line(Trigger.VITALS_CHANGE, {}, PersonaId.SPITE) for _ in range(5)]

        assert [r.text for r in a] == [r.text for r in b]
        assert all(r.fallback_reason == "failure" for r in a)


class TestDeadline:
    @pytest.mark.asyncio
    async def test_hung_call_resolves_within_deadline(
        self, make_orchestrator: Any, hanging_llm: Any
    ) -> None:
        orchestrator = make_orchestrator(hanging_llm, deadline_seconds=0.2)
        loop = asyncio.get_running_loop()

        started = loop.time()
        result = await orchestrator.generate_line(Trigger.DICE_ROLL, {}, PersonaId.WEARY)
        elapsed = loop.time() - started

        assert elapsed < 0.2 + 0.5
        assert result.origin == GenerationOrigin.FALLBACK
        assert result.fallback_reason == "timeout"
        assert orchestrator.pending_abandoned == 1

        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_late_result_is_discarded(
        self, make_orchestrator: Any, hanging_llm: Any
    ) -> None:
        orchestrator = make_orchestrator(hanging_llm, deadline_seconds=0.05)

        result = await orchestrator.generate_line(Trigger.DICE_ROLL, {}, PersonaId.WEARY)
        hanging_llm.release.set()
        await asyncio.sleep(0.05)

        metrics = orchestrator.metrics()
        assert result.text != hanging_llm.reply
        assert metrics["abandoned_total"] == 1
        assert metrics["abandoned_pending"] == 0
        assert metrics["late_results_discarded"] == 1

    @pytest.mark.asyncio
    async def test_close_cancels_abandoned_calls(
        self, make_orchestrator: Any, hanging_llm: Any
    ) -> None:
        orchestrator = make_orchestrator(hanging_llm, deadline_seconds=0.05)

        await orchestrator.generate_line(Trigger.DICE_ROLL, {}, PersonaId.WEARY)
        await orchestrator.close()

        assert orchestrator.pending_abandoned == 0
        assert orchestrator.metrics()["late_results_discarded"] == 0
