"""Shared fixtures: a hand-driven clock, seeded randomness, display and LLM stubs."""

from __future__ import annotations

import asyncio
import random
from datetime import datetime
from typing import Any

import pytest

from narrator.clients.llm import LLMProvider, LLMResponse, Message
from narrator.clients.persistence import NullAwarenessStore
from narrator.config import NarratorConfig
from narrator.primitives.clock import ManualClock
from narrator.session import NarratorSession

# A Tuesday afternoon: well away from the late and deep-night windows.
AFTERNOON = datetime(2024, 5, 14, 15, 0, 0)


class RecordingSurface:
    """Display surface that remembers every call."""

    def __init__(self) -> None:
        self.slots: list[tuple[str, str]] = []
        self.notifications: list[tuple[str, str, int]] = []

    def set_persistent_slot(self, text: str, persona_token: str) -> None:
        self.slots.append((text, persona_token))

    def raise_notification(self, text: str, title: str, duration_ms: int) -> None:
        self.notifications.append((text, title, duration_ms))


class ScriptedLLM(LLMProvider):
    """Returns canned replies in order, repeating the last one."""

    name = "scripted"

    def __init__(self, *replies: str, delay_s: float = 0.0) -> None:
        self._replies = list(replies) or ["The page remembers what you did."]
        self._delay_s = delay_s
        self.calls: list[tuple[str, list[Message], int]] = []

    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 80,
        temperature: float = 0.9,
    ) -> LLMResponse:
        self.calls.append((system_prompt, messages, max_tokens))
        if self._delay_s:
            await asyncio.sleep(self._delay_s)
        reply = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        return LLMResponse(text=reply, model="scripted")


class FailingLLM(LLMProvider):
    name = "failing"

    def __init__(self) -> None:
        self.calls = 0

    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 80,
        temperature: float = 0.9,
    ) -> LLMResponse:
        self.calls += 1
        raise ConnectionError("service unavailable")


class HangingLLM(LLMProvider):
    """Never answers until released."""

    name = "hanging"

    def __init__(self, reply: str = "A line that arrived far too late.") -> None:
        self.release = asyncio.Event()
        self.reply = reply
        self.calls = 0

    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 80,
        temperature: float = 0.9,
    ) -> LLMResponse:
        self.calls += 1
        await self.release.wait()
        return LLMResponse(text=self.reply)


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(AFTERNOON)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def config() -> NarratorConfig:
    return NarratorConfig()


@pytest.fixture
def surface() -> RecordingSurface:
    return RecordingSurface()


@pytest.fixture
def scripted_llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def make_llm() -> type[ScriptedLLM]:
    return ScriptedLLM


@pytest.fixture
def failing_llm() -> FailingLLM:
    return FailingLLM()


@pytest.fixture
def hanging_llm() -> HangingLLM:
    return HangingLLM()


@pytest.fixture
def make_session(
    config: NarratorConfig,
    clock: ManualClock,
    rng: random.Random,
    surface: RecordingSurface,
    scripted_llm: ScriptedLLM,
) -> Any:
    """Factory for a fully wired session; keyword overrides replace collaborators."""

    def _make(**overrides: Any) -> NarratorSession:
        params: dict[str, Any] = {
            "conversation_id": "conv-1",
            "config": config,
            "llm": scripted_llm,
            "store": NullAwarenessStore(),
            "surface": surface,
            "clock": clock,
            "rng": rng,
            "sleep": no_sleep,
        }
        params.update(overrides)
        return NarratorSession(**params)

    return _make
