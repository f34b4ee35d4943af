"""Unit tests for the LLM provider layer."""

from __future__ import annotations

import json

import httpx
import pytest

from narrator.clients import llm as llm_module
from narrator.clients.llm import (
    AnthropicProvider,
    Message,
    NullLLMProvider,
    OllamaProvider,
    OpenAIProvider,
    _post_with_retry,
    create_llm_provider,
)
from narrator.config import LLMConfig
from narrator.errors import GenerationFailure


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(llm_module, "_BASE_DELAY_S", 0.0)


class TestFactory:
    def test_none_gives_null_provider(self) -> None:
        assert isinstance(create_llm_provider(LLMConfig()), NullLLMProvider)

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            create_llm_provider(LLMConfig(provider="telepathy"))

    def test_missing_key_uses_fallback(self) -> None:
        config = LLMConfig(
            provider="anthropic",
            api_key="",
            fallback_provider="ollama",
            fallback_model="llama3.1:8b",
        )
        provider = create_llm_provider(config)
        assert isinstance(provider, OllamaProvider)

    def test_missing_key_without_fallback_raises(self) -> None:
        with pytest.raises(ValueError, match="API key"):
            create_llm_provider(LLMConfig(provider="openai", api_key="  "))

    def test_configured_openai(self) -> None:
        provider = create_llm_provider(LLMConfig(provider="openai", api_key="sk-test"))
        assert isinstance(provider, OpenAIProvider)


class TestNullProvider:
    @pytest.mark.asyncio
    async def test_always_fails(self) -> None:
        with pytest.raises(GenerationFailure):
            await NullLLMProvider().generate("system", [Message("user", "hi")])


class TestAnthropicProvider:
    @pytest.mark.asyncio
    async def test_parses_text_blocks(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "model": "claude-test",
                    "content": [
                        {"type": "text", "text": "The ink "},
                        {"type": "text", "text": "is still wet."},
                    ],
                    "usage": {"input_tokens": 40, "output_tokens": 6},
                    "stop_reason": "end_turn",
                },
            )

        provider = AnthropicProvider(api_key="test-key")
        provider._client = httpx.AsyncClient(
            base_url="https://api.test/v1", transport=httpx.MockTransport(handler)
        )

        response = await provider.generate("be brief", [Message("user", "TRIGGER: roll")], max_tokens=40)
        await provider.close()

        assert response.text == "The ink is still wet."
        assert response.total_tokens == 46
        assert response.finish_reason == "end_turn"
        assert seen[0]["system"] == "be brief"
        assert seen[0]["max_tokens"] == 40
        assert seen[0]["messages"] == [{"role": "user", "content": "TRIGGER: roll"}]

    def test_rejects_blank_key(self) -> None:
        with pytest.raises(ValueError):
            AnthropicProvider(api_key=" ")


class TestRetry:
    @pytest.mark.asyncio
    async def test_retries_overloaded_then_succeeds(self) -> None:
        statuses = iter([529, 429, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            return httpx.Response(status, json={"ok": status == 200})

        async with httpx.AsyncClient(
            base_url="https://api.test", transport=httpx.MockTransport(handler)
        ) as client:
            data = await _post_with_retry(client, "/messages", {})

        assert data == {"ok": True}

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503, text="busy")

        async with httpx.AsyncClient(
            base_url="https://api.test", transport=httpx.MockTransport(handler)
        ) as client:
            with pytest.raises(httpx.HTTPStatusError, match="503: busy"):
                await _post_with_retry(client, "/messages", {})

        assert calls == 3

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(400, text="bad request")

        async with httpx.AsyncClient(
            base_url="https://api.test", transport=httpx.MockTransport(handler)
        ) as client:
            with pytest.raises(httpx.HTTPStatusError):
                await _post_with_retry(client, "/messages", {})

        assert calls == 1
