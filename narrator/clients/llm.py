"""
Narrator — LLM Provider Abstraction

The generation service behind the narrator's voice. Supports Anthropic
Claude, OpenAI-compatible endpoints, and local models via Ollama.

Includes retry with exponential backoff for transient errors (429, 503, 529).
The orchestrator races every call against its own deadline, so the retry
budget here is small. ``NullLLMProvider`` stands in when no
service is configured: it always fails, and the narrator falls back to its
static lines.
"""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from narrator.errors import GenerationFailure

if TYPE_CHECKING:
    from narrator.config import LLMConfig

logger = structlog.get_logger()

# Two retries at 0.5s base: at most 1.5s of backoff, inside a 5s deadline.
_MAX_RETRIES = 2
_BASE_DELAY_S = 0.5
_RETRYABLE_STATUS_CODES = {429, 503, 529}


class Message:
    """A chat message."""

    def __init__(self, role: str, content: str) -> None:
        self.role = role
        self.content = content

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class LLMResponse:
    """Response from an LLM call."""

    def __init__(
        self,
        text: str,
        model: str = "",
        input_tokens: int = 0,
        output_tokens: int = 0,
        finish_reason: str = "stop",
    ) -> None:
        self.text = text
        self.model = model
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.finish_reason = finish_reason

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMProvider(ABC):
    """Abstract interface for generation calls."""

    name: str = "abstract"

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 80,
        temperature: float = 0.9,
    ) -> LLMResponse:
        """Full generation call. May raise, may hang."""
        ...

    async def close(self) -> None:
        return None


async def _post_with_retry(
    client: httpx.AsyncClient,
    path: str,
    payload: dict[str, Any],
) -> dict[str, Any]:
    """POST with exponential backoff on retryable status codes."""
    last_exc: Exception | None = None
    for attempt in range(_MAX_RETRIES + 1):
        try:
            response = await client.post(path, json=payload)
            if response.status_code in _RETRYABLE_STATUS_CODES and attempt < _MAX_RETRIES:
                delay = _BASE_DELAY_S * (2 ** attempt)
                # Respect Retry-After header if present
                retry_after = response.headers.get("retry-after")
                if retry_after:
                    with contextlib.suppress(ValueError):
                        delay = max(delay, float(retry_after))
                logger.warning(
                    "llm_retrying",
                    status=response.status_code,
                    attempt=attempt + 1,
                    delay_s=round(delay, 1),
                )
                await asyncio.sleep(delay)
                continue
            response.raise_for_status()
            return response.json()  # type: ignore[no-any-return]
        except httpx.TimeoutException as exc:
            last_exc = exc
            if attempt < _MAX_RETRIES:
                delay = _BASE_DELAY_S * (2 ** attempt)
                logger.warning(
                    "llm_timeout_retrying",
                    attempt=attempt + 1,
                    delay_s=round(delay, 1),
                )
                await asyncio.sleep(delay)
                continue
            raise
        except httpx.HTTPStatusError as exc:
            # Include API error details in the exception message
            body = ""
            with contextlib.suppress(Exception):
                body = exc.response.text[:500]
            raise httpx.HTTPStatusError(
                message=f"{exc.response.status_code}: {body}",
                request=exc.request,
                response=exc.response,
            ) from exc
    raise last_exc or GenerationFailure("LLM request failed after retries")


class AnthropicProvider(LLMProvider):
    """Claude API provider with retry and exponential backoff."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-haiku-latest",
        base_url: str = "https://api.anthropic.com/v1",
    ) -> None:
        if not api_key.strip():
            raise ValueError("Anthropic provider requires an API key")
        self._model = model
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "x-api-key": api_key.strip(),
                "anthropic-version": "2023-06-01",
                "content-type": "application/json",
            },
            timeout=10.0,
        )

    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 80,
        temperature: float = 0.9,
    ) -> LLMResponse:
        payload: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system_prompt,
            "messages": [m.to_dict() for m in messages],
        }

        data = await _post_with_retry(self._client, "/messages", payload)

        text = ""
        for block in data.get("content", []):
            if block.get("type") == "text":
                text += block.get("text", "")

        usage = data.get("usage", {})
        return LLMResponse(
            text=text,
            model=data.get("model", self._model),
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            finish_reason=data.get("stop_reason", "stop"),
        )

    async def close(self) -> None:
        await self._client.aclose()


class OpenAIProvider(LLMProvider):
    """OpenAI-compatible chat completions endpoint."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
    ) -> None:
        if not api_key.strip():
            raise ValueError("OpenAI provider requires an API key")
        self._model = model
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key.strip()}",
                "Content-Type": "application/json",
            },
            timeout=10.0,
        )

    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 80,
        temperature: float = 0.9,
    ) -> LLMResponse:
        # OpenAI uses system message inside the messages array
        all_messages: list[dict[str, str]] = []
        if system_prompt:
            all_messages.append({"role": "system", "content": system_prompt})
        for m in messages:
            content = m.content if m.content else " "  # OpenAI rejects empty content
            all_messages.append({"role": m.role, "content": content})

        payload: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": all_messages,
        }

        data = await _post_with_retry(self._client, "/chat/completions", payload)

        choices = data.get("choices", [])
        text = choices[0]["message"]["content"] if choices else ""
        usage = data.get("usage", {})

        return LLMResponse(
            text=text or "",
            model=data.get("model", self._model),
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            finish_reason=choices[0].get("finish_reason", "stop") if choices else "stop",
        )

    async def close(self) -> None:
        await self._client.aclose()


class OllamaProvider(LLMProvider):
    """Local model via Ollama."""

    name = "ollama"

    def __init__(
        self,
        model: str = "llama3.1:8b",
        endpoint: str = "http://localhost:11434",
    ) -> None:
        self._model = model
        self._client = httpx.AsyncClient(
            base_url=endpoint,
            timeout=30.0,
        )

    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 80,
        temperature: float = 0.9,
    ) -> LLMResponse:
        all_messages = [{"role": "system", "content": system_prompt}]
        all_messages.extend(m.to_dict() for m in messages)

        payload = {
            "model": self._model,
            "messages": all_messages,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }

        response = await self._client.post("/api/chat", json=payload)
        response.raise_for_status()
        data = response.json()

        return LLMResponse(
            text=data.get("message", {}).get("content", ""),
            model=self._model,
            input_tokens=data.get("prompt_eval_count", 0),
            output_tokens=data.get("eval_count", 0),
        )

    async def close(self) -> None:
        await self._client.aclose()


class NullLLMProvider(LLMProvider):
    """No generation service. Every call fails immediately."""

    name = "none"

    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 80,
        temperature: float = 0.9,
    ) -> LLMResponse:
        raise GenerationFailure("no generation service configured")


def _build_provider(provider: str, config: LLMConfig, model: str) -> LLMProvider:
    if provider == "none":
        return NullLLMProvider()
    if provider == "anthropic":
        if config.endpoint:
            return AnthropicProvider(api_key=config.api_key, model=model, base_url=config.endpoint)
        return AnthropicProvider(api_key=config.api_key, model=model)
    if provider == "openai":
        if config.endpoint:
            return OpenAIProvider(api_key=config.api_key, model=model, base_url=config.endpoint)
        return OpenAIProvider(api_key=config.api_key, model=model)
    if provider == "ollama":
        if config.endpoint:
            return OllamaProvider(model=model, endpoint=config.endpoint)
        return OllamaProvider(model=model)
    raise ValueError(f"Unknown LLM provider: {provider}")


def create_llm_provider(config: LLMConfig) -> LLMProvider:
    """Factory to create the configured LLM provider."""
    try:
        return _build_provider(config.provider, config, config.model)
    except Exception as e:
        # Try fallback provider if configured
        if config.fallback_provider:
            logger.warning(
                "llm_provider_init_failed",
                provider=config.provider,
                error=str(e),
                fallback=config.fallback_provider,
            )
            try:
                return _build_provider(
                    config.fallback_provider,
                    config,
                    config.fallback_model or config.model,
                )
            except Exception as fallback_error:
                logger.error("llm_fallback_also_failed", error=str(fallback_error))
                raise ValueError(
                    f"Both primary and fallback LLM providers failed. "
                    f"Primary: {e}, Fallback: {fallback_error}"
                ) from e
        raise
