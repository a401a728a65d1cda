"""
Chat-completion backends for the oracle.

Every oracle task sends one system message and one user message and expects a
single JSON object back, so each backend only needs to support that shape:
OpenAI through its JSON response format, Anthropic through a system-prompt
instruction, and a local Ollama server through ``format: json``.

The backend is chosen with TRANSLATIONMATCHER_LLM_PROVIDER (default openai).
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

ANTHROPIC_MAX_TOKENS = 4096
JSON_INSTRUCTION = "Respond with a single JSON object only."
DEFAULT_OLLAMA_URL = "http://localhost:11434"


class LLMProviderType(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


@dataclass
class LLMResponse:
    content: str
    model: str
    total_tokens: int = 0


class LLMProvider(ABC):
    """One chat-completion backend."""

    provider_type: LLMProviderType

    @abstractmethod
    def chat_completion(
        self,
        messages: list[dict[str, str]],
        model: str,
        *,
        temperature: float = 0.2,
        timeout: float = 300.0,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Send ``messages`` and return the assistant's text."""

    @abstractmethod
    def is_available(self) -> bool:
        """True when the backend can be called (key present, server up)."""


class OpenAIProvider(LLMProvider):
    provider_type = LLMProviderType.OPENAI

    def __init__(self, api_key: str | None = None, base_url: str | None = None):
        self._api_key = api_key
        self._base_url = base_url
        self._client: Any = None

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(api_key=self._api_key, base_url=self._base_url, max_retries=2)
        return self._client

    def chat_completion(
        self,
        messages: list[dict[str, str]],
        model: str,
        *,
        temperature: float = 0.2,
        timeout: float = 300.0,
        json_mode: bool = False,
    ) -> LLMResponse:
        options: dict[str, Any] = {"temperature": temperature, "timeout": timeout}
        if json_mode:
            options["response_format"] = {"type": "json_object"}
        response = self._get_client().chat.completions.create(model=model, messages=messages, **options)
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model,
            total_tokens=response.usage.total_tokens if response.usage else 0,
        )

    def is_available(self) -> bool:
        return bool(self._api_key)


def _split_system(messages: list[dict[str, str]]) -> tuple[str, list[dict[str, str]]]:
    """Anthropic takes the system prompt outside the message list."""
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    rest = [{"role": m["role"], "content": m["content"]} for m in messages if m["role"] != "system"]
    return system, rest


class AnthropicProvider(LLMProvider):
    provider_type = LLMProviderType.ANTHROPIC

    def __init__(self, api_key: str | None = None):
        self._api_key = api_key
        self._client: Any = None

    def _get_client(self) -> Any:
        if self._client is None:
            from anthropic import Anthropic

            self._client = Anthropic(api_key=self._api_key)
        return self._client

    def chat_completion(
        self,
        messages: list[dict[str, str]],
        model: str,
        *,
        temperature: float = 0.2,
        timeout: float = 300.0,
        json_mode: bool = False,
    ) -> LLMResponse:
        system, turns = _split_system(messages)
        if json_mode:
            system = f"{system}\n\n{JSON_INSTRUCTION}".strip()

        options: dict[str, Any] = {"max_tokens": ANTHROPIC_MAX_TOKENS, "timeout": timeout}
        if system:
            options["system"] = system
        if temperature > 0:
            options["temperature"] = temperature

        response = self._get_client().messages.create(model=model, messages=turns, **options)
        text = "".join(getattr(block, "text", "") for block in response.content or [])
        usage = response.usage
        return LLMResponse(
            content=text,
            model=response.model,
            total_tokens=(usage.input_tokens + usage.output_tokens) if usage else 0,
        )

    def is_available(self) -> bool:
        return bool(self._api_key)


class OllamaProvider(LLMProvider):
    provider_type = LLMProviderType.OLLAMA

    def __init__(self, base_url: str = DEFAULT_OLLAMA_URL):
        self._base_url = base_url.rstrip("/")
        self._available: bool | None = None

    def chat_completion(
        self,
        messages: list[dict[str, str]],
        model: str,
        *,
        temperature: float = 0.2,
        timeout: float = 300.0,
        json_mode: bool = False,
    ) -> LLMResponse:
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature},
        }
        if json_mode:
            payload["format"] = "json"

        with httpx.Client(timeout=timeout) as client:
            response = client.post(f"{self._base_url}/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()

        return LLMResponse(
            content=data.get("message", {}).get("content", ""),
            model=data.get("model", model),
            total_tokens=data.get("prompt_eval_count", 0) + data.get("eval_count", 0),
        )

    def is_available(self) -> bool:
        if self._available is None:
            try:
                with httpx.Client(timeout=5.0) as client:
                    self._available = client.get(f"{self._base_url}/api/tags").status_code == 200
            except (httpx.HTTPError, OSError):
                self._available = False
        return self._available


_KEY_ENV = {
    LLMProviderType.OPENAI: ("OPENAI_API_KEY", "OpenAI"),
    LLMProviderType.ANTHROPIC: ("ANTHROPIC_API_KEY", "Anthropic"),
}


def get_llm_client(
    provider: LLMProviderType | str | None = None,
    *,
    api_key: str | None = None,
    openai_base_url: str | None = None,
    ollama_base_url: str | None = None,
) -> LLMProvider:
    """
    Build the backend for ``provider`` (default: TRANSLATIONMATCHER_LLM_PROVIDER).

    Hosted backends take ``api_key`` or fall back to their environment variable.

    Raises:
        ValueError: unknown provider, missing key, or unreachable Ollama server.
    """
    if provider is None:
        provider = os.environ.get("TRANSLATIONMATCHER_LLM_PROVIDER", "openai")
    kind = provider if isinstance(provider, LLMProviderType) else LLMProviderType(provider.lower())

    if kind == LLMProviderType.OLLAMA:
        base_url = ollama_base_url or os.environ.get("OLLAMA_BASE_URL", DEFAULT_OLLAMA_URL)
        client: LLMProvider = OllamaProvider(base_url=base_url)
        if not client.is_available():
            raise ValueError(f"Ollama server not available at {base_url}")
        return client

    env_var, label = _KEY_ENV[kind]
    key = api_key or os.environ.get(env_var)
    if kind == LLMProviderType.OPENAI:
        client = OpenAIProvider(api_key=key, base_url=openai_base_url or os.environ.get("OPENAI_BASE_URL"))
    else:
        client = AnthropicProvider(api_key=key)
    if not client.is_available():
        raise ValueError(f"{label} provider requires {env_var}")
    return client
