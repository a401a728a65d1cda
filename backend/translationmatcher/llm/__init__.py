"""
LLM Provider Module

Provides a unified interface for multiple LLM providers (OpenAI, Anthropic, Ollama).
The oracle layer (translationmatcher.oracle) builds on top of these providers.
"""

from translationmatcher.llm.providers import (
    AnthropicProvider,
    LLMProvider,
    LLMProviderType,
    LLMResponse,
    OllamaProvider,
    OpenAIProvider,
    get_llm_client,
)

__all__ = [
    "LLMProvider",
    "LLMProviderType",
    "LLMResponse",
    "OpenAIProvider",
    "AnthropicProvider",
    "OllamaProvider",
    "get_llm_client",
]
