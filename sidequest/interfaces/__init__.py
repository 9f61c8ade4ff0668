"""Interfaces for Sidequest."""

from .llm_interface import (
    LLMProviderInterface,
    OpenAIProvider,
    AnthropicProvider,
    LLM_PROVIDERS,
    get_llm_provider,
    close_llm_provider,
)

__all__ = [
    "LLMProviderInterface",
    "OpenAIProvider",
    "AnthropicProvider",
    "LLM_PROVIDERS",
    "get_llm_provider",
    "close_llm_provider",
]
