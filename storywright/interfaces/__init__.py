"""Interfaces for Storywright components."""

from .completion_interface import (
    CompletionProviderInterface,
    AnthropicCompletionProvider,
    OpenAICompletionProvider,
    COMPLETION_PROVIDERS,
    get_completion_provider,
    create_completion_provider,
    close_completion_provider,
    parse_json_payload,
)

__all__ = [
    "CompletionProviderInterface",
    "AnthropicCompletionProvider",
    "OpenAICompletionProvider",
    "COMPLETION_PROVIDERS",
    "get_completion_provider",
    "create_completion_provider",
    "close_completion_provider",
    "parse_json_payload",
]
