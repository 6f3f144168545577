"""Abstract interface for text-completion providers."""

from abc import ABC, abstractmethod
from typing import Any, List, Optional
import json
import logging
import re

import anthropic
import openai
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from storywright.core.config import Settings, get_settings
from storywright.core.exceptions import MalformedUpstreamResponseError, UpstreamFailureError

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


class CompletionProviderInterface(ABC):
    """Abstract interface for completion providers.

    A provider performs one round trip: a system prompt and a user prompt
    in, the response text out. Any non-success outcome is raised as
    ``UpstreamFailureError``.
    """

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Request a completion.

        Args:
            system_prompt: Instructions and response contract
            user_prompt: The content to analyze
            max_tokens: Override for the configured response budget

        Returns:
            Response text (non-empty)

        Raises:
            UpstreamFailureError: Provider error, or no text in the response
        """
        pass

    @abstractmethod
    def get_model_name(self) -> str:
        """Get the name of the model being used."""
        pass

    async def close(self) -> None:
        """Release the provider's network resources."""
        pass


class AnthropicCompletionProvider(CompletionProviderInterface):
    """Anthropic Claude implementation."""

    def __init__(self, api_key: str, model: str, max_tokens: int = 4096, timeout: float = 120.0):
        """Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key
            model: Model to use
            max_tokens: Default response budget
            timeout: Request timeout in seconds
        """
        self.client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout)
        self.model = model
        self.max_tokens = max_tokens

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        retry=retry_if_exception_type(
            (anthropic.RateLimitError, anthropic.APIConnectionError, anthropic.InternalServerError)
        ),
        reraise=True,
    )
    async def _create_message(self, system_prompt: str, user_prompt: str, max_tokens: int):
        return await self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Complete using Claude."""
        try:
            response = await self._create_message(system_prompt, user_prompt, max_tokens or self.max_tokens)
        except anthropic.APIStatusError as e:
            logger.error(f"Anthropic request failed with status {e.status_code}: {e.message}")
            raise UpstreamFailureError(
                f"AI request failed ({e.status_code}): {e.message}",
                status=e.status_code,
                detail=e.message,
                cause=e,
            )
        except anthropic.APIError as e:
            logger.error(f"Anthropic request failed: {e}")
            raise UpstreamFailureError(f"AI request failed: {e}", detail=str(e), cause=e)

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text.strip():
            raise UpstreamFailureError("AI returned no text content")
        return text

    def get_model_name(self) -> str:
        """Get model name."""
        return self.model

    async def close(self) -> None:
        await self.client.close()


class OpenAICompletionProvider(CompletionProviderInterface):
    """OpenAI GPT implementation."""

    def __init__(self, api_key: str, model: str, max_tokens: int = 4096, timeout: float = 120.0):
        """Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key
            model: Model to use for completions
            max_tokens: Default response budget
            timeout: Request timeout in seconds
        """
        self.client = openai.AsyncOpenAI(api_key=api_key, timeout=timeout)
        self.model = model
        self.max_tokens = max_tokens

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        retry=retry_if_exception_type(
            (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError)
        ),
        reraise=True,
    )
    async def _create_completion(self, system_prompt: str, user_prompt: str, max_tokens: int):
        return await self.client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Complete using GPT."""
        try:
            response = await self._create_completion(system_prompt, user_prompt, max_tokens or self.max_tokens)
        except openai.APIStatusError as e:
            logger.error(f"OpenAI request failed with status {e.status_code}: {e.message}")
            raise UpstreamFailureError(
                f"AI request failed ({e.status_code}): {e.message}",
                status=e.status_code,
                detail=e.message,
                cause=e,
            )
        except openai.APIError as e:
            logger.error(f"OpenAI request failed: {e}")
            raise UpstreamFailureError(f"AI request failed: {e}", detail=str(e), cause=e)

        text = response.choices[0].message.content if response.choices else None
        if not text or not text.strip():
            raise UpstreamFailureError("AI returned no text content")
        return text

    def get_model_name(self) -> str:
        """Get model name."""
        return self.model

    async def close(self) -> None:
        await self.client.close()


# Registry for completion providers
COMPLETION_PROVIDERS = {
    "anthropic": AnthropicCompletionProvider,
    "openai": OpenAICompletionProvider,
}


# Provider built from the global settings, shared by every caller
_shared_provider: Optional[CompletionProviderInterface] = None
_shared_settings: Optional[Settings] = None
# Shared providers replaced after a settings reload, closed on shutdown
_retired_providers: List[CompletionProviderInterface] = []


def get_completion_provider(settings: Optional[Settings] = None) -> CompletionProviderInterface:
    """Get the completion provider for the global or the given settings.

    Without ``settings`` a single provider is built for the current global
    settings and reused by every call; ``reload_settings()`` produces a new
    settings instance and therefore a new provider. Passing ``settings``
    always builds a new provider that the caller owns.

    Raises:
        UpstreamFailureError: Unknown provider or missing API key
    """
    global _shared_provider, _shared_settings

    if settings is not None:
        return create_completion_provider(settings)

    current = get_settings()
    if _shared_provider is None or _shared_settings is not current:
        provider = create_completion_provider(current)
        if _shared_provider is not None:
            _retired_providers.append(_shared_provider)
        _shared_provider, _shared_settings = provider, current
    return _shared_provider


async def close_completion_provider() -> None:
    """Close the shared provider and any it replaced."""
    global _shared_provider, _shared_settings

    providers = list(_retired_providers)
    if _shared_provider is not None:
        providers.append(_shared_provider)
    _retired_providers.clear()
    _shared_provider, _shared_settings = None, None

    for provider in providers:
        await provider.close()
    if providers:
        logger.info(f"Closed {len(providers)} completion provider(s)")


def create_completion_provider(settings: Settings) -> CompletionProviderInterface:
    """Build a new completion provider from ``settings``.

    Raises:
        UpstreamFailureError: Unknown provider or missing API key
    """
    llm_config = settings.llm

    provider_class = COMPLETION_PROVIDERS.get(llm_config.provider)
    if not provider_class:
        raise UpstreamFailureError(f"Unknown completion provider: {llm_config.provider}")

    api_key = llm_config.get_api_key()
    if not api_key:
        raise UpstreamFailureError(f"API key not found for provider: {llm_config.provider}")

    logger.info(f"Using {llm_config.provider} completion provider with model {llm_config.model}")
    return provider_class(
        api_key=api_key,
        model=llm_config.model,
        max_tokens=llm_config.max_tokens,
        timeout=llm_config.request_timeout,
    )


def parse_json_payload(text: str) -> Any:
    """Parse completion text as JSON, tolerating one surrounding code fence.

    Raises:
        MalformedUpstreamResponseError: The text is not valid JSON
    """
    raw = (text or "").strip()
    if raw.startswith("```"):
        raw = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", raw, count=1))
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Unparseable completion payload ({len(raw)} chars): {e}")
        raise MalformedUpstreamResponseError(
            "Failed to parse AI response as JSON. Try again.", cause=e
        )
