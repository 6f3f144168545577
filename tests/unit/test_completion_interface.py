"""Unit tests for completion providers and payload parsing."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import pytest

from storywright.c2_story_service import RefinementService
from storywright.core.config import LLMConfig, Settings, reload_settings
from storywright.core.exceptions import MalformedUpstreamResponseError, UpstreamFailureError
from storywright.interfaces import (
    AnthropicCompletionProvider,
    OpenAICompletionProvider,
    close_completion_provider,
    get_completion_provider,
    parse_json_payload,
)
from storywright.interfaces import completion_interface


class TestParseJsonPayload:
    """Test cases for JSON payload parsing."""

    def test_plain_json(self):
        assert parse_json_payload('{"qualityScore": 90}') == {"qualityScore": 90}

    def test_fenced_json(self):
        text = '```json\n{"qualityScore": 90}\n```'

        assert parse_json_payload(text) == {"qualityScore": 90}

    def test_bare_fence_and_whitespace(self):
        assert parse_json_payload('  ```\n[1, 2]\n```  ') == [1, 2]

    def test_garbage_is_malformed(self):
        with pytest.raises(MalformedUpstreamResponseError) as exc_info:
            parse_json_payload("Sure! Here is the JSON you asked for")

        assert exc_info.value.message == "Failed to parse AI response as JSON. Try again."
        assert exc_info.value.http_status == 502


class TestProviderFactory:
    """Test cases for provider selection."""

    def test_missing_key_is_upstream_failure(self):
        settings = Settings(llm=LLMConfig(provider="anthropic"))

        with pytest.raises(UpstreamFailureError, match="API key not found"):
            get_completion_provider(settings)

    def test_anthropic_selected(self):
        settings = Settings(llm=LLMConfig(provider="anthropic", anthropic_api_key="sk-ant-test", model="claude-test"))

        provider = get_completion_provider(settings)

        assert isinstance(provider, AnthropicCompletionProvider)
        assert provider.get_model_name() == "claude-test"

    def test_openai_selected(self):
        settings = Settings(llm=LLMConfig(provider="openai", openai_api_key="sk-test", model="gpt-test"))

        provider = get_completion_provider(settings)

        assert isinstance(provider, OpenAICompletionProvider)
        assert provider.get_model_name() == "gpt-test"

    def test_unregistered_provider(self, monkeypatch):
        monkeypatch.delitem(completion_interface.COMPLETION_PROVIDERS, "openai")
        settings = Settings(llm=LLMConfig(provider="openai", openai_api_key="sk-test"))

        with pytest.raises(UpstreamFailureError, match="Unknown completion provider"):
            get_completion_provider(settings)


class TestAnthropicProvider:
    """Test cases for the Anthropic provider's error mapping."""

    @pytest.fixture
    def provider(self):
        return AnthropicCompletionProvider(api_key="sk-ant-test", model="claude-test", max_tokens=512)

    def test_sdk_client_owns_its_http_client(self):
        provider = AnthropicCompletionProvider(api_key="sk-ant-test", model="claude-test", timeout=15.0)

        assert isinstance(provider.client, anthropic.AsyncAnthropic)
        assert provider.client.timeout == 15.0

    @pytest.mark.asyncio
    async def test_joins_text_blocks(self, provider):
        response = SimpleNamespace(content=[
            SimpleNamespace(type="text", text='{"a": '),
            SimpleNamespace(type="tool_use"),
            SimpleNamespace(type="text", text="1}"),
        ])
        provider.client.messages.create = AsyncMock(return_value=response)

        text = await provider.complete("system", "user")

        assert text == '{"a": 1}'
        kwargs = provider.client.messages.create.call_args.kwargs
        assert kwargs["max_tokens"] == 512
        assert kwargs["system"] == "system"

    @pytest.mark.asyncio
    async def test_empty_text_is_upstream_failure(self, provider):
        provider.client.messages.create = AsyncMock(return_value=SimpleNamespace(content=[]))

        with pytest.raises(UpstreamFailureError, match="no text content"):
            await provider.complete("system", "user")

    @pytest.mark.asyncio
    async def test_status_error_carries_status(self, provider):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        error = anthropic.BadRequestError(
            "prompt too long",
            response=httpx.Response(400, request=request),
            body=None,
        )
        provider.client.messages.create = AsyncMock(side_effect=error)

        with pytest.raises(UpstreamFailureError) as exc_info:
            await provider.complete("system", "user", max_tokens=100)

        assert exc_info.value.status == 400
        assert exc_info.value.to_dict()["upstream_status"] == 400
        assert provider.client.messages.create.call_count == 1

    @pytest.mark.asyncio
    async def test_close_closes_sdk_client(self, provider):
        provider.client.close = AsyncMock()

        await provider.close()

        provider.client.close.assert_awaited_once()


class TestSharedProvider:
    """Test cases for reuse and shutdown of the provider built from global settings."""

    @pytest.mark.asyncio
    async def test_repeated_service_calls_reuse_one_provider(self, counting_providers, prd_with_stories):
        ids = prd_with_stories
        shared = get_completion_provider()
        for _ in range(3):
            shared.queue_response({"qualityScore": 70, "qualityExplanation": "Needs detail"})

        for _ in range(3):
            await RefinementService.refine_story(ids["prd_id"], ids["cart"])

        assert len(counting_providers) == 1
        assert shared.call_count == 3
        assert shared.api_key == "sk-ant-test"

        await close_completion_provider()

        assert shared.closed is True

    @pytest.mark.asyncio
    async def test_reload_builds_new_provider_and_retires_old(self, counting_providers):
        first = get_completion_provider()

        reload_settings()
        second = get_completion_provider()

        assert second is not first
        assert get_completion_provider() is second
        assert first.closed is False

        await close_completion_provider()

        assert first.closed is True
        assert second.closed is True
        assert get_completion_provider() is not second

    def test_explicit_settings_build_a_private_provider(self, counting_providers):
        settings = Settings(llm=LLMConfig(provider="anthropic", anthropic_api_key="sk-ant-other"))

        private = get_completion_provider(settings)

        assert private is not get_completion_provider()
        assert private.api_key == "sk-ant-other"
        assert len(counting_providers) == 2

    @pytest.mark.asyncio
    async def test_close_without_provider(self, counting_providers):
        await close_completion_provider()

        assert counting_providers == []
