"""
Unit tests for the LangChain-backed completion provider.

The chat model is replaced with a mock so no network call is made.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from app.core.exceptions import ProviderFailureError
from app.schemas.completion import ImagePart, ImageUrl, ProviderMessage, TextPart
from app.services.completion import (
    OpenAICompletionProvider,
    reply_text,
    to_langchain_message,
)


@pytest.fixture
def provider():
    return OpenAICompletionProvider(api_key="sk-test", default_model="gpt-4o-mini")


def mock_llm(provider: OpenAICompletionProvider, response=None, error=None) -> MagicMock:
    llm = MagicMock()
    llm.ainvoke = AsyncMock(return_value=response, side_effect=error)
    provider._models[provider.default_model] = llm
    return llm


class TestMessageConversion:

    def test_scalar_user_message(self):
        converted = to_langchain_message(ProviderMessage(role="user", content="hi"))

        assert isinstance(converted, HumanMessage)
        assert converted.content == "hi"

    def test_assistant_and_system_roles(self):
        assert isinstance(to_langchain_message(ProviderMessage(role="assistant", content="a")), AIMessage)
        assert isinstance(to_langchain_message(ProviderMessage(role="system", content="s")), SystemMessage)

    def test_content_array_passed_through(self):
        message = ProviderMessage(role="user", content=[
            TextPart(text="look"),
            ImagePart(image_url=ImageUrl(url="data:image/png;base64,AA")),
        ])

        converted = to_langchain_message(message)

        assert converted.content == [
            {"type": "text", "text": "look"},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,AA"}},
        ]

    def test_legacy_image_url_becomes_multipart(self):
        message = ProviderMessage(role="user", content="what", image_url=ImageUrl(url="data:image/jpeg;base64,BB"))

        converted = to_langchain_message(message)

        assert converted.content == [
            {"type": "text", "text": "what"},
            {"type": "image_url", "image_url": {"url": "data:image/jpeg;base64,BB"}},
        ]

    def test_reply_text_flattens_parts(self):
        assert reply_text("plain") == "plain"
        assert reply_text([{"type": "text", "text": "a"}, "b", {"type": "other"}]) == "ab"


class TestOpenAICompletionProvider:

    @pytest.mark.asyncio
    async def test_complete_returns_reply_and_usage(self, provider):
        llm = mock_llm(provider, AIMessage(
            content="Hello!",
            usage_metadata={"input_tokens": 12, "output_tokens": 3, "total_tokens": 15}
        ))

        result = await provider.complete([ProviderMessage(role="user", content="hi")])

        assert result.message.role == "assistant"
        assert result.message.content == "Hello!"
        assert result.usage.prompt_tokens == 12
        assert result.usage.completion_tokens == 3
        assert result.usage.total_tokens == 15
        [sent] = llm.ainvoke.call_args.args
        assert isinstance(sent[0], HumanMessage)

    @pytest.mark.asyncio
    async def test_missing_usage_is_optional(self, provider):
        mock_llm(provider, AIMessage(content="ok"))

        result = await provider.complete([ProviderMessage(role="user", content="hi")])

        assert result.usage is None

    @pytest.mark.asyncio
    async def test_empty_reply_is_failure(self, provider):
        mock_llm(provider, AIMessage(content=""))

        with pytest.raises(ProviderFailureError, match="No response"):
            await provider.complete([ProviderMessage(role="user", content="hi")])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw, expected", [
        ("Incorrect API key provided", "Invalid API key"),
        ("You exceeded your current quota", "API quota exceeded"),
        ("connection reset", "Completion request failed"),
    ])
    async def test_errors_mapped_to_provider_failure(self, provider, raw, expected):
        mock_llm(provider, error=Exception(raw))

        with pytest.raises(ProviderFailureError) as exc_info:
            await provider.complete([ProviderMessage(role="user", content="hi")])

        assert exc_info.value.message == expected
        assert exc_info.value.original_error is not None

    def test_models_cached_per_name(self, provider):
        assert provider.get_llm() is provider.get_llm()
        assert provider.get_llm("gpt-4o") is not provider.get_llm()
