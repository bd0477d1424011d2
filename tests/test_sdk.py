"""
Unit tests for SDK layer.

Tests the OpenAI provider's request shape, reply parsing and error wrapping.
"""

from unittest.mock import AsyncMock, Mock, patch

import openai
import pytest

from insight_router.core.provider import ProviderError
from insight_router.sdk.openai_client import OpenAIInsightProvider, parse_reply


def _mock_response(content, prompt_tokens=100, completion_tokens=30):
    response = Mock()
    response.id = "chatcmpl_123"
    response.usage.prompt_tokens = prompt_tokens
    response.usage.completion_tokens = completion_tokens
    response.usage.total_tokens = prompt_tokens + completion_tokens
    choice = Mock()
    choice.message.content = content
    response.choices = [choice]
    return response


def _mock_client(response=None, error=None):
    client = Mock()
    client.chat.completions.create = AsyncMock(return_value=response, side_effect=error)
    return client


class TestOpenAIInsightProvider:
    """Test OpenAIInsightProvider."""

    @patch('insight_router.sdk.openai_client.AsyncOpenAI')
    def test_init_default_client(self, mock_openai_class):
        """Test initialization builds an AsyncOpenAI client."""
        mock_openai_class.return_value = Mock()

        provider = OpenAIInsightProvider(model="gpt-4o-mini")

        assert provider.model == "gpt-4o-mini"
        assert provider.client is mock_openai_class.return_value
        mock_openai_class.assert_called_once_with()

    def test_init_missing_model(self):
        """Test initialization fails with missing model."""
        with pytest.raises(ValueError, match="model is required"):
            OpenAIInsightProvider(model="", client=Mock())

        with pytest.raises(ValueError, match="model is required"):
            OpenAIInsightProvider(model=None, client=Mock())

    @pytest.mark.asyncio
    async def test_complete_parses_json_reply(self):
        client = _mock_client(_mock_response('{"category": "Dining", "insight": "Coffee adds up."}'))
        provider = OpenAIInsightProvider(model="gpt-4o-mini", client=client)

        reply = await provider.complete("prompt text", max_tokens=200)

        assert reply.text == "Coffee adds up."
        assert reply.category == "Dining"
        assert reply.model == "gpt-4o-mini"
        assert reply.usage.prompt_tokens == 100
        assert reply.usage.completion_tokens == 30
        assert reply.usage.total_tokens == 130

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 200
        assert kwargs["messages"][-1] == {"role": "user", "content": "prompt text"}

    @pytest.mark.asyncio
    async def test_complete_plain_text_reply(self):
        client = _mock_client(_mock_response("Looks like groceries."))
        provider = OpenAIInsightProvider(model="gpt-4o-mini", client=client)

        reply = await provider.complete("prompt", max_tokens=50)

        assert reply.text == "Looks like groceries."
        assert reply.category is None

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self):
        client = _mock_client(error=openai.OpenAIError("network down"))
        provider = OpenAIInsightProvider(model="gpt-4o-mini", client=client)

        with pytest.raises(ProviderError, match="OpenAI request failed"):
            await provider.complete("prompt", max_tokens=50)

    @pytest.mark.asyncio
    async def test_missing_usage(self):
        response = _mock_response('{"category": "Dining"}')
        response.usage = None
        provider = OpenAIInsightProvider(model="gpt-4o-mini", client=_mock_client(response))

        with pytest.raises(ProviderError, match="missing usage information"):
            await provider.complete("prompt", max_tokens=50)

    @pytest.mark.asyncio
    async def test_empty_content(self):
        provider = OpenAIInsightProvider(model="gpt-4o-mini", client=_mock_client(_mock_response("")))

        with pytest.raises(ProviderError, match="no content"):
            await provider.complete("prompt", max_tokens=50)


class TestParseReply:

    def test_fenced_json(self):
        content = '```json\n{"category": "Travel", "insight": "Flights are seasonal."}\n```'
        assert parse_reply(content) == ("Flights are seasonal.", "Travel")

    def test_category_without_insight(self):
        assert parse_reply('{"category": "Travel"}') == ("This looks like Travel.", "Travel")

    def test_blank_category_ignored(self):
        assert parse_reply('{"category": " ", "insight": "Hmm."}') == ("Hmm.", None)

    def test_non_object_json(self):
        assert parse_reply('["Travel"]') == ('["Travel"]', None)
