"""
OpenAI-backed insight provider.

Asks the model for a small JSON object with a category and a short insight;
plain-text replies are accepted as the insight with no category.
"""

import json
from typing import Optional

import openai
from openai import AsyncOpenAI

from ..core.provider import ProviderError, ProviderReply
from ..core.token_counter import TokenUsage

SYSTEM_PROMPT = (
    "You categorize personal finance transactions and explain them briefly. "
    "Always answer with a single JSON object."
)


class OpenAIInsightProvider:
    """InsightProvider over the OpenAI chat completions API.

    Every failure surfaces as ProviderError so the router can degrade.
    """

    def __init__(self, model: str, client: Optional[AsyncOpenAI] = None):
        """Initialize the provider.

        Args:
            model: OpenAI model name (required)
            client: Preconfigured client; defaults to ``AsyncOpenAI()``,
                which reads ``OPENAI_API_KEY`` from the environment

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.model = model
        self.client = client or AsyncOpenAI()

    async def complete(self, prompt: str, max_tokens: int) -> ProviderReply:
        """Create a chat completion for an insight prompt.

        Args:
            prompt: Prompt built by the router
            max_tokens: Completion token cap

        Returns:
            ProviderReply with parsed category and reported usage

        Raises:
            ProviderError: On API errors, empty replies or missing usage
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=max_tokens,
                temperature=0.2,
            )
        except openai.OpenAIError as e:
            raise ProviderError(f"OpenAI request failed: {e}") from e

        usage = response.usage
        if not usage:
            raise ProviderError("OpenAI response missing usage information")
        if not response.choices or not response.choices[0].message.content:
            raise ProviderError("OpenAI response has no content")

        text, category = parse_reply(response.choices[0].message.content)
        return ProviderReply(
            text=text,
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
            ),
            model=self.model,
            category=category,
        )


def parse_reply(content: str):
    """Split a model reply into (insight text, category or None)."""
    content = content.strip()
    if content.startswith("```"):
        content = content.strip("`")
        if content.lower().startswith("json"):
            content = content[4:]
        content = content.strip()
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return content, None
    if not isinstance(data, dict):
        return content, None

    category = data.get("category")
    if not isinstance(category, str) or not category.strip():
        category = None
    else:
        category = category.strip()
    insight = data.get("insight")
    if not isinstance(insight, str) or not insight.strip():
        insight = f"This looks like {category}." if category else content
    return insight.strip(), category
