"""
External AI provider interface.

The routing engine talks to any object with an async ``complete`` method; the
OpenAI-backed implementation lives in ``insight_router.sdk``.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

from .token_counter import TokenUsage

DEFAULT_PROVIDER_CONFIDENCE = 0.9


class ProviderError(Exception):
    """Raised when the provider cannot produce a usable reply."""


@dataclass(frozen=True)
class ProviderReply:
    """Free-form provider answer plus its token-usage report."""
    text: str
    usage: TokenUsage
    model: str
    category: Optional[str] = None
    confidence: float = DEFAULT_PROVIDER_CONFIDENCE

    def __post_init__(self):
        """Validate reply values."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be within [0, 1]")


class InsightProvider(Protocol):
    """A paid external AI provider invoked as a single request/response."""

    model: str

    async def complete(self, prompt: str, max_tokens: int) -> ProviderReply:
        """Answer a prompt.

        Raises:
            ProviderError: On network, provider or parsing failure
        """
        ...
