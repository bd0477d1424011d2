"""
Token counting and usage tracking.

Token estimates for quota reservations, and exact counts reported back by
the provider.
"""

import math
from dataclasses import dataclass

# Rough characters-per-token ratio for English prose.
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported by the provider for one call."""
    prompt_tokens: int
    completion_tokens: int

    def __post_init__(self):
        """Validate token counts are non-negative."""
        if self.prompt_tokens < 0:
            raise ValueError("prompt_tokens cannot be negative")
        if self.completion_tokens < 0:
            raise ValueError("completion_tokens cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a piece of text.

    Tokenization varies by model; this errs on the high side for short
    strings, which is what a quota reservation wants.
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)
