"""
Data models for storage layer.

Defines the records owned by the routing core: cache entries, classification
rules and per-user usage counters.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class CacheEntry:
    """A prior resolution stored under its request fingerprint.

    An entry is valid iff ``now < expires_at``; ``expires_at`` is always
    ``created_at + TTL``.
    """
    fingerprint: str
    result: Any
    confidence: float
    created_at: datetime
    expires_at: datetime

    def __post_init__(self):
        """Validate confidence range and expiry ordering."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be within [0, 1]")
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class ClassificationRule:
    """Learned mapping from a vendor signature to a spending category."""
    signature: str
    category: str
    confidence: float
    sample_count: int
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        """Validate rule values."""
        if not self.signature:
            raise ValueError("signature cannot be empty")
        if not self.category:
            raise ValueError("category cannot be empty")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be within [0, 1]")
        if self.sample_count < 0:
            raise ValueError("sample_count cannot be negative")


@dataclass
class UsageRecord:
    """Usage counters for one user in one quota period.

    Mutated only by UsageMeter. Counters never go negative and only move
    forward within a period.
    """
    user_id: str
    period: str
    tier: str
    tokens_used: int = 0
    requests_used: int = 0
    conversations_used: int = 0

    def copy(self) -> "UsageRecord":
        return UsageRecord(
            user_id=self.user_id,
            period=self.period,
            tier=self.tier,
            tokens_used=self.tokens_used,
            requests_used=self.requests_used,
            conversations_used=self.conversations_used,
        )
