"""
Bounded log of resolved insights.

Feedback intake looks insights up here to find the vendor signature and
fingerprint a correction applies to.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .resolution import RoutePath

DEFAULT_OUTCOME_LOG_SIZE = 500


@dataclass(frozen=True)
class Outcome:
    """What a resolved insight said and how it was produced."""
    insight_id: str
    fingerprint: str
    signature: str
    category: str
    confidence: float
    path: RoutePath
    degraded: bool
    resolved_at: datetime


class OutcomeLog:
    """Most recent outcomes by insight id, oldest dropped first."""

    def __init__(self, max_size: int = DEFAULT_OUTCOME_LOG_SIZE):
        if max_size <= 0:
            raise ValueError("max_size must be > 0")
        self.max_size = max_size
        self._outcomes: "OrderedDict[str, Outcome]" = OrderedDict()

    def record(self, outcome: Outcome) -> None:
        self._outcomes.pop(outcome.insight_id, None)
        self._outcomes[outcome.insight_id] = outcome
        while len(self._outcomes) > self.max_size:
            self._outcomes.popitem(last=False)

    def get(self, insight_id: str) -> Optional[Outcome]:
        return self._outcomes.get(insight_id)

    def recent(self, limit: int = 50) -> List[Outcome]:
        """Newest first."""
        return list(reversed(self._outcomes.values()))[:limit]

    def clear(self) -> None:
        self._outcomes.clear()

    def __len__(self) -> int:
        return len(self._outcomes)
