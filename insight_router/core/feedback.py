"""
Learning from user corrections.

FeedbackLearner is the only writer of the PatternTable. Updates to a
signature are serialized so concurrent feedback cannot lose an update.
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, Optional

from loguru import logger

from insight_router.config.loader import FeedbackConfig
from insight_router.storage.models import ClassificationRule
from insight_router.storage.repository import RouterRepository

from .fingerprint import normalize_signature
from .patterns import PatternTable


class FeedbackLearner:
    """Applies confirmations and corrections to classification rules."""

    def __init__(
        self,
        table: PatternTable,
        config: Optional[FeedbackConfig] = None,
        repository: Optional[RouterRepository] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.table = table
        self.config = config or FeedbackConfig()
        self.repository = repository
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    async def apply_feedback(self, signature: str, confirmed_category: str) -> ClassificationRule:
        """Record that ``confirmed_category`` is right for ``signature``.

        A confirmation of the current rule moves its confidence toward 1.0
        with a step that shrinks as samples accumulate. Anything else resets
        the rule to the confirmed category at ``reset_confidence``.

        Args:
            signature: Vendor signature (raw vendor text is normalized)
            confirmed_category: Category the user confirmed

        Returns:
            The updated rule

        Raises:
            ValueError: If signature or category is empty
        """
        signature = normalize_signature(signature)
        if not signature:
            raise ValueError("signature is required and cannot be empty")
        if not confirmed_category or not confirmed_category.strip():
            raise ValueError("confirmed_category is required and cannot be empty")
        confirmed_category = confirmed_category.strip()

        lock = self._locks.setdefault(signature, asyncio.Lock())
        async with lock:
            current = self.table.lookup(signature)
            updated = self._next_rule(current, signature, confirmed_category)
            # Storage first, so a failed write leaves the table unchanged.
            if self.repository is not None:
                await asyncio.to_thread(self.repository.save_rule, updated)
            self.table.upsert(updated)

        if current is not None and current.category != confirmed_category:
            logger.info(
                f"Pattern corrected: {signature} {current.category} -> {confirmed_category} "
                f"(confidence {updated.confidence:.2f})"
            )
        else:
            logger.debug(
                f"Pattern reinforced: {signature} -> {confirmed_category} "
                f"(confidence {updated.confidence:.3f}, samples {updated.sample_count})"
            )
        return updated

    def _next_rule(
        self,
        current: Optional[ClassificationRule],
        signature: str,
        category: str,
    ) -> ClassificationRule:
        now = self._clock()
        if current is None or current.category != category:
            previous_samples = current.sample_count if current is not None else 0
            return ClassificationRule(
                signature=signature,
                category=category,
                confidence=self.config.reset_confidence,
                sample_count=previous_samples + 1,
                updated_at=now,
            )

        sample_count = current.sample_count + 1
        rate = max(self.config.min_learning_rate, self.config.learning_rate / sample_count)
        confidence = min(1.0, current.confidence + rate * (1.0 - current.confidence))
        if confidence <= current.confidence:
            # Float precision has stopped moving the estimate.
            confidence = 1.0
        return ClassificationRule(
            signature=signature,
            category=category,
            confidence=confidence,
            sample_count=sample_count,
            updated_at=now,
        )
