"""
Router session lifecycle.

A RouterSession builds the routing stores for one signed-in user, restores
the persisted pattern table and cache snapshot on start, and writes the
snapshot back on close. Logging out or switching accounts clears every
per-user store.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional

from loguru import logger

from insight_router.config.loader import RouterConfig
from insight_router.storage.models import ClassificationRule
from insight_router.storage.repository import RouterRepository

from .cache import CacheStore
from .circuit import CircuitBreaker
from .classifier import LocalClassifier
from .feedback import FeedbackLearner
from .outcomes import OutcomeLog
from .patterns import PatternTable
from .provider import InsightProvider
from .resolution import InsightResponse, Resolution
from .routing import InsightQuery, RoutingEngine
from .usage import UsageMeter


def create_repository(db_path: str) -> RouterRepository:
    """Repository that persists cached InsightResponse results."""
    return RouterRepository(
        db_path,
        encode_result=lambda result: result.to_record(),
        decode_result=InsightResponse.from_record,
    )


class RouterSession:
    """Owns the cache, usage meter, pattern table and routing engine."""

    def __init__(
        self,
        config: Optional[RouterConfig] = None,
        provider: Optional[InsightProvider] = None,
        repository: Optional[RouterRepository] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or RouterConfig()
        self.repository = repository
        self.user_id: Optional[str] = None

        self.cache = CacheStore(
            ttl=timedelta(hours=self.config.cache.ttl_hours),
            max_entries=self.config.cache.max_entries,
            min_confidence=self.config.cache.min_confidence,
            clock=clock,
        )
        self.table = PatternTable()
        self.classifier = LocalClassifier(self.table)
        self.meter = UsageMeter(self.config.quota, clock=clock)
        self.learner = FeedbackLearner(self.table, self.config.feedback, repository, clock=clock)
        self.outcomes = OutcomeLog(self.config.storage.outcome_log_size)
        self.breaker = CircuitBreaker(self.config.breaker)
        self.engine = RoutingEngine(
            cache=self.cache,
            classifier=self.classifier,
            meter=self.meter,
            learner=self.learner,
            provider=provider,
            config=self.config.provider,
            outcomes=self.outcomes,
            breaker=self.breaker,
            clock=clock,
        )

    @classmethod
    def from_config(
        cls,
        config: RouterConfig,
        provider: Optional[InsightProvider] = None,
    ) -> "RouterSession":
        """Session persisting to ``config.storage.db_path``."""
        return cls(config, provider, create_repository(config.storage.db_path))

    async def start(self, user_id: Optional[str] = None) -> None:
        """Restore persisted rules and cache, then bind to a user."""
        if self.repository is not None:
            await asyncio.to_thread(self.repository.initialize)
            rules = await asyncio.to_thread(self.repository.load_rules)
            self.table.load(rules)
            entries = await asyncio.to_thread(self.repository.load_cache_entries)
            loaded = self.cache.load(entries)
            logger.info(f"Restored {len(rules)} patterns and {loaded} cached insights")
        if user_id is not None:
            await self.switch_user(user_id)

    async def resolve(self, query: InsightQuery) -> Resolution:
        if self.user_id is not None and query.user_id != self.user_id:
            await self.switch_user(query.user_id)
        elif self.user_id is None:
            self.user_id = query.user_id
        return await self.engine.resolve(query)

    async def feedback(
        self,
        insight_id: str,
        original_response: Any,
        feedback: Mapping[str, Any],
    ) -> ClassificationRule:
        return await self.engine.apply_feedback(insight_id, original_response, feedback)

    async def switch_user(self, user_id: str) -> None:
        """Bind the session to a user, clearing state left by another one."""
        if self.user_id is not None and self.user_id != user_id:
            logger.info("Account switch, clearing per-user state")
            await self.logout()
        self.user_id = user_id

    async def logout(self) -> None:
        """Clear cached insights, usage counters and outcomes.

        Learned patterns are kept: they describe vendors, not the user.
        """
        await self.engine.drain()
        self.cache.clear()
        self.outcomes.clear()
        self.meter.reset()
        if self.repository is not None:
            await asyncio.to_thread(self.repository.clear_cache_entries)
        self.user_id = None

    async def close(self) -> None:
        """Settle in-flight work and persist the cache snapshot."""
        await self.engine.drain()
        if self.repository is not None:
            snapshot = self.cache.snapshot()
            await asyncio.to_thread(self.repository.replace_cache_entries, snapshot)
            logger.debug(f"Persisted {len(snapshot)} cached insights")
