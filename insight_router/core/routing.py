"""
Routing engine.

Resolves an insight query through, in order:

1. Cache lookup - a valid entry for the request fingerprint answers directly
2. Local classification - answers when confidence >= the caching threshold
3. Quota check - only the cloud path is metered
4. Cloud call - under a mandatory timeout; failure degrades to the local answer

Concurrent requests with the same fingerprint share one upstream resolution.
A caller that gives up does not cancel the shared work, and its result is
cached for everyone else.
"""

import asyncio
import functools
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional

from loguru import logger

from insight_router.config.loader import ProviderConfig
from insight_router.storage.models import ClassificationRule

from .cache import CacheStore
from .circuit import CircuitBreaker, CircuitState
from .classifier import LocalClassification, LocalClassifier
from .feedback import FeedbackLearner
from .fingerprint import compute_fingerprint, normalize_signature
from .outcomes import Outcome, OutcomeLog
from .pricing import estimate_cost
from .provider import InsightProvider, ProviderError
from .resolution import (
    InsightResponse,
    InsightUsage,
    ProviderUnavailable,
    QuotaDenial,
    QuotaUsage,
    Resolution,
    RoutePath,
    RoutingDecision,
)
from .token_counter import estimate_tokens
from .usage import Reservation, UsageMeter

# Approximate cost per request by path, used for savings reporting.
COST_ESTIMATES: Dict[RoutePath, float] = {
    RoutePath.CACHE: 0.00001,
    RoutePath.LOCAL: 0.0001,
    RoutePath.CLOUD: 0.01,
    RoutePath.DENIED: 0.0,
}


@dataclass(frozen=True)
class InsightQuery:
    """A transaction-like insight request from the UI."""
    user_id: str
    vendor: str
    amount: float
    query: str = ""
    context: Mapping[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None

    def __post_init__(self):
        """Validate the request has an owner and something to classify."""
        if not self.user_id or not self.user_id.strip():
            raise ValueError("user_id is required and cannot be empty")
        if not (self.vendor or "").strip() and not (self.query or "").strip():
            raise ValueError("vendor or query is required")

    @property
    def signature(self) -> str:
        return normalize_signature(self.vendor)

    def fingerprint(self) -> str:
        return compute_fingerprint(
            self.user_id,
            self.query,
            {
                "vendor": self.signature,
                "amount": round(abs(float(self.amount or 0.0)), 2),
                "context": dict(self.context),
            },
        )


@dataclass
class RoutingMetrics:
    """Request counts per path and the cost they avoided."""
    total_requests: int = 0
    cache_hits: int = 0
    local_answers: int = 0
    cloud_calls: int = 0
    denials: int = 0
    degraded_answers: int = 0
    provider_failures: int = 0
    coalesced_requests: int = 0

    @property
    def estimated_cost(self) -> float:
        return (
            self.cache_hits * COST_ESTIMATES[RoutePath.CACHE]
            + self.local_answers * COST_ESTIMATES[RoutePath.LOCAL]
            + self.cloud_calls * COST_ESTIMATES[RoutePath.CLOUD]
        )

    @property
    def estimated_savings(self) -> float:
        """Cost avoided versus sending every request to the cloud."""
        return self.total_requests * COST_ESTIMATES[RoutePath.CLOUD] - self.estimated_cost


# Number of recent resolutions kept for the average response time.
RESPONSE_TIME_WINDOW = 100


@dataclass(frozen=True)
class PerformanceSnapshot:
    """Recent resolution latency and provider call outcomes."""
    average_response_ms: float
    samples: int
    provider_successes: int
    provider_failures: int
    circuit_state: CircuitState

    @property
    def success_rate(self) -> float:
        total = self.provider_successes + self.provider_failures
        return self.provider_successes / total if total > 0 else 0.0

    @property
    def error_rate(self) -> float:
        total = self.provider_successes + self.provider_failures
        return self.provider_failures / total if total > 0 else 0.0


class HealthStatus(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class HealthReport:
    """Per-component health and the issues found."""
    status: HealthStatus
    cache: bool
    local: bool
    provider: bool
    issues: List[str] = field(default_factory=list)


def build_prompt(query: InsightQuery, local: LocalClassification) -> str:
    """Prompt for the provider, seeded with the local guess."""
    lines = [
        "You are a personal finance assistant that categorizes transactions.",
        f"Transaction: {query.vendor} for ${abs(float(query.amount or 0.0)):.2f}.",
    ]
    if query.query:
        lines.append(f"Question: {query.query}")
    lines.append(f"A local classifier suggests '{local.category}' ({local.reason}).")
    lines.append(
        'Reply only with JSON: {"category": "<spending category>", '
        '"insight": "<one or two sentences for the user>"}'
    )
    return "\n".join(lines)


class RoutingEngine:
    """Entry point for insight queries.

    Owns no state of its own beyond in-flight bookkeeping and metrics; the
    stores it routes through are injected.
    """

    def __init__(
        self,
        cache: CacheStore,
        classifier: LocalClassifier,
        meter: UsageMeter,
        learner: FeedbackLearner,
        provider: Optional[InsightProvider] = None,
        config: Optional[ProviderConfig] = None,
        outcomes: Optional[OutcomeLog] = None,
        breaker: Optional[CircuitBreaker] = None,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.cache = cache
        self.classifier = classifier
        self.meter = meter
        self.learner = learner
        self.provider = provider
        self.config = config or ProviderConfig()
        self.outcomes = outcomes or OutcomeLog()
        self.breaker = breaker or CircuitBreaker()
        self._clock = clock
        self._new_id = id_factory
        self._inflight: Dict[str, "asyncio.Future[Resolution]"] = {}
        self._metrics = RoutingMetrics()
        self._response_times: Deque[float] = deque(maxlen=RESPONSE_TIME_WINDOW)
        self._provider_successes = 0

    @property
    def threshold(self) -> float:
        """Confidence needed both to answer locally and to cache."""
        return self.cache.min_confidence

    async def resolve(self, query: InsightQuery) -> Resolution:
        """Resolve a query to a response, a quota denial or an outage notice.

        Never raises for provider or quota problems; those come back as
        QuotaDenial / ProviderUnavailable values.
        """
        self._metrics.total_requests += 1
        fingerprint = query.fingerprint()

        entry = self.cache.get(fingerprint)
        if entry is not None:
            self._record_decision(RoutingDecision(RoutePath.CACHE, entry.confidence, fingerprint))
            return entry.result

        task = self._inflight.get(fingerprint)
        if task is None:
            task = asyncio.ensure_future(self._timed_resolve(query, fingerprint))
            self._inflight[fingerprint] = task
            task.add_done_callback(functools.partial(self._on_settled, fingerprint))
        else:
            self._metrics.coalesced_requests += 1
            logger.debug(f"Joining in-flight resolution for {fingerprint[:12]}")

        return await asyncio.shield(task)

    async def apply_feedback(
        self,
        insight_id: str,
        original_response: Any,
        feedback: Mapping[str, Any],
    ) -> ClassificationRule:
        """Feedback intake for a resolved insight.

        Args:
            insight_id: ``insightId`` of the response being corrected
            original_response: The InsightResponse (or its dict form) shown
                to the user; used when the insight is no longer in the log
            feedback: ``{"correctCategory": ...}``

        Returns:
            The updated classification rule

        Raises:
            ValueError: If the feedback has no category or the insight has
                no vendor signature to learn from
        """
        if not isinstance(feedback, Mapping) or not feedback.get("correctCategory"):
            raise ValueError("feedback must include a non-empty 'correctCategory'")

        outcome = self.outcomes.get(insight_id)
        if outcome is not None:
            signature = outcome.signature
        elif isinstance(original_response, InsightResponse):
            signature = original_response.signature
        elif isinstance(original_response, Mapping):
            signature = original_response.get("signature", "")
        else:
            signature = ""
        if not signature:
            raise ValueError(f"No vendor signature known for insight {insight_id}")

        return await self.learn(signature, str(feedback["correctCategory"]))

    async def learn(self, vendor: str, category: str) -> ClassificationRule:
        """Teach a vendor's category and drop cached answers for it."""
        rule = await self.learner.apply_feedback(vendor, category)
        dropped = self.cache.invalidate_matching(
            lambda entry: getattr(entry.result, "signature", None) == rule.signature
        )
        if dropped:
            logger.debug(f"Invalidated {dropped} cached results for {rule.signature}")
        return rule

    def metrics(self) -> RoutingMetrics:
        return RoutingMetrics(**vars(self._metrics))

    def performance(self) -> PerformanceSnapshot:
        times = list(self._response_times)
        return PerformanceSnapshot(
            average_response_ms=sum(times) / len(times) if times else 0.0,
            samples=len(times),
            provider_successes=self._provider_successes,
            provider_failures=self._metrics.provider_failures,
            circuit_state=self.breaker.state,
        )

    def health(self) -> HealthReport:
        """Check the cache, the local classifier and the provider circuit.

        Unhealthy when neither the cache nor the classifier can answer;
        degraded when any single component is out.
        """
        issues = []

        cache_ok = True
        try:
            self.cache.stats()
        except Exception as e:
            logger.opt(exception=e).warning("Cache health check failed")
            cache_ok = False
            issues.append("Cache unavailable")

        local_ok = True
        try:
            self.classifier.classify("HEALTH CHECK", 0.0, {})
        except Exception as e:
            logger.opt(exception=e).warning("Local classifier health check failed")
            local_ok = False
            issues.append("Local classifier unavailable")

        provider_ok = self.provider is not None and self.breaker.state != CircuitState.OPEN
        if self.provider is None:
            issues.append("No AI provider configured")
        elif self.breaker.state == CircuitState.OPEN:
            issues.append("AI provider circuit breaker is open")

        if not cache_ok and not local_ok:
            status = HealthStatus.UNHEALTHY
        elif issues:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY
        return HealthReport(status, cache_ok, local_ok, provider_ok, issues)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def drain(self) -> None:
        """Wait for every in-flight resolution to settle."""
        pending = list(self._inflight.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _timed_resolve(self, query: InsightQuery, fingerprint: str) -> Resolution:
        started = time.perf_counter()
        try:
            return await self._resolve_uncached(query, fingerprint)
        finally:
            self._response_times.append((time.perf_counter() - started) * 1000)

    async def _resolve_uncached(self, query: InsightQuery, fingerprint: str) -> Resolution:
        local = self.classifier.classify(query.vendor, query.amount, query.context)

        if local.confidence >= self.threshold:
            response = self._local_response(query, fingerprint, local, degraded=False)
            return self._finish(response, RoutePath.LOCAL)

        if self.provider is None:
            logger.debug("No provider configured, answering locally")
            return self._degrade(query, fingerprint, local)
        if not self.breaker.allow_request():
            logger.debug("Provider circuit open, answering locally")
            return self._degrade(query, fingerprint, local)

        prompt = build_prompt(query, local)
        estimated = estimate_tokens(prompt) + self.config.max_completion_tokens
        reservation = self.meter.check_and_reserve(query.user_id, estimated, query.session_id)
        if not reservation.allowed:
            return self._deny(query, fingerprint, local, reservation)

        try:
            reply = await asyncio.wait_for(
                self.provider.complete(prompt, self.config.max_completion_tokens),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Provider timed out after {self.config.timeout_seconds}s")
            return self._provider_failed(query, fingerprint, local)
        except ProviderError as e:
            logger.warning(f"Provider call failed: {e}")
            return self._provider_failed(query, fingerprint, local)
        except Exception as e:
            logger.opt(exception=e).warning(f"Provider call raised {type(e).__name__}")
            return self._provider_failed(query, fingerprint, local)

        self.breaker.record_success()
        self._provider_successes += 1
        record = self.meter.settle(reservation, reply.usage.total_tokens)
        limits = reservation.limits
        response = InsightResponse(
            response=reply.text,
            session_id=query.session_id or self._new_id(),
            timestamp=self._clock(),
            usage=InsightUsage(
                estimated_tokens=max(estimated, reply.usage.total_tokens),
                remaining_tokens=max(0, limits.token_limit - record.tokens_used),
                remaining_requests=max(0, limits.request_limit - record.requests_used),
            ),
            insight_id=self._new_id(),
            category=reply.category or local.category,
            confidence=reply.confidence,
            source=RoutePath.CLOUD,
            signature=local.signature,
            fingerprint=fingerprint,
        )
        return self._finish(response, RoutePath.CLOUD)

    def _local_response(
        self,
        query: InsightQuery,
        fingerprint: str,
        local: LocalClassification,
        degraded: bool,
    ) -> InsightResponse:
        record = self.meter.snapshot(query.user_id)
        limits = self.meter.limits_for(query.user_id)
        return InsightResponse(
            response=f"This looks like {local.category}. {local.reason}.",
            session_id=query.session_id or self._new_id(),
            timestamp=self._clock(),
            usage=InsightUsage(
                estimated_tokens=0,
                remaining_tokens=max(0, limits.token_limit - record.tokens_used),
                remaining_requests=max(0, limits.request_limit - record.requests_used),
            ),
            insight_id=self._new_id(),
            category=local.category,
            confidence=local.confidence,
            source=RoutePath.LOCAL,
            signature=local.signature,
            fingerprint=fingerprint,
            degraded=degraded,
        )

    def _provider_failed(
        self,
        query: InsightQuery,
        fingerprint: str,
        local: LocalClassification,
    ) -> Resolution:
        self.breaker.record_failure()
        self._metrics.provider_failures += 1
        return self._degrade(query, fingerprint, local)

    def _degrade(
        self,
        query: InsightQuery,
        fingerprint: str,
        local: LocalClassification,
    ) -> Resolution:
        """Cloud failure transition: fall back to whatever the classifier had."""
        if local.is_usable:
            response = self._local_response(query, fingerprint, local, degraded=True)
            return self._finish(response, RoutePath.LOCAL)

        logger.warning(f"Provider unavailable and no local answer for {fingerprint[:12]}")
        self._record_decision(RoutingDecision(RoutePath.CLOUD, 0.0, fingerprint, degraded=True))
        return ProviderUnavailable(
            session_id=query.session_id or self._new_id(),
            timestamp=self._clock(),
        )

    def _deny(
        self,
        query: InsightQuery,
        fingerprint: str,
        local: LocalClassification,
        reservation: Reservation,
    ) -> QuotaDenial:
        record = reservation.record
        limits = reservation.limits
        usage = QuotaUsage(
            current_tokens=record.tokens_used,
            token_limit=limits.token_limit,
            current_requests=record.requests_used,
            request_limit=limits.request_limit,
            current_conversations=record.conversations_used,
            conversation_limit=limits.conversation_limit,
            subscription_tier=record.tier,
            estimated_cost=self._estimated_cost(record.tokens_used),
        )

        local_answer = None
        if self.config.offer_local_on_denial and local.is_usable:
            local_answer = self._local_response(query, fingerprint, local, degraded=True)
            self._record_outcome(local_answer)

        self._record_decision(RoutingDecision(RoutePath.DENIED, local.confidence, fingerprint))
        return QuotaDenial(reason=reservation.reason, usage=usage, local_answer=local_answer)

    def _finish(self, response: InsightResponse, path: RoutePath) -> InsightResponse:
        """Resolved: cache if confident enough, record the outcome."""
        self.cache.put(response.fingerprint, response, response.confidence)
        self._record_outcome(response)
        self._record_decision(
            RoutingDecision(path, response.confidence, response.fingerprint, response.degraded)
        )
        return response

    def _record_outcome(self, response: InsightResponse) -> None:
        self.outcomes.record(Outcome(
            insight_id=response.insight_id,
            fingerprint=response.fingerprint,
            signature=response.signature,
            category=response.category,
            confidence=response.confidence,
            path=response.source,
            degraded=response.degraded,
            resolved_at=response.timestamp,
        ))

    def _record_decision(self, decision: RoutingDecision) -> None:
        if decision.path == RoutePath.CACHE:
            self._metrics.cache_hits += 1
        elif decision.path == RoutePath.LOCAL:
            self._metrics.local_answers += 1
        elif decision.path == RoutePath.CLOUD and not decision.degraded:
            self._metrics.cloud_calls += 1
        elif decision.path == RoutePath.DENIED:
            self._metrics.denials += 1
        if decision.degraded:
            self._metrics.degraded_answers += 1

        logger.debug(
            f"Routed {decision.fingerprint[:12]} via {decision.path.value} "
            f"(confidence {decision.confidence:.2f}{', degraded' if decision.degraded else ''})"
        )

    def _estimated_cost(self, tokens: int) -> float:
        try:
            return estimate_cost(self.config.model, tokens)
        except ValueError:
            logger.warning(f"No pricing for model {self.config.model}, reporting zero cost")
            return 0.0

    def _on_settled(self, fingerprint: str, task: "asyncio.Future[Resolution]") -> None:
        if self._inflight.get(fingerprint) is task:
            del self._inflight[fingerprint]
        if not task.cancelled() and task.exception() is not None:
            logger.opt(exception=task.exception()).error(
                f"Resolution for {fingerprint[:12]} failed unexpectedly"
            )
