"""
Usage metering and quota enforcement.

Every cloud request must hold a reservation. Reserving and counting are one
step, so concurrent requests can never overshoot a quota.

Evaluation Order:
1. Token limit - tokens_used + estimated_tokens > token_limit
2. Request limit - requests_used + 1 > request_limit
3. Conversation limit - conversations_used + 1 > conversation_limit (new conversations only)
4. Rate limit - requests inside the sliding window reach the burst threshold
"""

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Deque, Dict, Optional, Set, Tuple

from loguru import logger

from insight_router.config.loader import QuotaConfig, QuotaPeriod, TierLimits
from insight_router.storage.models import UsageRecord


class DenyReason(Enum):
    """Closed set of quota denial reasons understood by the paywall."""
    TOKEN_LIMIT_EXCEEDED = "token_limit_exceeded"
    REQUEST_LIMIT_EXCEEDED = "request_limit_exceeded"
    CONVERSATION_LIMIT_EXCEEDED = "conversation_limit_exceeded"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


@dataclass(frozen=True)
class Reservation:
    """Outcome of a quota check.

    ``record`` is a copy of the counters after the check, so callers can
    report usage without touching the meter again.
    """
    allowed: bool
    user_id: str
    estimated_tokens: int
    record: UsageRecord
    limits: TierLimits
    reason: Optional[DenyReason] = None

    @property
    def remaining_tokens(self) -> int:
        return max(0, self.limits.token_limit - self.record.tokens_used)

    @property
    def remaining_requests(self) -> int:
        return max(0, self.limits.request_limit - self.record.requests_used)


class UsageMeter:
    """Per-user, per-period quota counters with tiered limits."""

    def __init__(
        self,
        config: Optional[QuotaConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or QuotaConfig()
        self._clock = clock
        self._records: Dict[str, UsageRecord] = {}
        self._tiers: Dict[str, str] = {}
        self._conversations: Dict[Tuple[str, str], Set[str]] = {}
        self._windows: Dict[str, Deque[datetime]] = {}
        self._lock = threading.Lock()

    def check_and_reserve(
        self,
        user_id: str,
        estimated_tokens: int,
        conversation_id: Optional[str] = None,
    ) -> Reservation:
        """Check quotas and, if allowed, count the request in the same step.

        Args:
            user_id: Opaque user id
            estimated_tokens: Tokens to reserve for the request
            conversation_id: Conversation the request belongs to; None
                means the request opens a conversation of its own

        Returns:
            Reservation; ``allowed`` is False with a reason on denial

        Raises:
            ValueError: If user_id is empty or estimated_tokens is negative
        """
        if not user_id:
            raise ValueError("user_id is required")
        if estimated_tokens < 0:
            raise ValueError("estimated_tokens cannot be negative")

        with self._lock:
            now = self._clock()
            record = self._current_record(user_id, now)
            limits = self.config.get_tier(record.tier)
            seen = self._conversations.setdefault((user_id, record.period), set())
            opens_conversation = conversation_id is None or conversation_id not in seen

            reason = self._evaluate(record, limits, estimated_tokens, opens_conversation, user_id, now)

            if reason is None:
                record.tokens_used += estimated_tokens
                record.requests_used += 1
                if opens_conversation:
                    record.conversations_used += 1
                    if conversation_id is not None:
                        seen.add(conversation_id)
                self._windows.setdefault(user_id, deque()).append(now)
            elif reason is DenyReason.RATE_LIMIT_EXCEEDED:
                # A throttled attempt still counts.
                record.requests_used += 1
                self._windows.setdefault(user_id, deque()).append(now)

            if reason is not None:
                logger.info(f"Quota denied for user {user_id}: {reason.value}")

            return Reservation(
                allowed=reason is None,
                user_id=user_id,
                estimated_tokens=estimated_tokens,
                record=record.copy(),
                limits=limits,
                reason=reason,
            )

    def settle(self, reservation: Reservation, actual_tokens: int) -> UsageRecord:
        """Reconcile a reservation with the tokens the provider reported.

        Only ever tops up: when the estimate was too high the surplus stays
        counted.
        """
        if not reservation.allowed:
            raise ValueError("Cannot settle a denied reservation")
        with self._lock:
            record = self._current_record(reservation.user_id, self._clock())
            extra = actual_tokens - reservation.estimated_tokens
            if extra > 0 and record.period == reservation.record.period:
                record.tokens_used += extra
            return record.copy()

    def snapshot(self, user_id: str) -> UsageRecord:
        """Current counters for a user (rolled over if the period changed)."""
        with self._lock:
            return self._current_record(user_id, self._clock()).copy()

    def limits_for(self, user_id: str) -> TierLimits:
        return self.config.get_tier(self._tiers.get(user_id, self.config.default_tier))

    def set_tier(self, user_id: str, tier: str) -> None:
        """Change a user's subscription tier; counters are kept."""
        self.config.get_tier(tier)
        with self._lock:
            self._tiers[user_id] = tier
            record = self._records.get(user_id)
            if record is not None:
                record.tier = tier
        logger.info(f"User {user_id} moved to tier '{tier}'")

    def reset_user(self, user_id: str) -> None:
        """Forget all state for a user (logout / account switch)."""
        with self._lock:
            self._records.pop(user_id, None)
            self._tiers.pop(user_id, None)
            self._windows.pop(user_id, None)
            for key in [k for k in self._conversations if k[0] == user_id]:
                del self._conversations[key]

    def reset(self) -> None:
        with self._lock:
            self._records.clear()
            self._tiers.clear()
            self._windows.clear()
            self._conversations.clear()

    def _evaluate(
        self,
        record: UsageRecord,
        limits: TierLimits,
        estimated_tokens: int,
        opens_conversation: bool,
        user_id: str,
        now: datetime,
    ) -> Optional[DenyReason]:
        if record.tokens_used + estimated_tokens > limits.token_limit:
            return DenyReason.TOKEN_LIMIT_EXCEEDED
        if record.requests_used + 1 > limits.request_limit:
            return DenyReason.REQUEST_LIMIT_EXCEEDED
        if opens_conversation and record.conversations_used + 1 > limits.conversation_limit:
            return DenyReason.CONVERSATION_LIMIT_EXCEEDED
        if self._window_count(user_id, now) >= self.config.rate_limit.burst:
            return DenyReason.RATE_LIMIT_EXCEEDED
        return None

    def _window_count(self, user_id: str, now: datetime) -> int:
        window = self._windows.get(user_id)
        if not window:
            return 0
        cutoff = now - timedelta(seconds=self.config.rate_limit.window_seconds)
        while window and window[0] <= cutoff:
            window.popleft()
        return len(window)

    def _current_record(self, user_id: str, now: datetime) -> UsageRecord:
        """Get the record for the current period, creating or rolling it over."""
        period = self._period_key(now)
        record = self._records.get(user_id)
        tier = self._tiers.get(user_id, self.config.default_tier)
        if record is None:
            record = UsageRecord(user_id=user_id, period=period, tier=tier)
            self._records[user_id] = record
        elif record.period != period:
            logger.info(f"Usage period rollover for user {user_id}: {record.period} -> {period}")
            self._conversations.pop((user_id, record.period), None)
            record = UsageRecord(user_id=user_id, period=period, tier=tier)
            self._records[user_id] = record
        return record

    def _period_key(self, now: datetime) -> str:
        if self.config.period == QuotaPeriod.DAILY:
            return now.strftime("%Y-%m-%d")
        return now.strftime("%Y-%m")
