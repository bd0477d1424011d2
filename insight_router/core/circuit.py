"""
Circuit breaker around the external provider.

After ``failure_threshold`` consecutive failures the circuit opens and cloud
calls are skipped for ``reset_timeout_seconds``; the next call after that is
a half-open probe that either closes the circuit or re-opens it.
"""

import time
from enum import Enum
from typing import Callable, Optional

from loguru import logger

from insight_router.config.loader import BreakerConfig


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Failing, skip the provider
    HALF_OPEN = "half_open"  # Probing whether the provider recovered


class CircuitBreaker:
    """Consecutive-failure circuit breaker."""

    def __init__(
        self,
        config: Optional[BreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or BreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitState:
        return self._state

    def allow_request(self) -> bool:
        """Whether a provider call may be attempted now."""
        if self._state == CircuitState.OPEN:
            if self._clock() - self._opened_at >= self.config.reset_timeout_seconds:
                logger.info("Provider circuit half-open, probing")
                self._state = CircuitState.HALF_OPEN
                return True
            return False
        return True

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Provider circuit closed")
        self._state = CircuitState.CLOSED
        self._failures = 0

    def record_failure(self) -> None:
        self._failures += 1
        if self._state == CircuitState.HALF_OPEN or self._failures >= self.config.failure_threshold:
            if self._state != CircuitState.OPEN:
                logger.warning(f"Provider circuit opened after {self._failures} failures")
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
