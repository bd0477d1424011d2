"""
Unit tests for the provider circuit breaker.
"""

from insight_router.config.loader import BreakerConfig
from insight_router.core.circuit import CircuitBreaker, CircuitState


class FakeMonotonic:

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestCircuitBreaker:

    def setup_method(self):
        self.clock = FakeMonotonic()
        self.breaker = CircuitBreaker(
            BreakerConfig(failure_threshold=3, reset_timeout_seconds=60),
            clock=self.clock,
        )

    def _fail(self, times: int) -> None:
        for _ in range(times):
            self.breaker.record_failure()

    def test_starts_closed(self):
        assert self.breaker.state == CircuitState.CLOSED
        assert self.breaker.allow_request()

    def test_opens_at_threshold(self):
        self._fail(2)
        assert self.breaker.state == CircuitState.CLOSED

        self._fail(1)
        assert self.breaker.state == CircuitState.OPEN
        assert not self.breaker.allow_request()

    def test_success_resets_failures(self):
        self._fail(2)
        self.breaker.record_success()
        self._fail(2)
        assert self.breaker.state == CircuitState.CLOSED

    def test_half_open_after_timeout(self):
        self._fail(3)
        self.clock.now += 60

        assert self.breaker.allow_request()
        assert self.breaker.state == CircuitState.HALF_OPEN

    def test_half_open_success_closes(self):
        self._fail(3)
        self.clock.now += 60
        self.breaker.allow_request()

        self.breaker.record_success()

        assert self.breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self):
        self._fail(3)
        self.clock.now += 60
        self.breaker.allow_request()

        self.breaker.record_failure()

        assert self.breaker.state == CircuitState.OPEN
        assert not self.breaker.allow_request()
