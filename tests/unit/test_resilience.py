"""Tests for transient-error classification, the circuit breaker and guarded model calls."""

import asyncio

import pytest

from delegationAgent.utils.errors import BudgetExceeded, ModelUnavailable
from delegationAgent.utils.resilience import CircuitBreaker, CircuitState, ModelCallGuard, is_transient_error
from delegationAgent.utils.retry import RetryPolicy

FAST = RetryPolicy(max_attempts=3, backoff_s=0.001, max_backoff_s=0.005)


class RateLimitError(Exception):
    pass


class AuthenticationError(Exception):
    pass


class StatusError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class Calls:
    """Coroutine factory failing with the queued errors, then answering ``ok``."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.count = 0

    async def __call__(self):
        self.count += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class TestClassification:
    @pytest.mark.parametrize("error", [
        ConnectionError("reset by peer"),
        asyncio.TimeoutError(),
        StatusError(429),
        StatusError(503),
        RateLimitError("slow down"),
        RuntimeError("Request timed out"),
    ])
    def test_transient(self, error):
        assert is_transient_error(error)

    @pytest.mark.parametrize("error", [
        StatusError(400),
        StatusError(401),
        AuthenticationError("bad key"),
        ValueError("malformed tool call"),
        BudgetExceeded("budget gone"),
        ModelUnavailable("researcher", 10),
    ])
    def test_permanent(self, error):
        assert not is_transient_error(error)


class TestCircuitBreaker:
    def test_opens_after_threshold(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=2, recovery_s=30, clock=fake_clock)

        breaker.record_failure("researcher")
        assert breaker.allow("researcher")
        breaker.record_failure("researcher")

        assert breaker.state("researcher") == CircuitState.OPEN
        assert not breaker.allow("researcher")
        assert breaker.retry_after("researcher") == 30
        # Other agents have their own circuit
        assert breaker.allow("engineer")

    def test_success_resets_failure_count(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=2, recovery_s=30, clock=fake_clock)

        breaker.record_failure("researcher")
        breaker.record_success("researcher")
        breaker.record_failure("researcher")

        assert breaker.state("researcher") == CircuitState.CLOSED

    def test_half_open_allows_one_trial(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=1, recovery_s=30, clock=fake_clock)
        breaker.record_failure("researcher")

        fake_clock.advance(30)
        assert breaker.state("researcher") == CircuitState.HALF_OPEN
        assert breaker.allow("researcher")
        assert not breaker.allow("researcher")

        breaker.record_success("researcher")
        assert breaker.state("researcher") == CircuitState.CLOSED
        assert breaker.allow("researcher")

    def test_failed_trial_reopens(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=3, recovery_s=30, clock=fake_clock)
        for _ in range(3):
            breaker.record_failure("researcher")
        fake_clock.advance(31)
        assert breaker.allow("researcher")

        breaker.record_failure("researcher")

        assert breaker.state("researcher") == CircuitState.OPEN
        assert breaker.retry_after("researcher") == 30
        assert breaker.stats()["researcher"]["total_failures"] == 4

    def test_abandoned_trial_frees_the_slot(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=1, recovery_s=5, clock=fake_clock)
        breaker.record_failure("researcher")
        fake_clock.advance(5)
        assert breaker.allow("researcher")

        breaker.abandon("researcher")

        assert breaker.allow("researcher")


class TestModelCallGuard:
    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self):
        guard = ModelCallGuard(FAST, CircuitBreaker(failure_threshold=5))
        call = Calls(ConnectionError("reset"), StatusError(503))

        assert await guard.invoke("researcher", call) == "ok"
        assert call.count == 3
        assert guard.breaker.state("researcher") == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self):
        guard = ModelCallGuard(FAST, CircuitBreaker(failure_threshold=1))
        call = Calls(AuthenticationError("bad key"))

        with pytest.raises(AuthenticationError):
            await guard.invoke("researcher", call)

        assert call.count == 1
        # A rejected request says nothing about provider health
        assert guard.breaker.state("researcher") == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self):
        guard = ModelCallGuard(FAST, CircuitBreaker(failure_threshold=10))
        call = Calls(*(ConnectionError(f"reset {i}") for i in range(3)))

        with pytest.raises(ConnectionError, match="reset 2"):
            await guard.invoke("researcher", call)
        assert call.count == 3

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, fake_clock):
        guard = ModelCallGuard(FAST, CircuitBreaker(failure_threshold=2, recovery_s=60, clock=fake_clock))
        # The second failure opens the circuit, so the third attempt is refused
        with pytest.raises(ModelUnavailable):
            await guard.invoke("researcher", Calls(*(ConnectionError("reset") for _ in range(3))))

        call = Calls()
        with pytest.raises(ModelUnavailable) as exc_info:
            await guard.invoke("researcher", call)

        assert call.count == 0
        assert exc_info.value.agent_id == "researcher"
        assert exc_info.value.retry_after_s == 60

        fake_clock.advance(60)
        assert await guard.invoke("researcher", call) == "ok"
        assert guard.breaker.state("researcher") == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_before_retry_can_stop_retrying(self):
        guard = ModelCallGuard(FAST, CircuitBreaker())
        call = Calls(ConnectionError("reset"), ConnectionError("reset"))

        def out_of_time():
            raise BudgetExceeded("no time left")

        with pytest.raises(BudgetExceeded):
            await guard.invoke("researcher", call, before_retry=out_of_time)
        assert call.count == 1
