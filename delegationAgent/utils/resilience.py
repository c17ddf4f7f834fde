"""Retry and circuit breaking around model calls.

Transient provider errors (network, timeouts, rate limits, overloaded
upstreams) are retried with backoff. Repeated failures for one agent open its
circuit: further calls fail fast with ``ModelUnavailable`` until the recovery
window passes, then a single trial call decides whether the circuit closes.

Usage:

    guard = ModelCallGuard(RetryPolicy(max_attempts=3), CircuitBreaker())
    response = await guard.invoke("researcher", lambda: model.ainvoke(messages))
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from delegationAgent.utils.errors import DelegationAgentError, ModelUnavailable
from delegationAgent.utils.retry import RetryExhausted, RetryPolicy, retry_async

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504, 529})

# Provider SDKs name their transient errors consistently enough to match on
_TRANSIENT_NAME_MARKERS = (
    "RateLimit",
    "APIConnection",
    "APITimeout",
    "InternalServer",
    "ServiceUnavailable",
    "Overloaded",
)
_PERMANENT_NAME_MARKERS = ("Authentication", "PermissionDenied", "BadRequest", "NotFound", "Validation")
_TRANSIENT_MESSAGE_MARKERS = (
    "rate limit",
    "too many requests",
    "timed out",
    "timeout",
    "temporarily unavailable",
    "overloaded",
    "connection reset",
    "connection refused",
    "connection error",
)


def _status_code(exc: BaseException) -> Optional[int]:
    code = getattr(exc, "status_code", None)
    if code is None:
        code = getattr(getattr(exc, "response", None), "status_code", None)
    return code if isinstance(code, int) else None


def is_transient_error(exc: BaseException) -> bool:
    """Whether a failed model call is worth retrying.

    Orchestrator errors (budget, depth, cancellation) are never transient.
    """
    if isinstance(exc, DelegationAgentError):
        return False
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    code = _status_code(exc)
    if code is not None:
        return code in TRANSIENT_STATUS_CODES

    name = type(exc).__name__
    if any(marker in name for marker in _PERMANENT_NAME_MARKERS):
        return False
    if any(marker in name for marker in _TRANSIENT_NAME_MARKERS):
        return True

    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MESSAGE_MARKERS)


# ========== Circuit breaker ==========


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class _Circuit:
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    opened_at: float = 0.0
    trial_in_flight: bool = False
    total_failures: int = 0
    total_rejections: int = 0


class CircuitBreaker:
    """Independent circuits keyed by name (one per agent).

    CLOSED counts consecutive failures and opens at ``failure_threshold``.
    OPEN rejects calls until ``recovery_s`` has passed, then moves to
    HALF_OPEN, which lets exactly one trial call through: success closes the
    circuit, failure opens it again.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_s = recovery_s
        self._clock = clock
        self._circuits: Dict[str, _Circuit] = {}

    def _circuit(self, name: str) -> _Circuit:
        circuit = self._circuits.get(name)
        if circuit is None:
            circuit = self._circuits[name] = _Circuit()
        return circuit

    def state(self, name: str) -> CircuitState:
        circuit = self._circuit(name)
        if circuit.state == CircuitState.OPEN and self._clock() - circuit.opened_at >= self.recovery_s:
            circuit.state = CircuitState.HALF_OPEN
            circuit.trial_in_flight = False
            LOGGER.info(f"Circuit '{name}' half-open: allowing a trial call")
        return circuit.state

    def allow(self, name: str) -> bool:
        """Reserve a call on ``name``; False means fail fast."""
        state = self.state(name)
        circuit = self._circuits[name]
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN and not circuit.trial_in_flight:
            circuit.trial_in_flight = True
            return True
        circuit.total_rejections += 1
        return False

    def record_success(self, name: str) -> None:
        circuit = self._circuit(name)
        if circuit.state != CircuitState.CLOSED:
            LOGGER.info(f"Circuit '{name}' closed after a successful call")
        circuit.state = CircuitState.CLOSED
        circuit.consecutive_failures = 0
        circuit.trial_in_flight = False

    def record_failure(self, name: str) -> None:
        circuit = self._circuit(name)
        circuit.consecutive_failures += 1
        circuit.total_failures += 1
        circuit.trial_in_flight = False

        reopen = circuit.state == CircuitState.HALF_OPEN
        if reopen or circuit.consecutive_failures >= self.failure_threshold:
            if circuit.state != CircuitState.OPEN:
                LOGGER.warning(
                    f"Circuit '{name}' opened after {circuit.consecutive_failures} consecutive failures"
                )
            circuit.state = CircuitState.OPEN
            circuit.opened_at = self._clock()

    def abandon(self, name: str) -> None:
        """Release a half-open trial that ended without a verdict."""
        circuit = self._circuits.get(name)
        if circuit is not None:
            circuit.trial_in_flight = False

    def retry_after(self, name: str) -> float:
        circuit = self._circuit(name)
        if circuit.state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.recovery_s - (self._clock() - circuit.opened_at))

    def reset(self, name: str) -> None:
        self._circuits.pop(name, None)

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: {
                "state": self.state(name).value,
                "consecutive_failures": circuit.consecutive_failures,
                "total_failures": circuit.total_failures,
                "total_rejections": circuit.total_rejections,
            }
            for name, circuit in list(self._circuits.items())
        }


# ========== Guarded model calls ==========


class ModelCallGuard:
    """Runs a model call under the retry policy and the caller's circuit."""

    def __init__(self, policy: Optional[RetryPolicy] = None, breaker: Optional[CircuitBreaker] = None):
        self.policy = policy or RetryPolicy()
        self.breaker = breaker or CircuitBreaker()

    async def invoke(
        self,
        name: str,
        func: Callable[[], Awaitable[T]],
        *,
        before_retry: Optional[Callable[[], None]] = None,
    ) -> T:
        """Call ``func`` for circuit ``name``.

        Args:
            name: Circuit key (the agent id)
            func: Zero-argument coroutine factory making one model call
            before_retry: Called before each retry; raising stops retrying

        Raises:
            ModelUnavailable: The circuit is open
            Exception: The last error, when it is not transient or retries ran out
        """

        async def attempt() -> T:
            if not self.breaker.allow(name):
                raise ModelUnavailable(name, self.breaker.retry_after(name))
            try:
                result = await func()
            except DelegationAgentError:
                self.breaker.abandon(name)
                raise
            except Exception as e:
                if is_transient_error(e):
                    self.breaker.record_failure(name)
                else:
                    # The provider answered; a bad request says nothing about its health
                    self.breaker.abandon(name)
                raise
            except BaseException:
                self.breaker.abandon(name)
                raise
            self.breaker.record_success(name)
            return result

        def on_retry(attempt_no: int, error: BaseException) -> None:
            LOGGER.warning(f"Model call for '{name}' failed (attempt {attempt_no}/{self.policy.max_attempts}): {error}")
            if before_retry is not None:
                before_retry()

        try:
            return await retry_async(attempt, self.policy, should_retry=is_transient_error, on_retry=on_retry)
        except RetryExhausted as e:
            LOGGER.error(f"Model call for '{name}' gave up after {e.attempts} attempts: {e.last_error}")
            raise e.last_error from None
