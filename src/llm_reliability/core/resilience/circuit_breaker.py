"""
Circuit Breaker for the Enhanced HTTP Client.

This module implements an in-process circuit breaker that guards request
execution against a failing upstream.

MECHANISM OF ACTION:
-------------------
1.  **State Transitions**:
    - **CLOSED**: The upstream is healthy. Requests are allowed.
      - On Failure: Consecutive failure counter increments.
      - On Success: Failure counter resets to 0.
      - Threshold Reached: If failures >= failure_threshold, state transitions to OPEN.

    - **OPEN**: The upstream is down. Requests are blocked immediately (Fail Fast).
      - Behavior: Raises `CircuitBreakerOpenError` without invoking the operation.
      - Recovery: Once `recovery_timeout` has elapsed, the next request moves the
        circuit to HALF-OPEN and is let through as the first probe.

    - **HALF-OPEN**: Probing mode.
      - Behavior: Up to `half_open_max_requests` probes pass through.
      - On Failure: Any failure reopens the circuit and restarts the timer.
      - On Success: `success_threshold` consecutive successes close the circuit.
      - Stalled probing: staying half-open beyond `half_open_timeout` reopens.

2.  **Synchronization**:
    Every transition happens under a short, non-awaiting critical section.
    The lock is never held while the guarded operation runs, so reading
    `state` or `get_stats()` never waits on an in-flight request.

3.  **Failure Classification**:
    Only errors that say something about upstream health trip the breaker:
    transport errors, timeouts and 5xx responses. Serialization problems and
    4xx responses propagate without being counted.

The breaker never retries. A rejected or failed call is surfaced to the caller,
which owns the retry policy.
"""

import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from llm_reliability.core.config.constants import (
    DEFAULT_CB_FAILURE_THRESHOLD,
    DEFAULT_CB_HALF_OPEN_MAX_REQUESTS,
    DEFAULT_CB_HALF_OPEN_TIMEOUT,
    DEFAULT_CB_RECOVERY_TIMEOUT,
    DEFAULT_CB_SUCCESS_THRESHOLD,
    CircuitState,
)
from llm_reliability.core.config.settings import get_settings
from llm_reliability.core.exceptions import (
    CircuitBreakerOpenError,
    OperationTimeoutError,
    ResponseStatusError,
    TransportError,
)
from llm_reliability.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitBreakerConfig(BaseModel):
    """Thresholds and timeouts of a circuit breaker. All values must be positive."""

    failure_threshold: int = Field(default=DEFAULT_CB_FAILURE_THRESHOLD, gt=0)
    recovery_timeout: float = Field(default=DEFAULT_CB_RECOVERY_TIMEOUT, gt=0)
    success_threshold: int = Field(default=DEFAULT_CB_SUCCESS_THRESHOLD, gt=0)
    half_open_max_requests: int = Field(default=DEFAULT_CB_HALF_OPEN_MAX_REQUESTS, gt=0)
    half_open_timeout: float = Field(default=DEFAULT_CB_HALF_OPEN_TIMEOUT, gt=0)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_settings(cls) -> "CircuitBreakerConfig":
        cb = get_settings().circuit_breaker
        return cls(
            failure_threshold=cb.CB_FAILURE_THRESHOLD,
            recovery_timeout=cb.CB_RECOVERY_TIMEOUT,
            success_threshold=cb.CB_SUCCESS_THRESHOLD,
            half_open_max_requests=cb.CB_HALF_OPEN_MAX_REQUESTS,
            half_open_timeout=cb.CB_HALF_OPEN_TIMEOUT,
        )


class CircuitBreakerStats(BaseModel):
    """Point-in-time view of a circuit breaker."""

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    half_open_requests: int
    total_requests: int
    total_failures: int
    rejected_requests: int
    trip_count: int
    failure_rate: float
    time_in_state_seconds: float


def is_circuit_breaker_error(exc: BaseException) -> bool:
    """
    Decide whether an exception counts against upstream health.

    Transport errors, timeouts and 5xx responses trip the breaker. Client-side
    problems (bad payloads, 4xx, decode errors) do not.
    """
    if isinstance(exc, ResponseStatusError):
        return exc.is_server_error
    return isinstance(exc, (TransportError, OperationTimeoutError, ConnectionError, TimeoutError))


class CircuitBreaker:
    """
    Async-friendly circuit breaker with CLOSED / OPEN / HALF_OPEN states.

    Usage:
        breaker = CircuitBreaker("api.openai.com", CircuitBreakerConfig(failure_threshold=3))
        result = await breaker.execute(lambda: client.send(request))
    """

    def __init__(
        self,
        name: str = "default",
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._state_changed_at = clock()
        self._failure_count = 0
        self._success_count = 0
        self._half_open_requests = 0
        self._opened_at: float | None = None
        self._half_open_at: float | None = None

        self._total_requests = 0
        self._total_failures = 0
        self._rejected_requests = 0
        self._trip_count = 0

    # ========================================================================
    # Public API
    # ========================================================================

    @property
    def state(self) -> CircuitState:
        return self._state

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` under the breaker.

        Args:
            operation: Zero-argument coroutine function performing the guarded call

        Returns:
            Whatever the operation returns

        Raises:
            CircuitBreakerOpenError: The circuit is open; the operation was not invoked
            Exception: Any exception raised by the operation, unchanged
        """
        self._acquire_permission()

        try:
            result = await operation()
        except Exception as exc:
            if is_circuit_breaker_error(exc):
                self._on_failure(exc)
            else:
                # Not an upstream-health signal; release a half-open slot untouched
                self._on_neutral()
            raise
        except BaseException:
            # Cancellation says nothing about the upstream either
            self._on_neutral()
            raise

        self._on_success()
        return result

    def get_stats(self) -> CircuitBreakerStats:
        with self._lock:
            failure_rate = (
                self._total_failures / self._total_requests if self._total_requests else 0.0
            )
            return CircuitBreakerStats(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                half_open_requests=self._half_open_requests,
                total_requests=self._total_requests,
                total_failures=self._total_failures,
                rejected_requests=self._rejected_requests,
                trip_count=self._trip_count,
                failure_rate=failure_rate,
                time_in_state_seconds=max(0.0, self._clock() - self._state_changed_at),
            )

    def reset(self) -> None:
        """Force the circuit back to CLOSED and clear counters (operator action)."""
        with self._lock:
            self._transition(CircuitState.CLOSED, reason="manual_reset")

    # ========================================================================
    # State machine
    # ========================================================================

    def _acquire_permission(self) -> None:
        with self._lock:
            now = self._clock()

            if self._state == CircuitState.OPEN:
                if self._opened_at is not None and now - self._opened_at >= self.config.recovery_timeout:
                    self._transition(CircuitState.HALF_OPEN, reason="recovery_timeout_elapsed")
                else:
                    self._reject("circuit open")

            elif self._state == CircuitState.HALF_OPEN:
                if self._half_open_at is not None and now - self._half_open_at >= self.config.half_open_timeout:
                    self._transition(CircuitState.OPEN, reason="half_open_timeout")
                    self._reject("half-open probing timed out")
                if self._half_open_requests >= self.config.half_open_max_requests:
                    self._reject("half-open probe limit reached")

            if self._state == CircuitState.HALF_OPEN:
                self._half_open_requests += 1
            self._total_requests += 1

    def _reject(self, reason: str) -> None:
        self._rejected_requests += 1
        logger.warning(
            "Circuit breaker rejected request",
            circuit=self.name,
            state=self._state.value,
            reason=reason,
            stage="CB.2",
        )
        raise CircuitBreakerOpenError(
            f"Circuit breaker '{self.name}' is {self._state.value}: {reason}",
            details={
                "operation": "circuit_breaker.execute",
                "circuit": self.name,
                "state": self._state.value,
                "reason": reason,
                "recovery_timeout": self.config.recovery_timeout,
            },
        )

    def _on_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._transition(CircuitState.CLOSED, reason="success_threshold_reached")
            else:
                self._failure_count = 0

    def _on_failure(self, exc: BaseException) -> None:
        with self._lock:
            self._total_failures += 1

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, reason="half_open_probe_failed", error=exc)
                return

            self._failure_count += 1
            if self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN, reason="failure_threshold_reached", error=exc)

    def _on_neutral(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_requests > 0:
                self._half_open_requests -= 1

    def _transition(self, new_state: CircuitState, reason: str, error: BaseException | None = None) -> None:
        """Apply a state change. Caller must hold ``self._lock``."""
        old_state = self._state
        now = self._clock()

        self._state = new_state
        self._state_changed_at = now

        if new_state == CircuitState.OPEN:
            self._opened_at = now
            self._half_open_at = None
            self._success_count = 0
            self._half_open_requests = 0
            self._trip_count += 1
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_at = now
            self._success_count = 0
            self._half_open_requests = 0
        else:
            self._opened_at = None
            self._half_open_at = None
            self._failure_count = 0
            self._success_count = 0
            self._half_open_requests = 0

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log_fields: dict[str, Any] = {
            "circuit": self.name,
            "from_state": old_state.value,
            "to_state": new_state.value,
            "reason": reason,
            "stage": "CB.1",
        }
        if error is not None:
            log_fields["error"] = str(error)
            log_fields["error_type"] = type(error).__name__
        log("Circuit breaker state changed", **log_fields)
