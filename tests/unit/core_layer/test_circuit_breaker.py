"""
Unit Tests for CircuitBreaker

Tests the state machine (closed -> open -> half-open -> closed/open), failure
classification and statistics. Time is driven by an injected fake clock.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from llm_reliability.core.config.constants import CircuitState
from llm_reliability.core.exceptions import (
    CircuitBreakerOpenError,
    OperationTimeoutError,
    ResponseStatusError,
    SerializationError,
    TransportError,
)
from llm_reliability.core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    is_circuit_breaker_error,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _ok():
    return "ok"


async def _fail():
    raise TransportError("upstream down")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    config = CircuitBreakerConfig(
        failure_threshold=2,
        recovery_timeout=30.0,
        success_threshold=2,
        half_open_max_requests=2,
        half_open_timeout=10.0,
    )
    return CircuitBreaker("api.example.com", config, clock=clock)


async def _trip(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.config.failure_threshold):
        with pytest.raises(TransportError):
            await breaker.execute(_fail)


@pytest.mark.unit
class TestClosedState:
    async def test_starts_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED

    async def test_success_passes_result_through(self, breaker):
        assert await breaker.execute(_ok) == "ok"

    async def test_opens_after_threshold_failures(self, breaker):
        with pytest.raises(TransportError):
            await breaker.execute(_fail)
        assert breaker.state == CircuitState.CLOSED

        with pytest.raises(TransportError):
            await breaker.execute(_fail)
        assert breaker.state == CircuitState.OPEN

    async def test_success_resets_failure_count(self, breaker):
        with pytest.raises(TransportError):
            await breaker.execute(_fail)
        await breaker.execute(_ok)
        with pytest.raises(TransportError):
            await breaker.execute(_fail)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats().failure_count == 1


@pytest.mark.unit
class TestOpenState:
    async def test_open_rejects_without_invoking_operation(self, breaker):
        await _trip(breaker)
        operation = AsyncMock(return_value="never")

        with pytest.raises(CircuitBreakerOpenError):
            await breaker.execute(operation)

        operation.assert_not_called()
        assert breaker.get_stats().rejected_requests == 1

    async def test_stays_open_before_recovery_timeout(self, breaker, clock):
        await _trip(breaker)
        clock.advance(29.9)

        with pytest.raises(CircuitBreakerOpenError):
            await breaker.execute(_ok)
        assert breaker.state == CircuitState.OPEN

    async def test_moves_to_half_open_after_recovery_timeout(self, breaker, clock):
        await _trip(breaker)
        clock.advance(30.0)

        assert await breaker.execute(_ok) == "ok"
        assert breaker.state == CircuitState.HALF_OPEN


@pytest.mark.unit
class TestHalfOpenState:
    async def test_closes_after_success_threshold(self, breaker, clock):
        await _trip(breaker)
        clock.advance(30.0)

        await breaker.execute(_ok)
        await breaker.execute(_ok)

        assert breaker.state == CircuitState.CLOSED
        stats = breaker.get_stats()
        assert stats.failure_count == 0
        assert stats.success_count == 0

    async def test_probe_failure_reopens(self, breaker, clock):
        await _trip(breaker)
        clock.advance(30.0)

        with pytest.raises(TransportError):
            await breaker.execute(_fail)

        assert breaker.state == CircuitState.OPEN
        assert breaker.get_stats().trip_count == 2

    async def test_probe_limit_rejects_excess_concurrent_requests(self, breaker, clock):
        await _trip(breaker)
        clock.advance(30.0)
        gate = asyncio.Event()

        async def slow_ok():
            await gate.wait()
            return "ok"

        probes = [asyncio.create_task(breaker.execute(slow_ok)) for _ in range(2)]
        await asyncio.sleep(0)

        with pytest.raises(CircuitBreakerOpenError):
            await breaker.execute(_ok)

        gate.set()
        assert await asyncio.gather(*probes) == ["ok", "ok"]
        assert breaker.state == CircuitState.CLOSED

    async def test_single_success_closes_with_threshold_of_one(self, clock):
        breaker = CircuitBreaker(
            "api.example.com",
            CircuitBreakerConfig(failure_threshold=1, recovery_timeout=5.0, success_threshold=1),
            clock=clock,
        )
        with pytest.raises(TransportError):
            await breaker.execute(_fail)
        assert breaker.state == CircuitState.OPEN

        clock.advance(5.0)

        assert await breaker.execute(_ok) == "ok"
        assert breaker.state == CircuitState.CLOSED

    async def test_cancelled_half_open_call_releases_its_slot(self, clock):
        breaker = CircuitBreaker(
            "api.example.com",
            CircuitBreakerConfig(failure_threshold=1, recovery_timeout=5.0, half_open_max_requests=1),
            clock=clock,
        )
        with pytest.raises(TransportError):
            await breaker.execute(_fail)
        clock.advance(5.0)

        async def hang():
            await asyncio.Event().wait()

        pending_call = asyncio.create_task(breaker.execute(hang))
        await asyncio.sleep(0)
        assert breaker.get_stats().half_open_requests == 1

        pending_call.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending_call

        stats = breaker.get_stats()
        assert stats.state == CircuitState.HALF_OPEN
        assert stats.half_open_requests == 0
        assert stats.total_failures == 1
        assert await breaker.execute(_ok) == "ok"

    async def test_half_open_timeout_reopens(self, breaker, clock):
        await _trip(breaker)
        clock.advance(30.0)
        await breaker.execute(_ok)

        clock.advance(10.0)
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.execute(_ok)
        assert breaker.state == CircuitState.OPEN


@pytest.mark.unit
class TestFailureClassification:
    @pytest.mark.parametrize(
        "exc, counts",
        [
            (TransportError("x"), True),
            (OperationTimeoutError("x"), True),
            (ConnectionResetError(), True),
            (ResponseStatusError("x", status_code=503), True),
            (ResponseStatusError("x", status_code=404), False),
            (SerializationError("x"), False),
            (ValueError("x"), False),
        ],
    )
    def test_is_circuit_breaker_error(self, exc, counts):
        assert is_circuit_breaker_error(exc) is counts

    async def test_client_errors_do_not_trip(self, breaker):
        async def not_found():
            raise ResponseStatusError("HTTP 404", status_code=404)

        for _ in range(5):
            with pytest.raises(ResponseStatusError):
                await breaker.execute(not_found)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats().total_failures == 0

    async def test_server_errors_trip(self, breaker):
        async def unavailable():
            raise ResponseStatusError("HTTP 503", status_code=503)

        for _ in range(2):
            with pytest.raises(ResponseStatusError):
                await breaker.execute(unavailable)

        assert breaker.state == CircuitState.OPEN


@pytest.mark.unit
class TestStatsAndReset:
    async def test_stats_track_totals(self, breaker):
        await breaker.execute(_ok)
        with pytest.raises(TransportError):
            await breaker.execute(_fail)

        stats = breaker.get_stats()
        assert stats.name == "api.example.com"
        assert stats.total_requests == 2
        assert stats.total_failures == 1
        assert stats.failure_rate == 0.5

    async def test_reset_closes_circuit(self, breaker):
        await _trip(breaker)
        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert await breaker.execute(_ok) == "ok"

    def test_config_rejects_non_positive_values(self):
        with pytest.raises(ValueError):
            CircuitBreakerConfig(failure_threshold=0)

    def test_config_from_settings(self, monkeypatch):
        from llm_reliability.core.config.settings import reload_settings

        monkeypatch.setenv("CB_FAILURE_THRESHOLD", "9")
        reload_settings()

        assert CircuitBreakerConfig.from_settings().failure_threshold == 9
