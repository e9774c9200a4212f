"""
Tests for CircuitBreaker.

Covers:
- CLOSED -> OPEN after threshold consecutive failures
- Rejection while OPEN until the timeout elapses
- Single HALF_OPEN trial and its two outcomes
"""

import pytest

from chain_indexer.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from chain_indexer.utils.exceptions import CircuitBreakerOpenError


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def ok():
    return "ok"


async def boom():
    raise ConnectionError("boom")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("rpc", threshold=3, timeout=60.0, clock=clock)


async def trip(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.threshold):
        with pytest.raises(ConnectionError):
            await breaker.call(boom)


class TestCircuitBreakerTransitions:
    """Test state machine transitions."""

    @pytest.mark.asyncio
    async def test_closed_passes_calls_through(self, breaker):
        assert await breaker.call(ok) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_opens_after_threshold_failures(self, breaker, clock):
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(boom)
        assert breaker.state == CircuitState.CLOSED

        with pytest.raises(ConnectionError):
            await breaker.call(boom)

        assert breaker.state == CircuitState.OPEN
        assert breaker.next_attempt_at == clock.now + 60.0

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_count(self, breaker):
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(boom)
        await breaker.call(ok)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(boom)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 2

    @pytest.mark.asyncio
    async def test_open_rejects_until_timeout(self, breaker, clock):
        await trip(breaker)
        calls = []

        async def tracked():
            calls.append(1)
            return "ok"

        clock.advance(59.9)
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(tracked)
        assert calls == []
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self, breaker, clock):
        await trip(breaker)
        clock.advance(60.0)

        assert await breaker.call(ok) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert breaker.next_attempt_at is None

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens_with_new_timeout(self, breaker, clock):
        await trip(breaker)
        clock.advance(61.0)

        with pytest.raises(ConnectionError):
            await breaker.call(boom)

        assert breaker.state == CircuitState.OPEN
        assert breaker.next_attempt_at == clock.now + 60.0
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(ok)

    @pytest.mark.asyncio
    async def test_half_open_admits_exactly_one_trial(self, breaker, clock):
        await trip(breaker)
        clock.advance(60.0)

        allowed, _ = breaker.can_proceed()
        assert allowed is True
        assert breaker.state == CircuitState.HALF_OPEN

        allowed_again, reason = breaker.can_proceed()
        assert allowed_again is False
        assert "HALF_OPEN" in reason

    def test_record_methods_drive_state(self, breaker):
        for _ in range(3):
            breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_state().failure_count == 0

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreaker("x", threshold=0)


class TestCircuitBreakerRegistry:
    """Test per-dependency breaker registry."""

    def test_same_name_same_breaker(self):
        registry = CircuitBreakerRegistry(threshold=2, timeout=5)

        first = registry.get("https://a")
        assert registry.get("https://a") is first
        assert registry.get("https://b") is not first
        assert first.threshold == 2
        assert len(registry.get_states()) == 2
