"""
Circuit breaker.

CLOSED passes calls through and counts consecutive failures. Reaching the
threshold opens the circuit until ``timeout`` seconds have elapsed; then a
single HALF_OPEN trial decides between CLOSED and another OPEN period.
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

from loguru import logger

from chain_indexer.config.constants import (
    CIRCUIT_BREAKER_THRESHOLD,
    CIRCUIT_BREAKER_TIMEOUT,
)
from chain_indexer.utils.exceptions import CircuitBreakerOpenError

T = TypeVar("T")


class CircuitState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerState:
    """Point-in-time view of a breaker."""

    name: str
    state: CircuitState
    failure_count: int
    next_attempt_at: float | None


class CircuitBreaker:
    """Circuit breaker guarding one logical dependency."""

    def __init__(
        self,
        name: str,
        threshold: int = CIRCUIT_BREAKER_THRESHOLD,
        timeout: float = CIRCUIT_BREAKER_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self.name = name
        self.threshold = threshold
        self.timeout = timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._next_attempt_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def next_attempt_at(self) -> float | None:
        return self._next_attempt_at

    def can_proceed(self) -> tuple[bool, str | None]:
        """
        Decide whether a call may start now.

        Moves OPEN to HALF_OPEN once the cooldown has elapsed and admits
        exactly one trial call.

        Returns:
            Tuple of (allowed, rejection reason)
        """
        if self._state == CircuitState.CLOSED:
            return True, None

        if self._state == CircuitState.OPEN:
            assert self._next_attempt_at is not None
            if self._clock() < self._next_attempt_at:
                remaining = self._next_attempt_at - self._clock()
                return False, f"circuit '{self.name}' is OPEN (retry in {remaining:.1f}s)"
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
            logger.info(f"[CircuitBreaker] {self.name}: OPEN -> HALF_OPEN")

        # HALF_OPEN
        if self._trial_in_flight:
            return False, f"circuit '{self.name}' is HALF_OPEN (trial in flight)"
        self._trial_in_flight = True
        return True, None

    def record_success(self) -> None:
        """Record a successful call."""
        if self._state != CircuitState.CLOSED:
            logger.info(f"[CircuitBreaker] {self.name}: {self._state} -> CLOSED")
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._next_attempt_at = None
        self._trial_in_flight = False

    def record_failure(self) -> None:
        """Record a failed call."""
        self._trial_in_flight = False

        if self._state == CircuitState.HALF_OPEN:
            self._open()
            return

        self._failure_count += 1
        if self._state == CircuitState.CLOSED and self._failure_count >= self.threshold:
            self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._next_attempt_at = self._clock() + self.timeout
        logger.warning(
            f"[CircuitBreaker] {self.name}: OPEN after {self._failure_count} "
            f"failures, next attempt in {self.timeout}s"
        )

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Run ``fn`` through the breaker.

        Raises:
            CircuitBreakerOpenError: If the call is rejected
        """
        allowed, reason = self.can_proceed()
        if not allowed:
            raise CircuitBreakerOpenError(reason)

        try:
            result = await fn(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        self.record_success()

    def get_state(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            next_attempt_at=self._next_attempt_at,
        )


class CircuitBreakerRegistry:
    """Owns one breaker per dependency name."""

    def __init__(
        self,
        threshold: int = CIRCUIT_BREAKER_THRESHOLD,
        timeout: float = CIRCUIT_BREAKER_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.timeout = timeout
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name, threshold=self.threshold, timeout=self.timeout, clock=self._clock
            )
            self._breakers[name] = breaker
        return breaker

    def get_states(self) -> list[CircuitBreakerState]:
        return [breaker.get_state() for breaker in self._breakers.values()]
