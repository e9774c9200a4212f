"""
Retry policy with exponential backoff.

delay(attempt) = min(base_delay * 2**attempt + uniform(0, jitter), max_delay)
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from loguru import logger

from chain_indexer.config.constants import (
    RPC_MAX_RETRIES,
    RPC_RETRY_DELAY_BASE,
    RPC_RETRY_JITTER,
    RPC_RETRY_MAX_DELAY,
)

T = TypeVar("T")


class RetryPolicy:
    """
    Execute an async callable up to max_retries + 1 times.

    The last error is re-raised once attempts are exhausted. Sleep and
    random source are injectable so tests never wait on real timers.
    """

    def __init__(
        self,
        max_retries: int = RPC_MAX_RETRIES,
        base_delay: float = RPC_RETRY_DELAY_BASE,
        max_delay: float = RPC_RETRY_MAX_DELAY,
        jitter: float = RPC_RETRY_JITTER,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.retry_on = retry_on
        self._sleep = sleep
        self._rng = rng or random.Random()

    def compute_delay(self, attempt: int) -> float:
        """
        Backoff delay before retry number ``attempt`` (0-based).

        Args:
            attempt: Index of the attempt that just failed

        Returns:
            Delay in seconds, capped at max_delay
        """
        jitter = self._rng.uniform(0, self.jitter) if self.jitter > 0 else 0.0
        return min(self.base_delay * (2 ** attempt) + jitter, self.max_delay)

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """
        Run ``fn`` with retries.

        Args:
            fn: Zero-argument factory returning a fresh awaitable per attempt
            operation_name: Name used in log messages
            on_retry: Optional hook called with (attempt, error) before sleeping

        Returns:
            The first successful result

        Raises:
            The last error raised by ``fn`` once all attempts failed
        """
        attempts = self.max_retries + 1
        last_error: BaseException | None = None

        for attempt in range(attempts):
            try:
                result = await fn()
                if attempt > 0:
                    logger.success(
                        f"[Retry] {operation_name} succeeded on attempt "
                        f"{attempt + 1}/{attempts}"
                    )
                return result
            except self.retry_on as e:
                last_error = e
                if attempt >= attempts - 1:
                    break

                delay = self.compute_delay(attempt)
                logger.warning(
                    f"[Retry] {operation_name} failed on attempt "
                    f"{attempt + 1}/{attempts}: {e}. Retrying in {delay:.2f}s..."
                )
                if on_retry is not None:
                    on_retry(attempt, e)
                await self._sleep(delay)

        logger.error(
            f"[Retry] {operation_name} failed after {attempts} attempts: {last_error}"
        )
        assert last_error is not None
        raise last_error
