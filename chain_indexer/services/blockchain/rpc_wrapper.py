"""
RPC timeout wrapper.

Bounds every upstream call so a hung endpoint surfaces as RPCTimeoutError.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from loguru import logger

from chain_indexer.config.constants import RPC_DATA_TIMEOUT
from chain_indexer.utils.exceptions import RPCTimeoutError

T = TypeVar("T")


async def with_timeout(
    coro: Awaitable[T],
    timeout: float = RPC_DATA_TIMEOUT,
    operation_name: str = "RPC call",
) -> T:
    """
    Execute async coroutine with timeout.

    Args:
        coro: Coroutine to execute
        timeout: Timeout in seconds (default: RPC_DATA_TIMEOUT)
        operation_name: Operation name for logging

    Returns:
        Result of the coroutine

    Raises:
        RPCTimeoutError: If operation times out
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except TimeoutError as e:
        error_msg = f"{operation_name} timed out after {timeout}s"
        logger.warning(error_msg)
        raise RPCTimeoutError(error_msg) from e
