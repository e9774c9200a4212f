"""
Contract fetcher.

Log-range, block-height and code queries against endpoints selected from
the pool. Every call runs inside the endpoint's circuit breaker and a
timeout, and its outcome updates the endpoint's health.
"""

import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from loguru import logger
from web3 import Web3

from chain_indexer.config.constants import RPC_DATA_TIMEOUT
from chain_indexer.models.indexing import LogRecord, RPCEndpoint
from chain_indexer.services.blockchain.provider_registry import ProviderRegistry
from chain_indexer.services.blockchain.rpc_wrapper import with_timeout
from chain_indexer.services.indexer.rpc_endpoint_pool import RPCEndpointPool
from chain_indexer.services.monitoring.metrics_collector import MetricsCollector
from chain_indexer.utils.circuit_breaker import CircuitBreakerRegistry
from chain_indexer.utils.exceptions import ChunkFetchError, RPCError
from chain_indexer.utils.retry import RetryPolicy
from chain_indexer.utils.security import mask_address, mask_url
from chain_indexer.utils.validation import normalize_address

T = TypeVar("T")


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return str(value)


def normalize_log(entry: Mapping[str, Any]) -> LogRecord:
    """
    Convert a web3 log entry into a LogRecord.

    Args:
        entry: Log as returned by eth_getLogs (AttributeDict or dict)

    Returns:
        Normalized log
    """
    return LogRecord(
        address=str(entry["address"]),
        topics=tuple(_to_hex(topic) for topic in entry.get("topics", [])),
        data=_to_hex(entry.get("data", "0x")),
        block_number=int(entry["blockNumber"]),
        transaction_hash=_to_hex(entry["transactionHash"]),
        transaction_index=int(entry.get("transactionIndex", 0)),
        log_index=int(entry.get("logIndex", 0)),
        removed=bool(entry.get("removed", False)),
    )


class ContractFetcher:
    """Upstream queries for one or more chains."""

    def __init__(
        self,
        pool: RPCEndpointPool,
        retry_policy: RetryPolicy | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        providers: ProviderRegistry | None = None,
        request_timeout: float = RPC_DATA_TIMEOUT,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.pool = pool
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy()
        self.breakers = breakers if breakers is not None else CircuitBreakerRegistry()
        self.providers = (
            providers if providers is not None else ProviderRegistry(timeout=request_timeout)
        )
        self.request_timeout = request_timeout
        self.metrics = metrics
        self._clock = clock

    async def _call(
        self,
        chain_id: str,
        operation_name: str,
        request: Callable[[Any], Awaitable[T]],
    ) -> T:
        """Run one request against one selected endpoint."""
        endpoint: RPCEndpoint = self.pool.get_healthy_endpoint(chain_id)
        provider = self.providers.get(endpoint.url)
        breaker = self.breakers.get(endpoint.url)
        label = f"{operation_name} via {mask_url(endpoint.url)}"

        async def guarded() -> T:
            return await with_timeout(request(provider), self.request_timeout, label)

        started = self._clock()
        try:
            result = await breaker.call(guarded)
        except Exception as e:
            latency_ms = (self._clock() - started) * 1000
            self.pool.mark_endpoint_unhealthy(endpoint, repr(e))
            if self.metrics:
                self.metrics.record_rpc_request(False, latency_ms)
            raise

        latency_ms = (self._clock() - started) * 1000
        self.pool.mark_endpoint_healthy(endpoint, latency_ms)
        if self.metrics:
            self.metrics.record_rpc_request(True, latency_ms)
        return result

    async def fetch_contract_data(
        self,
        chain_id: str,
        contract_address: str,
        from_block: int,
        to_block: int,
    ) -> list[LogRecord]:
        """
        Fetch all logs of a contract over an inclusive block range.

        Args:
            chain_id: Chain identifier
            contract_address: Contract address
            from_block: First block (inclusive)
            to_block: Last block (inclusive)

        Returns:
            Logs ordered as returned by the node

        Raises:
            ValueError: If the range or address is invalid
            ChunkFetchError: If every attempt failed or a returned log is malformed
        """
        if from_block > to_block:
            raise ValueError(f"Invalid block range {from_block}-{to_block}")

        address = normalize_address(contract_address)
        filter_params = {
            "address": address,
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        operation = f"get_logs {mask_address(address)} [{from_block}, {to_block}]"

        async def attempt() -> list[Any]:
            return await self._call(
                chain_id, operation, lambda w3: w3.eth.get_logs(filter_params)
            )

        try:
            raw_logs = await self.retry_policy.execute(attempt, operation_name=operation)
        except Exception as e:
            raise ChunkFetchError(
                f"Failed to fetch blocks {from_block}-{to_block} on {chain_id}: {e}"
            ) from e

        try:
            logs = [normalize_log(entry) for entry in raw_logs]
        except (KeyError, TypeError, ValueError) as e:
            raise ChunkFetchError(
                f"Malformed log in blocks {from_block}-{to_block} on {chain_id}: {e!r}"
            ) from e
        logger.debug(f"[Fetcher] {operation}: {len(logs)} logs")
        return logs

    async def get_block_number(self, chain_id: str) -> int:
        """
        Get the current chain head.

        Raises:
            RPCError: If every attempt failed
        """
        async def read_head(w3: Any) -> int:
            return await w3.eth.block_number

        async def attempt() -> int:
            return await self._call(chain_id, "eth_blockNumber", read_head)

        try:
            return int(
                await self.retry_policy.execute(
                    attempt, operation_name=f"eth_blockNumber ({chain_id})"
                )
            )
        except Exception as e:
            raise RPCError(f"Failed to read block number on {chain_id}: {e}") from e

    async def get_code(
        self,
        chain_id: str,
        contract_address: str,
        block: int,
        retry: bool = False,
    ) -> bytes:
        """
        Get contract bytecode at a block.

        Args:
            chain_id: Chain identifier
            contract_address: Contract address
            block: Block to read the code at
            retry: Run through the retry policy instead of a single attempt

        Raises:
            RPCError: If every retried attempt failed
            Exception: Whatever the upstream call raised (single attempt)
        """
        address = normalize_address(contract_address)
        operation = f"eth_getCode @{block}"

        async def attempt() -> Any:
            return await self._call(
                chain_id,
                operation,
                lambda w3: w3.eth.get_code(address, block_identifier=block),
            )

        if retry:
            try:
                code = await self.retry_policy.execute(attempt, operation_name=operation)
            except Exception as e:
                raise RPCError(f"Failed to read code at {block} on {chain_id}: {e}") from e
        else:
            code = await attempt()
        if isinstance(code, str):
            return bytes.fromhex(code.removeprefix("0x"))
        return bytes(code)
