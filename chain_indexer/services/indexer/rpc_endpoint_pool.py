"""
RPC endpoint pool.

Per-chain endpoint lists with round-robin selection that skips demoted
endpoints, plus a background probe loop that re-promotes recovered ones.
Endpoints are never removed; health only influences selection.
"""

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp
from loguru import logger

from chain_indexer.config.constants import (
    ENDPOINT_FAILURE_THRESHOLD,
    HEALTH_CHECK_INTERVAL,
    RPC_PROBE_TIMEOUT,
)
from chain_indexer.models.enums import HealthStatus
from chain_indexer.models.indexing import RPCEndpoint
from chain_indexer.utils.datetime_utils import utc_now
from chain_indexer.utils.exceptions import NoEndpointsConfiguredError, RPCError
from chain_indexer.utils.security import mask_url, validate_secure_endpoint

EndpointResolver = Callable[[str], list[str]]
ProbeFn = Callable[[RPCEndpoint], Awaitable[Any]]

BLOCK_NUMBER_REQUEST = {"jsonrpc": "2.0", "method": "eth_blockNumber", "params": [], "id": 1}


class RPCEndpointPool:
    """Registry of RPC endpoints for every initialized chain."""

    def __init__(
        self,
        resolver: EndpointResolver | None = None,
        failure_threshold: int = ENDPOINT_FAILURE_THRESHOLD,
        probe_timeout: float = RPC_PROBE_TIMEOUT,
        health_check_interval: float = HEALTH_CHECK_INTERVAL,
        environment: str = "development",
        probe: ProbeFn | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize pool.

        Args:
            resolver: Maps a chain id to its configured endpoint URLs
            failure_threshold: Consecutive failures before an endpoint is demoted
            probe_timeout: Timeout of one background probe in seconds
            health_check_interval: Default seconds between probe rounds
            environment: Deployment environment (production rejects plain HTTP)
            probe: Probe coroutine; defaults to an eth_blockNumber POST
            clock: Monotonic clock for response timing
        """
        self._resolver = resolver
        self.failure_threshold = failure_threshold
        self.probe_timeout = probe_timeout
        self.health_check_interval = health_check_interval
        self.environment = environment
        self._probe = probe or self._probe_block_number
        self._clock = clock

        self._endpoints: dict[str, list[RPCEndpoint]] = {}
        self._cursors: dict[str, int] = {}
        self._health_task: asyncio.Task | None = None
        self._session: aiohttp.ClientSession | None = None

    @property
    def chains(self) -> list[str]:
        return list(self._endpoints)

    def initialize_chain(
        self, chain_id: str, endpoints: list[str] | None = None
    ) -> list[RPCEndpoint]:
        """
        Register the endpoint list of a chain. Idempotent.

        Args:
            chain_id: Chain identifier
            endpoints: Explicit URLs; resolved from configuration when omitted

        Returns:
            Registered endpoints

        Raises:
            NoEndpointsConfiguredError: If the chain has no endpoints
            InsecureEndpointError: Plain HTTP endpoint in production
        """
        existing = self._endpoints.get(chain_id)
        if existing is not None:
            return existing

        urls = endpoints if endpoints is not None else (
            self._resolver(chain_id) if self._resolver else []
        )
        unique_urls = list(dict.fromkeys(url.strip() for url in urls if url.strip()))
        if not unique_urls:
            raise NoEndpointsConfiguredError(f"No RPC endpoints configured for {chain_id}")

        for url in unique_urls:
            validate_secure_endpoint(url, self.environment)

        registered = [RPCEndpoint(url=url, chain_id=chain_id) for url in unique_urls]
        self._endpoints[chain_id] = registered
        self._cursors[chain_id] = 0
        logger.info(
            f"[RPCPool] Initialized {chain_id} with {len(registered)} endpoints: "
            f"{', '.join(mask_url(ep.url) for ep in registered)}"
        )
        return registered

    def get_endpoints(self, chain_id: str) -> list[RPCEndpoint]:
        endpoints = self._endpoints.get(chain_id)
        if not endpoints:
            raise NoEndpointsConfiguredError(f"Chain {chain_id} is not initialized")
        return endpoints

    def get_healthy_endpoint(self, chain_id: str) -> RPCEndpoint:
        """
        Select the next healthy endpoint round-robin.

        Falls back to the first endpoint when none is healthy, so callers
        can still attempt work while every endpoint is demoted.

        Args:
            chain_id: Chain identifier

        Returns:
            Selected endpoint

        Raises:
            NoEndpointsConfiguredError: If the chain is not initialized
        """
        endpoints = self.get_endpoints(chain_id)
        count = len(endpoints)
        cursor = self._cursors.get(chain_id, 0)

        for offset in range(count):
            index = (cursor + offset) % count
            endpoint = endpoints[index]
            if endpoint.healthy:
                self._cursors[chain_id] = (index + 1) % count
                return endpoint

        logger.warning(
            f"[RPCPool] All {count} endpoints for {chain_id} are unhealthy, "
            f"running degraded on {mask_url(endpoints[0].url)}"
        )
        return endpoints[0]

    def mark_endpoint_unhealthy(
        self, endpoint: RPCEndpoint, error: str | None = None
    ) -> None:
        """Count a failure; demote the endpoint once the threshold is reached."""
        endpoint.consecutive_failures += 1
        endpoint.last_checked_at = utc_now()
        endpoint.last_error = error

        if endpoint.healthy and endpoint.consecutive_failures >= self.failure_threshold:
            endpoint.healthy = False
            logger.warning(
                f"[RPCPool] Endpoint {mask_url(endpoint.url)} ({endpoint.chain_id}) "
                f"marked unhealthy after {endpoint.consecutive_failures} failures: {error}"
            )

    def mark_endpoint_healthy(
        self, endpoint: RPCEndpoint, response_time_ms: float
    ) -> None:
        """Reset failures and record response time."""
        recovered = not endpoint.healthy
        endpoint.healthy = True
        endpoint.consecutive_failures = 0
        endpoint.last_response_time_ms = response_time_ms
        endpoint.last_checked_at = utc_now()
        endpoint.last_error = None
        if recovered:
            logger.info(
                f"[RPCPool] Endpoint {mask_url(endpoint.url)} ({endpoint.chain_id}) "
                f"recovered ({response_time_ms:.0f}ms)"
            )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _probe_block_number(self, endpoint: RPCEndpoint) -> int:
        session = await self._get_session()
        async with session.post(endpoint.url, json=BLOCK_NUMBER_REQUEST) as response:
            response.raise_for_status()
            body = await response.json(content_type=None)
        if not isinstance(body, dict) or "result" not in body:
            raise RPCError(f"Invalid eth_blockNumber response: {body!r}")
        return int(body["result"], 16)

    async def probe_endpoint(self, endpoint: RPCEndpoint) -> bool:
        """
        Probe one endpoint and feed the outcome into its health.

        Returns:
            True if the probe succeeded within the probe timeout
        """
        started = self._clock()
        try:
            await asyncio.wait_for(self._probe(endpoint), timeout=self.probe_timeout)
        except Exception as e:
            self.mark_endpoint_unhealthy(endpoint, f"probe failed: {e!r}")
            logger.debug(f"[RPCPool] Probe of {mask_url(endpoint.url)} failed: {e!r}")
            return False

        self.mark_endpoint_healthy(endpoint, (self._clock() - started) * 1000)
        return True

    async def check_all_endpoints(self) -> dict[str, int]:
        """
        Probe every registered endpoint concurrently.

        Returns:
            Healthy endpoint count per chain
        """
        endpoints = [ep for chain_eps in self._endpoints.values() for ep in chain_eps]
        await asyncio.gather(*(self.probe_endpoint(ep) for ep in endpoints))
        return {
            chain_id: sum(1 for ep in chain_eps if ep.healthy)
            for chain_id, chain_eps in self._endpoints.items()
        }

    async def _health_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                healthy = await self.check_all_endpoints()
                logger.debug(f"[RPCPool] Health round complete: {healthy}")
            except Exception as e:
                logger.error(f"[RPCPool] Health round failed: {e}")

    def _on_health_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[RPCPool] Health check loop crashed: {exc}")

    def start_health_checks(self, interval: float | None = None) -> None:
        """Start the background probe loop (no-op if already running)."""
        if self._health_task is not None and not self._health_task.done():
            return
        interval = interval or self.health_check_interval
        self._health_task = asyncio.create_task(
            self._health_loop(interval), name="rpc-pool-health"
        )
        self._health_task.add_done_callback(self._on_health_task_done)
        logger.info(f"[RPCPool] Health checks started (every {interval}s)")

    @property
    def health_checks_running(self) -> bool:
        return self._health_task is not None and not self._health_task.done()

    async def stop_health_checks(self) -> None:
        """Stop the probe loop and close the probe HTTP session."""
        if self._health_task is not None:
            self._health_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._health_task
            self._health_task = None
            logger.info("[RPCPool] Health checks stopped")

        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def get_status(self) -> dict[str, Any]:
        return {
            chain_id: {
                "total": len(endpoints),
                "healthy": sum(1 for ep in endpoints if ep.healthy),
                "endpoints": [
                    {**ep.to_dict(), "url": mask_url(ep.url)} for ep in endpoints
                ],
            }
            for chain_id, endpoints in self._endpoints.items()
        }

    def check_rpc_health(self) -> dict[str, Any]:
        """
        Summarize pool health.

        Returns:
            Dict with overall status: healthy when every endpoint is healthy,
            unhealthy when some chain has no healthy endpoint, degraded otherwise
        """
        chains: dict[str, dict[str, int]] = {}
        status = HealthStatus.HEALTHY

        for chain_id, endpoints in self._endpoints.items():
            healthy = sum(1 for ep in endpoints if ep.healthy)
            chains[chain_id] = {"healthy": healthy, "total": len(endpoints)}
            if healthy == 0:
                status = HealthStatus.UNHEALTHY
            elif healthy < len(endpoints) and status == HealthStatus.HEALTHY:
                status = HealthStatus.DEGRADED

        return {"status": str(status), "chains": chains}
