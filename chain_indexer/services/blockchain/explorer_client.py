"""
Block explorer client.

Best-effort contract creation lookup through Etherscan-compatible APIs
(``module=contract&action=getcontractcreation``).
"""

from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp
from loguru import logger

from chain_indexer.config.chains import get_chain_config
from chain_indexer.config.constants import EXPLORER_TIMEOUT
from chain_indexer.utils.circuit_breaker import CircuitBreakerRegistry
from chain_indexer.utils.exceptions import RPCError
from chain_indexer.utils.security import mask_address

FetchJson = Callable[[str, dict[str, str]], Awaitable[Any]]


class ExplorerClient:
    """Explorer API lookups guarded by a per-chain circuit breaker."""

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float = EXPLORER_TIMEOUT,
        breakers: CircuitBreakerRegistry | None = None,
        fetch_json: FetchJson | None = None,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.breakers = breakers if breakers is not None else CircuitBreakerRegistry()
        self._fetch_json = fetch_json or self._http_get_json
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def _http_get_json(self, url: str, params: dict[str, str]) -> Any:
        session = await self._get_session()
        async with session.get(url, params=params) as response:
            response.raise_for_status()
            return await response.json(content_type=None)

    async def get_creation_block(self, chain_id: str, address: str) -> int | None:
        """
        Look up the block in which a contract was created.

        Args:
            chain_id: Chain identifier
            address: Contract address

        Returns:
            Creation block, or None if the explorer does not know it

        Raises:
            RPCError: If the explorer response is malformed
            CircuitBreakerOpenError: If the explorer circuit is open
            aiohttp.ClientError: On transport failures
        """
        config = get_chain_config(chain_id)
        if not config.explorer_api:
            return None

        params = {
            "module": "contract",
            "action": "getcontractcreation",
            "contractaddresses": address,
        }
        if self.api_key:
            params["apikey"] = self.api_key

        breaker = self.breakers.get(f"explorer:{chain_id}")
        payload = await breaker.call(self._fetch_json, config.explorer_api, params)

        if not isinstance(payload, dict):
            raise RPCError(f"Unexpected explorer response type: {type(payload).__name__}")

        result = payload.get("result")
        if str(payload.get("status")) != "1" or not isinstance(result, list) or not result:
            logger.debug(
                f"[Explorer] No creation record for {mask_address(address)} on {chain_id}"
            )
            return None

        block = result[0].get("blockNumber")
        if block in (None, ""):
            return None
        return int(block)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
