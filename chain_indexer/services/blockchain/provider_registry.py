"""
Web3 provider registry.

One AsyncWeb3 instance per endpoint URL, created on first use.
"""

from collections.abc import Callable
from typing import Any

import aiohttp
from web3 import AsyncWeb3

from chain_indexer.config.constants import RPC_DATA_TIMEOUT

ProviderFactory = Callable[[str, float], Any]


def create_web3_provider(url: str, timeout: float) -> AsyncWeb3:
    """
    Create an AsyncWeb3 client for an HTTP endpoint.

    Args:
        url: Endpoint URL
        timeout: HTTP request timeout in seconds

    Returns:
        AsyncWeb3 instance
    """
    return AsyncWeb3(
        AsyncWeb3.AsyncHTTPProvider(
            url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)},
        )
    )


class ProviderRegistry:
    """Caches one provider per endpoint URL."""

    def __init__(
        self,
        factory: ProviderFactory = create_web3_provider,
        timeout: float = RPC_DATA_TIMEOUT,
    ) -> None:
        self._factory = factory
        self._timeout = timeout
        self._providers: dict[str, Any] = {}

    def get(self, url: str) -> Any:
        provider = self._providers.get(url)
        if provider is None:
            provider = self._factory(url, self._timeout)
            self._providers[url] = provider
        return provider

    def __len__(self) -> int:
        return len(self._providers)

    def clear(self) -> None:
        self._providers.clear()
