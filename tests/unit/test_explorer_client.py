"""Tests for ExplorerClient."""

from unittest.mock import AsyncMock

import pytest

from chain_indexer.services.blockchain.explorer_client import ExplorerClient
from chain_indexer.utils.circuit_breaker import CircuitBreakerRegistry
from chain_indexer.utils.exceptions import CircuitBreakerOpenError, RPCError
from tests.fakes import CONTRACT


class TestGetCreationBlock:
    """Test contract creation lookups."""

    @pytest.mark.asyncio
    async def test_parses_block_number(self):
        fetch_json = AsyncMock(
            return_value={"status": "1", "result": [{"blockNumber": "19000000"}]}
        )
        client = ExplorerClient(api_key="KEY", fetch_json=fetch_json)

        assert await client.get_creation_block("ethereum", CONTRACT) == 19_000_000

        url, params = fetch_json.await_args.args
        assert url == "https://api.etherscan.io/api"
        assert params["action"] == "getcontractcreation"
        assert params["contractaddresses"] == CONTRACT
        assert params["apikey"] == "KEY"

    @pytest.mark.asyncio
    async def test_missing_block_number_returns_none(self):
        fetch_json = AsyncMock(return_value={"status": "1", "result": [{"txHash": "0x1"}]})
        client = ExplorerClient(fetch_json=fetch_json)

        assert await client.get_creation_block("lisk", CONTRACT) is None
        assert "apikey" not in fetch_json.await_args.args[1]

    @pytest.mark.asyncio
    async def test_malformed_response_raises(self):
        client = ExplorerClient(fetch_json=AsyncMock(return_value=["not", "a", "dict"]))

        with pytest.raises(RPCError):
            await client.get_creation_block("ethereum", CONTRACT)

    @pytest.mark.asyncio
    async def test_breaker_opens_after_repeated_failures(self):
        fetch_json = AsyncMock(side_effect=ConnectionError("down"))
        client = ExplorerClient(
            fetch_json=fetch_json,
            breakers=CircuitBreakerRegistry(threshold=2, timeout=60),
        )

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await client.get_creation_block("ethereum", CONTRACT)

        with pytest.raises(CircuitBreakerOpenError):
            await client.get_creation_block("ethereum", CONTRACT)
        assert fetch_json.await_count == 2
