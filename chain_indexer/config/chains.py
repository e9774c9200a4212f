"""
Chain registry.

Static per-chain configuration: default RPC endpoints, block time and explorer API.
"""

from dataclasses import dataclass

from chain_indexer.config.constants import SECONDS_PER_DAY, UNLIMITED_HISTORY
from chain_indexer.config.settings import Settings
from chain_indexer.utils.exceptions import UnsupportedChainError


@dataclass(frozen=True)
class ChainConfig:
    """Static configuration of one supported chain."""

    chain_id: str
    name: str
    rpc_endpoints: tuple[str, ...]
    block_time: int  # seconds
    explorer_api: str | None = None


CHAIN_CONFIGS: dict[str, ChainConfig] = {
    "ethereum": ChainConfig(
        chain_id="ethereum",
        name="Ethereum Mainnet",
        rpc_endpoints=(
            "https://eth.public-rpc.com",
            "https://ethereum.publicnode.com",
        ),
        block_time=12,
        explorer_api="https://api.etherscan.io/api",
    ),
    "lisk": ChainConfig(
        chain_id="lisk",
        name="Lisk",
        rpc_endpoints=(
            "https://lisk.drpc.org",
            "https://lisk.gateway.tenderly.co",
        ),
        block_time=12,
        explorer_api="https://blockscout.lisk.com/api",
    ),
}


def get_chain_config(chain_id: str) -> ChainConfig:
    """
    Get configuration for a chain.

    Args:
        chain_id: Chain identifier

    Returns:
        Chain configuration

    Raises:
        UnsupportedChainError: If the chain is not configured
    """
    config = CHAIN_CONFIGS.get(chain_id.lower())
    if config is None:
        raise UnsupportedChainError(
            f"Unsupported chain '{chain_id}'. "
            f"Supported: {', '.join(sorted(CHAIN_CONFIGS))}"
        )
    return config


def resolve_rpc_endpoints(chain_id: str, app_settings: Settings) -> list[str]:
    """
    Resolve the endpoint list for a chain, honouring environment overrides.

    Args:
        chain_id: Chain identifier
        app_settings: Settings carrying optional overrides

    Returns:
        Ordered list of endpoint URLs
    """
    overrides = app_settings.get_rpc_overrides(chain_id.lower())
    if overrides:
        return overrides
    return list(get_chain_config(chain_id).rpc_endpoints)


def blocks_for_days(chain_id: str, days: int) -> int:
    """
    Convert a number of days into a block count for a chain.

    Args:
        chain_id: Chain identifier
        days: Number of days (UNLIMITED_HISTORY is not accepted here)

    Returns:
        floor(days * 86400 / block_time)
    """
    if days == UNLIMITED_HISTORY or days < 0:
        raise ValueError(f"Cannot convert {days} days into a block count")
    config = get_chain_config(chain_id)
    return (days * SECONDS_PER_DAY) // config.block_time
