"""Pytest configuration and shared fixtures for all tests."""

import os
import socket
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Keep settings independent of the developer's environment
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest  # noqa: E402

from chain_indexer.services.blockchain.provider_registry import ProviderRegistry  # noqa: E402
from chain_indexer.services.indexer.chunk_manager import ChunkManager  # noqa: E402
from chain_indexer.services.indexer.contract_fetcher import ContractFetcher  # noqa: E402
from chain_indexer.services.indexer.deployment_block_finder import (  # noqa: E402
    DeploymentBlockFinder,
)
from chain_indexer.services.indexer.horizontal_validator import HorizontalValidator  # noqa: E402
from chain_indexer.services.indexer.rpc_endpoint_pool import RPCEndpointPool  # noqa: E402
from chain_indexer.services.indexer.streaming_indexer import IndexerComponents  # noqa: E402
from chain_indexer.services.monitoring.metrics_collector import MetricsCollector  # noqa: E402
from chain_indexer.utils.circuit_breaker import CircuitBreakerRegistry  # noqa: E402
from chain_indexer.utils.retry import RetryPolicy  # noqa: E402
from tests.fakes import URL_A, URL_B, FakeChain, MemorySnapshotStore  # noqa: E402

LOOPBACK_HOSTS = {None, "localhost", "127.0.0.1", "0.0.0.0", "::1"}


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    """Fail fast on lookups of non-loopback hosts; tests run offline."""
    real_getaddrinfo = socket.getaddrinfo

    def guarded_getaddrinfo(host, *args, **kwargs):
        if host not in LOOPBACK_HOSTS:
            raise OSError(f"Network access to {host!r} is disabled in tests")
        return real_getaddrinfo(host, *args, **kwargs)

    monkeypatch.setattr(socket, "getaddrinfo", guarded_getaddrinfo)


@pytest.fixture
def fake_chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def make_components():
    """
    Factory building IndexerComponents over a FakeChain.

    Retries never sleep and circuit breakers stay out of the way
    unless a test asks otherwise.
    """
    def _make(
        chain: FakeChain,
        chunk_size: int = 100,
        max_retries: int = 1,
        failure_threshold: int = 5,
        urls: tuple[str, ...] = (URL_A, URL_B),
        breaker_threshold: int = 1_000,
    ) -> IndexerComponents:
        metrics = MetricsCollector()
        pool = RPCEndpointPool(
            resolver=lambda chain_id: list(urls),
            failure_threshold=failure_threshold,
            probe=AsyncMock(),
        )
        fetcher = ContractFetcher(
            pool,
            retry_policy=RetryPolicy(
                max_retries=max_retries, base_delay=0, jitter=0, sleep=AsyncMock()
            ),
            breakers=CircuitBreakerRegistry(threshold=breaker_threshold),
            providers=ProviderRegistry(factory=chain.factory),
            metrics=metrics,
        )
        return IndexerComponents(
            pool=pool,
            fetcher=fetcher,
            deployment_finder=DeploymentBlockFinder(fetcher),
            chunk_manager=ChunkManager(
                fetcher,
                validator=HorizontalValidator(),
                chunk_size=chunk_size,
                metrics=metrics,
            ),
            metrics=metrics,
        )

    return _make


@pytest.fixture
def components(fake_chain, make_components) -> IndexerComponents:
    components = make_components(fake_chain)
    components.pool.initialize_chain("ethereum")
    return components


@pytest.fixture
def memory_store() -> MemorySnapshotStore:
    return MemorySnapshotStore()


@pytest.fixture
def mock_session():
    """Mock AsyncSession for tests without a database."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session
