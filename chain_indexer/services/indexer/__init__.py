"""
Streaming indexer services.

Endpoint pool, fetcher, deployment discovery, chunk pipeline, sessions
and their manager.
"""

from chain_indexer.services.indexer.chunk_manager import ChunkManager, ChunkRunResult
from chain_indexer.services.indexer.contract_fetcher import ContractFetcher
from chain_indexer.services.indexer.deployment_block_finder import DeploymentBlockFinder
from chain_indexer.services.indexer.horizontal_validator import HorizontalValidator
from chain_indexer.services.indexer.indexer_manager import IndexerManager
from chain_indexer.services.indexer.notifications import (
    BufferedSink,
    LoggingSink,
    ProgressNotifier,
)
from chain_indexer.services.indexer.rpc_endpoint_pool import RPCEndpointPool
from chain_indexer.services.indexer.streaming_indexer import (
    IndexerComponents,
    StreamingIndexer,
)

__all__ = [
    "BufferedSink",
    "ChunkManager",
    "ChunkRunResult",
    "ContractFetcher",
    "DeploymentBlockFinder",
    "HorizontalValidator",
    "IndexerComponents",
    "IndexerManager",
    "LoggingSink",
    "ProgressNotifier",
    "RPCEndpointPool",
    "StreamingIndexer",
]
