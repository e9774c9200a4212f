"""
Models.

Exports ORM models, enums and indexing dataclasses.
"""

from chain_indexer.models.base import Base
from chain_indexer.models.enums import ChunkStatus, HealthStatus, SessionStatus
from chain_indexer.models.indexer_snapshot import IndexerSnapshot
from chain_indexer.models.indexing import (
    BlockRange,
    Chunk,
    ChunkMetrics,
    CumulativeMetrics,
    LogRecord,
    ProgressEvent,
    RPCEndpoint,
    SessionSnapshot,
)

__all__ = [
    "Base",
    "BlockRange",
    "Chunk",
    "ChunkMetrics",
    "ChunkStatus",
    "CumulativeMetrics",
    "HealthStatus",
    "IndexerSnapshot",
    "LogRecord",
    "ProgressEvent",
    "RPCEndpoint",
    "SessionSnapshot",
    "SessionStatus",
]
