"""Repositories."""

from chain_indexer.repositories.base import BaseRepository
from chain_indexer.repositories.indexer_snapshot_repository import (
    IndexerSnapshotRepository,
)

__all__ = ["BaseRepository", "IndexerSnapshotRepository"]
