"""Snapshot persistence."""

from chain_indexer.services.storage.file_storage import FileStorageManager
from chain_indexer.services.storage.snapshot_store import (
    FileSnapshotStore,
    SnapshotStore,
    SqlSnapshotStore,
    snapshot_key,
)

__all__ = [
    "FileSnapshotStore",
    "FileStorageManager",
    "SnapshotStore",
    "SqlSnapshotStore",
    "snapshot_key",
]
