"""
Indexer snapshot repository.

Data access layer for IndexerSnapshot model.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from chain_indexer.models.indexer_snapshot import IndexerSnapshot
from chain_indexer.repositories.base import BaseRepository


class IndexerSnapshotRepository(BaseRepository[IndexerSnapshot]):
    """Repository for IndexerSnapshot entity."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(IndexerSnapshot, session)

    async def get_payload(self, key: str) -> dict[str, Any] | None:
        """
        Get snapshot document by key.

        Args:
            key: Snapshot key

        Returns:
            Stored payload or None
        """
        snapshot = await self.get_by(key=key)
        return dict(snapshot.payload) if snapshot else None

    async def upsert(self, key: str, payload: dict[str, Any]) -> IndexerSnapshot:
        """
        Insert or replace the snapshot stored under key.

        Args:
            key: Snapshot key
            payload: Snapshot document

        Returns:
            Stored entity
        """
        snapshot = await self.get_by(key=key)
        if snapshot is None:
            return await self.create(key=key, payload=payload)

        snapshot.payload = payload
        await self.session.flush()
        return snapshot
