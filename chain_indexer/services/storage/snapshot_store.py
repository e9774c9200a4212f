"""
Snapshot stores.

Get/set-by-key persistence of session snapshots, backed either by the
atomic JSON file store or by a SQL table.
"""

from typing import Any, Protocol

from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chain_indexer.repositories.indexer_snapshot_repository import (
    IndexerSnapshotRepository,
)
from chain_indexer.services.storage.file_storage import FileStorageManager
from chain_indexer.utils.exceptions import PersistenceError


def snapshot_key(user_id: str) -> str:
    """Storage key of a user's session snapshot."""
    return f"indexer-{user_id}"


class SnapshotStore(Protocol):
    """Atomic per-key snapshot persistence."""

    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def set(self, key: str, snapshot: dict[str, Any]) -> None: ...

    async def check_health(self) -> dict[str, Any]: ...


class FileSnapshotStore:
    """Snapshots as ``<key>.json`` files written atomically."""

    def __init__(self, storage: FileStorageManager) -> None:
        self.storage = storage

    async def get(self, key: str) -> dict[str, Any] | None:
        return await self.storage.read_json(f"{key}.json")

    async def set(self, key: str, snapshot: dict[str, Any]) -> None:
        await self.storage.write_json(f"{key}.json", snapshot)

    async def check_health(self) -> dict[str, Any]:
        return await self.storage.check_health()


class SqlSnapshotStore:
    """Snapshots as JSON rows in the indexer_snapshots table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            async with self._session_maker() as session:
                repo = IndexerSnapshotRepository(session)
                return await repo.get_payload(key)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load snapshot {key}: {e}") from e

    async def set(self, key: str, snapshot: dict[str, Any]) -> None:
        async with self._session_maker() as session:
            try:
                repo = IndexerSnapshotRepository(session)
                await repo.upsert(key, snapshot)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"[SnapshotStore] Failed to save {key}: {e}")
                raise PersistenceError(f"Failed to save snapshot {key}: {e}") from e

    async def check_health(self) -> dict[str, Any]:
        try:
            async with self._session_maker() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            return {"healthy": False, "error": str(e)}
        return {"healthy": True, "backend": "sql"}
