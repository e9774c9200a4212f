"""
Tests for snapshot stores.

Covers:
- File-backed store keyed by ``<key>.json``
- SQL-backed store over a mocked session maker
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from chain_indexer.models.indexer_snapshot import IndexerSnapshot
from chain_indexer.services.storage.file_storage import FileStorageManager
from chain_indexer.services.storage.snapshot_store import (
    FileSnapshotStore,
    SqlSnapshotStore,
    snapshot_key,
)
from chain_indexer.utils.exceptions import PersistenceError


def make_session_maker(session):
    session_maker = MagicMock()
    context = session_maker.return_value
    context.__aenter__.return_value = session
    context.__aexit__.return_value = False
    return session_maker


def scalar_result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


class TestSnapshotKey:
    def test_key_format(self):
        assert snapshot_key("42") == "indexer-42"


class TestFileSnapshotStore:
    """Test file-backed snapshots."""

    @pytest.mark.asyncio
    async def test_set_then_get(self, tmp_path):
        storage = FileStorageManager(tmp_path)
        await storage.initialize()
        store = FileSnapshotStore(storage)

        await store.set("indexer-u1", {"current_block": 10})

        assert (tmp_path / "indexer-u1.json").exists()
        assert await store.get("indexer-u1") == {"current_block": 10}
        assert await store.get("indexer-u2") is None

    @pytest.mark.asyncio
    async def test_health_delegates_to_storage(self, tmp_path):
        store = FileSnapshotStore(FileStorageManager(tmp_path))

        health = await store.check_health()

        assert health["path"] == str(tmp_path)


class TestSqlSnapshotStore:
    """Test SQL-backed snapshots."""

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, mock_session):
        mock_session.execute.return_value = scalar_result(None)
        store = SqlSnapshotStore(make_session_maker(mock_session))

        assert await store.get("indexer-u1") is None

    @pytest.mark.asyncio
    async def test_get_returns_payload(self, mock_session):
        row = IndexerSnapshot(key="indexer-u1", payload={"current_block": 7})
        mock_session.execute.return_value = scalar_result(row)
        store = SqlSnapshotStore(make_session_maker(mock_session))

        assert await store.get("indexer-u1") == {"current_block": 7}

    @pytest.mark.asyncio
    async def test_set_inserts_new_row(self, mock_session):
        mock_session.execute.return_value = scalar_result(None)
        store = SqlSnapshotStore(make_session_maker(mock_session))

        await store.set("indexer-u1", {"current_block": 1})

        added = mock_session.add.call_args.args[0]
        assert isinstance(added, IndexerSnapshot)
        assert added.key == "indexer-u1"
        assert added.payload == {"current_block": 1}
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_set_updates_existing_row(self, mock_session):
        row = IndexerSnapshot(key="indexer-u1", payload={"current_block": 1})
        mock_session.execute.return_value = scalar_result(row)
        store = SqlSnapshotStore(make_session_maker(mock_session))

        await store.set("indexer-u1", {"current_block": 2})

        assert row.payload == {"current_block": 2}
        mock_session.add.assert_not_called()
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_set_failure_rolls_back(self, mock_session):
        mock_session.execute.return_value = scalar_result(None)
        mock_session.commit.side_effect = OperationalError("COMMIT", {}, Exception("db gone"))
        store = SqlSnapshotStore(make_session_maker(mock_session))

        with pytest.raises(PersistenceError):
            await store.set("indexer-u1", {"current_block": 1})

        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_reports_failure(self, mock_session):
        mock_session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("down"))
        store = SqlSnapshotStore(make_session_maker(mock_session))

        health = await store.check_health()

        assert health["healthy"] is False
