"""
Tests for FileStorageManager.

Covers:
- Read/write of JSON documents
- Atomic replace with backup and failed-validation rollback
- Serialized concurrent writers
- Health check
"""

import asyncio
import json

import pytest

from chain_indexer.services.storage.file_storage import FileStorageManager
from chain_indexer.utils.exceptions import PersistenceError


@pytest.fixture
def storage(tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return FileStorageManager(data_dir)


class TestReadWrite:
    """Test basic persistence."""

    @pytest.mark.asyncio
    async def test_write_then_read(self, storage):
        await storage.write_json("state.json", {"current_block": 5})

        assert await storage.read_json("state.json") == {"current_block": 5}

    @pytest.mark.asyncio
    async def test_missing_file_reads_none(self, storage):
        assert await storage.read_json("absent.json") is None

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, storage):
        (storage.data_dir / "broken.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(PersistenceError):
            await storage.read_json("broken.json")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("filename", ["", "../escape.json", "a/b.json", ".hidden"])
    async def test_invalid_filename_rejected(self, storage, filename):
        with pytest.raises(PersistenceError):
            await storage.write_json(filename, {})

    @pytest.mark.asyncio
    async def test_delete_and_list(self, storage):
        await storage.write_json("a.json", {})
        await storage.write_json("b.json", {})

        assert await storage.list_files() == ["a.json", "b.json"]
        assert await storage.delete("a.json") is True
        assert await storage.delete("a.json") is False
        assert await storage.list_files() == ["b.json"]


class TestAtomicWrite:
    """Test the backup/tmp/validate/rename protocol."""

    @pytest.mark.asyncio
    async def test_overwrite_keeps_backup_of_previous(self, storage):
        await storage.write_json("state.json", {"version": 1})
        await storage.write_json("state.json", {"version": 2})

        backup = storage.data_dir / "state.json.backup"
        assert json.loads(backup.read_text(encoding="utf-8")) == {"version": 1}
        assert await storage.read_json("state.json") == {"version": 2}
        assert not (storage.data_dir / "state.json.tmp").exists()

    @pytest.mark.asyncio
    async def test_failed_validation_leaves_original_unchanged(self, storage, monkeypatch):
        await storage.write_json("state.json", {"version": 1})

        def reject(text):
            raise ValueError("validation failed")

        monkeypatch.setattr(storage, "_parse", reject)

        with pytest.raises(PersistenceError, match="validation failed"):
            await storage.write_json("state.json", {"version": 2})

        path = storage.data_dir / "state.json"
        assert json.loads(path.read_text(encoding="utf-8")) == {"version": 1}
        assert not (storage.data_dir / "state.json.tmp").exists()

    @pytest.mark.asyncio
    async def test_unserializable_document_rejected(self, storage):
        await storage.write_json("state.json", {"version": 1})

        with pytest.raises(PersistenceError):
            await storage.write_json("state.json", {"bad": object()})

        assert await storage.read_json("state.json") == {"version": 1}

    @pytest.mark.asyncio
    async def test_concurrent_writers_leave_valid_document(self, storage):
        await asyncio.gather(
            *(storage.write_json("state.json", {"writer": i}) for i in range(20))
        )

        document = await storage.read_json("state.json")
        assert document["writer"] in range(20)


class TestHealth:
    """Test storage health check."""

    @pytest.mark.asyncio
    async def test_healthy_directory(self, storage):
        health = await storage.check_health()

        assert health["writable"] is True
        assert 0 <= health["free_percent"] <= 100

    @pytest.mark.asyncio
    async def test_free_space_threshold(self, tmp_path):
        storage = FileStorageManager(tmp_path, min_free_disk_percent=100)

        health = await storage.check_health()

        assert health["healthy"] is False

    @pytest.mark.asyncio
    async def test_missing_directory_unhealthy(self, tmp_path):
        storage = FileStorageManager(tmp_path / "missing")

        health = await storage.check_health()

        assert health["healthy"] is False
        assert "error" in health
