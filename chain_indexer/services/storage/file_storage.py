"""
File storage manager.

Atomic JSON persistence: copy the current file to ``.backup``, write ``.tmp``,
re-read and parse ``.tmp``, then rename it over the real path. Any failure
restores the backup and raises. Writers to the same file are serialized by a
per-filename asyncio.Lock; file IO runs in a worker thread.
"""

import asyncio
import json
import os
import shutil
from pathlib import Path
from typing import Any

from loguru import logger

from chain_indexer.config.constants import MIN_FREE_DISK_PERCENT
from chain_indexer.utils.exceptions import PersistenceError


class FileStorageManager:
    """JSON file store rooted at one data directory."""

    def __init__(
        self,
        data_dir: str | Path,
        min_free_disk_percent: float = MIN_FREE_DISK_PERCENT,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.min_free_disk_percent = min_free_disk_percent
        self._locks: dict[str, asyncio.Lock] = {}

    async def initialize(self) -> None:
        """Create the data directory."""
        await asyncio.to_thread(self.data_dir.mkdir, parents=True, exist_ok=True)
        logger.info(f"[Storage] Data directory ready: {self.data_dir}")

    def _lock_for(self, filename: str) -> asyncio.Lock:
        lock = self._locks.get(filename)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[filename] = lock
        return lock

    def _path(self, filename: str) -> Path:
        if not filename or "/" in filename or "\\" in filename or filename.startswith("."):
            raise PersistenceError(f"Invalid storage filename: {filename!r}")
        return self.data_dir / filename

    async def read_json(self, filename: str) -> Any | None:
        """
        Read and parse a JSON file.

        Args:
            filename: File name inside the data directory

        Returns:
            Parsed document, or None if the file does not exist

        Raises:
            PersistenceError: If the file exists but cannot be read or parsed
        """
        path = self._path(filename)
        async with self._lock_for(filename):
            try:
                return await asyncio.to_thread(self._read, path)
            except FileNotFoundError:
                return None
            except (OSError, ValueError) as e:
                raise PersistenceError(f"Failed to read {filename}: {e}") from e

    def _read(self, path: Path) -> Any:
        return self._parse(path.read_text(encoding="utf-8"))

    def _parse(self, text: str) -> Any:
        return json.loads(text)

    async def write_json(self, filename: str, data: Any) -> None:
        """
        Atomically replace a JSON file.

        Args:
            filename: File name inside the data directory
            data: JSON-serializable document

        Raises:
            PersistenceError: If any step fails (the previous file is restored)
        """
        path = self._path(filename)
        async with self._lock_for(filename):
            await asyncio.to_thread(self._write_atomic, path, data)
        logger.debug(f"[Storage] Wrote {filename}")

    def _write_atomic(self, path: Path, data: Any) -> None:
        backup_path = path.with_name(path.name + ".backup")
        tmp_path = path.with_name(path.name + ".tmp")
        had_original = path.exists()

        try:
            if had_original:
                shutil.copy2(path, backup_path)

            tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")

            # Validate what actually reached the disk
            self._parse(tmp_path.read_text(encoding="utf-8"))

            os.replace(tmp_path, path)
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"[Storage] Atomic write of {path.name} failed: {e}")
            self._restore(path, backup_path, had_original)
            tmp_path.unlink(missing_ok=True)
            raise PersistenceError(f"Failed to write {path.name}: {e}") from e

    def _restore(self, path: Path, backup_path: Path, had_original: bool) -> None:
        if not had_original or not backup_path.exists():
            return
        try:
            shutil.copy2(backup_path, path)
            logger.warning(f"[Storage] Restored {path.name} from backup")
        except OSError as e:
            logger.critical(f"[Storage] Could not restore {path.name} from backup: {e}")

    async def delete(self, filename: str) -> bool:
        """Delete a file. Returns True if it existed."""
        path = self._path(filename)
        async with self._lock_for(filename):
            try:
                await asyncio.to_thread(path.unlink)
            except FileNotFoundError:
                return False
        return True

    async def list_files(self, pattern: str = "*.json") -> list[str]:
        paths = await asyncio.to_thread(lambda: sorted(self.data_dir.glob(pattern)))
        return [p.name for p in paths]

    async def check_health(self) -> dict[str, Any]:
        """
        Check that the data directory is writable and has free space.

        Returns:
            Dict with healthy flag, writability and free disk percentage
        """
        try:
            usage = await asyncio.to_thread(shutil.disk_usage, self.data_dir)
            writable = await asyncio.to_thread(os.access, self.data_dir, os.W_OK)
        except OSError as e:
            return {"healthy": False, "error": str(e)}

        free_percent = usage.free / usage.total * 100 if usage.total else 0.0
        return {
            "healthy": writable and free_percent > self.min_free_disk_percent,
            "writable": writable,
            "free_percent": round(free_percent, 2),
            "path": str(self.data_dir),
        }
