"""
Indexer manager.

Owns the active sessions (at most one per user), restores them from
persisted snapshots, and drains them on shutdown.
"""

import asyncio
from typing import Any

from loguru import logger

from chain_indexer.config.constants import DEFAULT_POLLING_INTERVAL, SHUTDOWN_TIMEOUT
from chain_indexer.config.tiers import SubscriptionTier
from chain_indexer.models.enums import SessionStatus
from chain_indexer.models.indexing import SessionSnapshot
from chain_indexer.services.indexer.notifications import ProgressNotifier
from chain_indexer.services.indexer.streaming_indexer import (
    IndexerComponents,
    StreamingIndexer,
)
from chain_indexer.services.storage.snapshot_store import SnapshotStore, snapshot_key
from chain_indexer.utils.exceptions import (
    PersistenceError,
    SessionAlreadyActiveError,
    SessionNotFoundError,
    ShutdownInProgressError,
)
from chain_indexer.utils.security import mask_address
from chain_indexer.utils.validation import same_address


class IndexerManager:
    """Registry and lifecycle owner of indexing sessions."""

    def __init__(
        self,
        components: IndexerComponents,
        snapshot_store: SnapshotStore,
        notifier: ProgressNotifier | None = None,
        polling_interval: float = DEFAULT_POLLING_INTERVAL,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT,
    ) -> None:
        self.components = components
        self.snapshot_store = snapshot_store
        self.notifier = notifier
        self.polling_interval = polling_interval
        self.shutdown_timeout = shutdown_timeout

        self._sessions: dict[str, StreamingIndexer] = {}
        self._starting: set[str] = set()
        self._accepting = True

    @property
    def is_shutting_down(self) -> bool:
        return not self._accepting

    def get_indexer(self, user_id: str) -> StreamingIndexer | None:
        return self._sessions.get(user_id)

    def _has_active_session(self, user_id: str) -> bool:
        if user_id in self._starting:
            return True
        indexer = self._sessions.get(user_id)
        return indexer is not None and indexer.status.is_active

    async def start_indexing(
        self,
        user_id: str,
        contract_address: str,
        chain_id: str,
        tier: str | SubscriptionTier,
    ) -> StreamingIndexer:
        """
        Start (or resume) indexing a contract for a user.

        A stored snapshot for the same contract and chain is restored;
        otherwise a fresh session is initialized.

        Args:
            user_id: Session owner
            contract_address: Contract to index
            chain_id: Chain identifier
            tier: Subscription tier name or object

        Returns:
            The running session

        Raises:
            ShutdownInProgressError: If the manager is shutting down
            SessionAlreadyActiveError: If the user already has an active session
            ContractNotFoundError: If the contract does not exist
        """
        if not self._accepting:
            raise ShutdownInProgressError("Indexer manager is shutting down")
        if self._has_active_session(user_id):
            raise SessionAlreadyActiveError(f"User {user_id} already has an active session")

        self._starting.add(user_id)
        try:
            indexer = StreamingIndexer(
                user_id=user_id,
                contract_address=contract_address,
                chain_id=chain_id,
                components=self.components,
                polling_interval=self.polling_interval,
                progress_listener=self.notifier.publish if self.notifier else None,
                checkpoint_hook=self.save_indexer_state,
            )

            snapshot = await self.load_indexer_state(user_id)
            if (
                snapshot is not None
                and same_address(snapshot.contract_address, contract_address)
                and snapshot.chain_id == chain_id
            ):
                indexer.restore(snapshot, tier=tier)
            else:
                await indexer.initialize(tier)

            if not self._accepting:
                raise ShutdownInProgressError("Indexer manager is shutting down")

            self._sessions[user_id] = indexer
            await indexer.start()
        finally:
            self._starting.discard(user_id)

        logger.info(
            f"[IndexerManager] Session started for {user_id}: "
            f"{mask_address(contract_address)} on {chain_id}"
        )
        return indexer

    async def stop_indexing(self, user_id: str) -> bool:
        """
        Stop a session, persist it and drop it from the registry.

        Returns:
            False if the user had no session
        """
        indexer = self._sessions.get(user_id)
        if indexer is None:
            return False

        await indexer.stop(timeout=self.shutdown_timeout)
        await self._save_logged(indexer)
        del self._sessions[user_id]
        logger.info(f"[IndexerManager] Session stopped for {user_id}")
        return True

    async def pause_indexing(self, user_id: str) -> bool:
        indexer = self._sessions.get(user_id)
        if indexer is None or indexer.status != SessionStatus.RUNNING:
            return False
        indexer.pause()
        await self._save_logged(indexer)
        return True

    async def resume_indexing(self, user_id: str) -> bool:
        if not self._accepting:
            raise ShutdownInProgressError("Indexer manager is shutting down")
        indexer = self._sessions.get(user_id)
        if indexer is None or indexer.status != SessionStatus.PAUSED:
            return False
        await indexer.resume()
        return True

    async def retry_failed_chunks(self, user_id: str) -> int:
        """
        Retry a session's failed ranges.

        Raises:
            SessionNotFoundError: If the user has no session
        """
        indexer = self._sessions.get(user_id)
        if indexer is None:
            raise SessionNotFoundError(f"No session for user {user_id}")
        return await indexer.retry_failed_ranges()

    def get_indexing_status(self, user_id: str) -> dict[str, Any] | None:
        indexer = self._sessions.get(user_id)
        return indexer.get_status() if indexer else None

    def get_active_indexers(self) -> list[dict[str, Any]]:
        return [
            indexer.get_status()
            for indexer in self._sessions.values()
            if indexer.status.is_active
        ]

    def get_session_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for indexer in self._sessions.values():
            counts[str(indexer.status)] = counts.get(str(indexer.status), 0) + 1
        return counts

    async def save_indexer_state(self, indexer: StreamingIndexer) -> None:
        """
        Persist a session snapshot.

        Raises:
            PersistenceError: If the store rejected the write
        """
        snapshot = indexer.to_snapshot()
        await self.snapshot_store.set(snapshot_key(indexer.user_id), snapshot.to_dict())

    async def _save_logged(self, indexer: StreamingIndexer) -> bool:
        try:
            await self.save_indexer_state(indexer)
        except PersistenceError as e:
            logger.error(f"[IndexerManager] Failed to persist {indexer.user_id}: {e}")
            return False
        return True

    async def load_indexer_state(self, user_id: str) -> SessionSnapshot | None:
        """
        Load a user's snapshot.

        Unreadable or malformed snapshots are logged and treated as absent.
        """
        try:
            data = await self.snapshot_store.get(snapshot_key(user_id))
        except PersistenceError as e:
            logger.warning(f"[IndexerManager] Could not load snapshot for {user_id}: {e}")
            return None
        if not data:
            return None

        try:
            return SessionSnapshot.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"[IndexerManager] Ignoring malformed snapshot for {user_id}: {e}")
            return None

    async def _shutdown_indexer(
        self, user_id: str, indexer: StreamingIndexer, timeout: float
    ) -> None:
        try:
            if indexer.status == SessionStatus.RUNNING:
                indexer.pause()
            await indexer.drain(timeout)
        except Exception as e:
            logger.warning(f"[IndexerManager] Error pausing {user_id}: {e}")

        try:
            await self.save_indexer_state(indexer)
        except Exception as e:
            logger.error(f"[IndexerManager] Error persisting {user_id} on shutdown: {e}")

        try:
            await indexer.stop(timeout=timeout)
        except Exception as e:
            logger.warning(f"[IndexerManager] Error stopping {user_id}: {e}")

    async def shutdown(self, timeout: float | None = None) -> None:
        """
        Stop accepting work and drain every session.

        Each session is paused, persisted and stopped independently; one
        session's failure does not affect the others. Pool health checks
        and the notifier are stopped last.

        Args:
            timeout: Seconds to wait for each session's in-flight work
        """
        if not self._accepting:
            return
        self._accepting = False
        timeout = timeout if timeout is not None else self.shutdown_timeout

        sessions = list(self._sessions.items())
        logger.info(f"[IndexerManager] Shutting down {len(sessions)} sessions...")

        results = await asyncio.gather(
            *(self._shutdown_indexer(uid, ix, timeout) for uid, ix in sessions),
            return_exceptions=True,
        )
        for (user_id, _), result in zip(sessions, results):
            if isinstance(result, BaseException):
                logger.error(f"[IndexerManager] Shutdown of {user_id} failed: {result}")

        try:
            await self.components.pool.stop_health_checks()
        except Exception as e:
            logger.warning(f"[IndexerManager] Error stopping health checks: {e}")

        if self.notifier is not None:
            await self.notifier.close()

        logger.success("[IndexerManager] Shutdown complete")
