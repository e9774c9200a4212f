"""
Streaming indexer.

One user's indexing session: historical backfill through the chunk
manager, then continuous polling for new blocks.

States: pending -> initialized -> running -> paused | stopped;
paused -> running | stopped. A stopped instance is not restarted; a new
instance resumes from the persisted snapshot instead.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from chain_indexer.config.chains import blocks_for_days
from chain_indexer.config.constants import DEFAULT_POLLING_INTERVAL
from chain_indexer.config.tiers import SubscriptionTier, resolve_tier
from chain_indexer.models.enums import ChunkStatus, SessionStatus
from chain_indexer.models.indexing import (
    BlockRange,
    Chunk,
    CumulativeMetrics,
    ProgressEvent,
    SessionSnapshot,
)
from chain_indexer.services.indexer.chunk_manager import ChunkManager
from chain_indexer.services.indexer.contract_fetcher import ContractFetcher
from chain_indexer.services.indexer.deployment_block_finder import DeploymentBlockFinder
from chain_indexer.services.indexer.rpc_endpoint_pool import RPCEndpointPool
from chain_indexer.services.monitoring.metrics_collector import MetricsCollector
from chain_indexer.utils.datetime_utils import to_iso, utc_now
from chain_indexer.utils.exceptions import IndexerError, InvalidStateTransitionError
from chain_indexer.utils.security import mask_address
from chain_indexer.utils.validation import normalize_address

ProgressListener = Callable[[ProgressEvent], Any]
CheckpointHook = Callable[["StreamingIndexer"], Awaitable[None]]


@dataclass
class IndexerComponents:
    """Shared collaborators injected into every session."""

    pool: RPCEndpointPool
    fetcher: ContractFetcher
    deployment_finder: DeploymentBlockFinder
    chunk_manager: ChunkManager
    metrics: MetricsCollector | None = None


class StreamingIndexer:
    """Indexing session for one (user, contract, chain)."""

    def __init__(
        self,
        user_id: str,
        contract_address: str,
        chain_id: str,
        components: IndexerComponents,
        polling_interval: float = DEFAULT_POLLING_INTERVAL,
        progress_listener: ProgressListener | None = None,
        checkpoint_hook: CheckpointHook | None = None,
    ) -> None:
        """
        Initialize session.

        Args:
            user_id: Session owner
            contract_address: Contract to index
            chain_id: Chain identifier
            components: Pool, fetcher, finder and chunk manager
            polling_interval: Seconds between incremental ticks
            progress_listener: Non-blocking callable receiving progress events
            checkpoint_hook: Awaited after every chunk to persist the session
        """
        self.user_id = user_id
        self.contract_address = normalize_address(contract_address)
        self.chain_id = chain_id
        self.components = components
        self.polling_interval = polling_interval
        self.progress_listener = progress_listener
        self.checkpoint_hook = checkpoint_hook

        self.status = SessionStatus.PENDING
        self.tier: SubscriptionTier | None = None
        self.deployment_block: int | None = None
        self.start_block: int | None = None
        self.current_block: int | None = None
        self.target_block: int | None = None
        self.next_block: int | None = None
        self.backfill_complete = False
        self.cumulative_metrics = CumulativeMetrics()
        self.failed_ranges: list[BlockRange] = []
        self.created_at = utc_now()
        self.paused_at = None
        self.completed_at = None
        self.last_error: str | None = None

        self._halt = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._retry_requested = False

    @property
    def tag(self) -> str:
        return f"[Indexer:{self.user_id}]"

    def _require(self, *allowed: SessionStatus, action: str) -> None:
        if self.status not in allowed:
            raise InvalidStateTransitionError(
                f"Cannot {action} session {self.user_id} in status {self.status}"
            )

    async def initialize(self, tier: str | SubscriptionTier) -> None:
        """
        Resolve the block range of a fresh session.

        start_block = max(deployment_block, head - blocks_for_days(tier)),
        or deployment_block for unlimited history.

        Raises:
            ContractNotFoundError: If the contract has no code at head
            RPCError: If the chain cannot be queried
        """
        self._require(SessionStatus.PENDING, action="initialize")
        self.tier = resolve_tier(tier)
        self.components.pool.initialize_chain(self.chain_id)

        try:
            deployment = await self.components.deployment_finder.find_deployment_block(
                self.chain_id, self.contract_address
            )
            head = await self.components.fetcher.get_block_number(self.chain_id)
        except Exception as e:
            self.status = SessionStatus.FAILED
            self.last_error = str(e)
            logger.error(f"{self.tag} Initialization failed: {e}")
            raise

        head = max(head, deployment)
        if self.tier.unlimited_history:
            start = deployment
        else:
            window = blocks_for_days(self.chain_id, self.tier.historical_days)
            start = max(deployment, head - window)

        self.deployment_block = deployment
        self.start_block = start
        self.current_block = start
        self.next_block = start
        self.target_block = head
        self.status = SessionStatus.INITIALIZED

        logger.info(
            f"{self.tag} Initialized {mask_address(self.contract_address)} on "
            f"{self.chain_id} (tier={self.tier.name}): deployment={deployment}, "
            f"blocks {start}-{head}"
        )

    def restore(
        self, snapshot: SessionSnapshot, tier: str | SubscriptionTier | None = None
    ) -> None:
        """
        Rebuild session state from a snapshot.

        Indexing continues at the first block the snapshot did not cover.

        Args:
            snapshot: Persisted session state
            tier: Tier override (defaults to the snapshot's tier)
        """
        self._require(SessionStatus.PENDING, action="restore")
        self.tier = resolve_tier(tier or snapshot.tier)
        self.components.pool.initialize_chain(self.chain_id)

        self.deployment_block = snapshot.deployment_block
        self.start_block = snapshot.start_block
        self.current_block = snapshot.current_block
        self.target_block = max(snapshot.target_block, snapshot.current_block)
        self.next_block = snapshot.resume_block()
        self.backfill_complete = snapshot.backfill_complete
        self.cumulative_metrics = snapshot.cumulative_metrics
        self.failed_ranges = list(snapshot.failed_ranges)
        if snapshot.created_at:
            self.created_at = snapshot.created_at
        self.status = SessionStatus.INITIALIZED

        logger.info(
            f"{self.tag} Restored from snapshot: current_block={self.current_block}, "
            f"resuming at {self.next_block} "
            f"({'polling' if self.backfill_complete else 'backfill'})"
        )

    async def start(self) -> None:
        """
        Start the background work: remaining backfill, then polling.

        Returns immediately; use wait_idle() to wait for the work task.
        """
        self._require(SessionStatus.INITIALIZED, action="start")
        self.status = SessionStatus.RUNNING
        self._launch()
        logger.info(f"{self.tag} Started")

    def _launch(self) -> None:
        self._halt = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"indexer-{self.user_id}")
        self._task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.status = SessionStatus.FAILED
            self.last_error = str(exc)
            logger.opt(exception=exc).error(f"{self.tag} Session crashed: {exc}")
            if self.components.metrics:
                self.components.metrics.record_error(self.user_id)

    @property
    def halted(self) -> bool:
        return self._halt.is_set()

    def _should_continue(self) -> bool:
        return not self._halt.is_set()

    async def _run(self) -> None:
        if not self.backfill_complete:
            await self._run_backfill()
            if self.halted:
                return
            self.backfill_complete = True
            logger.success(
                f"{self.tag} Historical backfill complete: "
                f"{self.cumulative_metrics.total_logs} logs, "
                f"{len(self.failed_ranges)} failed ranges"
            )
            await self._checkpoint()

        assert self.tier is not None
        if not self.tier.continuous_sync:
            self.status = SessionStatus.STOPPED
            self.completed_at = utc_now()
            logger.info(f"{self.tag} Tier {self.tier.name} has no continuous sync, stopping")
            await self._checkpoint()
            return

        await self._poll_loop()

    async def _run_backfill(self) -> None:
        assert self.next_block is not None and self.target_block is not None
        if self.next_block > self.target_block:
            return
        await self.components.chunk_manager.process_chunks(
            self.chain_id,
            self.contract_address,
            self.next_block,
            self.target_block,
            initial_metrics=self.cumulative_metrics,
            user_id=self.user_id,
            on_chunk=self._on_chunk_processed,
            should_continue=self._should_continue,
        )

    async def _on_chunk_processed(
        self, chunk: Chunk, total: int, metrics: CumulativeMetrics
    ) -> None:
        if chunk.status == ChunkStatus.COMPLETED:
            self.cumulative_metrics = metrics
        else:
            self.failed_ranges.append(chunk.as_range())

        self._advance(chunk.end_block)
        self._emit_progress(chunk.index + 1, total)
        await self._checkpoint()

    def _advance(self, end_block: int) -> None:
        assert self.current_block is not None and self.target_block is not None
        self.current_block = max(self.current_block, end_block)
        self.target_block = max(self.target_block, self.current_block)
        self.next_block = self.current_block + 1

    async def _poll_loop(self) -> None:
        logger.info(f"{self.tag} Polling every {self.polling_interval}s")
        while not self.halted:
            if self._retry_requested:
                self._retry_requested = False
                await self._retry_failed()
            if self.halted:
                break
            await self._tick()
            try:
                await asyncio.wait_for(self._halt.wait(), timeout=self.polling_interval)
            except TimeoutError:
                continue

    async def handle_new_block(self) -> bool:
        """
        Run one polling tick.

        Reads the chain head and indexes the blocks added since the last
        tick as one chunk (partitioned only if larger than the chunk size).
        A failed tick leaves the position unchanged so the next tick
        retries the same range.

        Returns:
            True if new blocks were indexed

        Raises:
            InvalidStateTransitionError: If the session is neither initialized
                nor running
        """
        self._require(SessionStatus.INITIALIZED, SessionStatus.RUNNING, action="poll")
        return await self._tick()

    async def _tick(self) -> bool:
        assert self.next_block is not None and self.target_block is not None
        try:
            head = await self.components.fetcher.get_block_number(self.chain_id)
        except IndexerError as e:
            logger.warning(f"{self.tag} Poll tick failed to read head: {e}")
            if self.components.metrics:
                self.components.metrics.record_error(self.user_id)
            return False

        if head < self.next_block:
            return False

        self.target_block = max(self.target_block, head)
        chunk_manager = self.components.chunk_manager
        start = self.next_block

        if head - start + 1 > chunk_manager.chunk_size:
            result = await chunk_manager.process_chunks(
                self.chain_id,
                self.contract_address,
                start,
                head,
                initial_metrics=self.cumulative_metrics,
                user_id=self.user_id,
                on_chunk=self._on_chunk_processed,
                should_continue=self._should_continue,
            )
            return bool(result.completed)

        chunk = Chunk(index=0, start_block=start, end_block=head)
        await chunk_manager.process_chunk(
            self.chain_id, self.contract_address, chunk, self.user_id
        )
        if chunk.status != ChunkStatus.COMPLETED:
            logger.warning(
                f"{self.tag} Blocks {start}-{head} failed, retrying next tick"
            )
            return False

        assert chunk.metrics is not None
        self.cumulative_metrics = self.cumulative_metrics.fold(chunk.metrics)
        self._advance(head)
        self._emit_progress(1, 1)
        await self._checkpoint()
        logger.debug(f"{self.tag} Indexed new blocks {start}-{head}: {len(chunk.logs)} logs")
        return True

    def _emit_progress(self, chunk_number: int, total: int) -> None:
        if self.progress_listener is None:
            return
        assert self.current_block is not None and self.target_block is not None
        event = ProgressEvent(
            user_id=self.user_id,
            chunk=chunk_number,
            total=total,
            percent=round(chunk_number / total * 100, 2) if total else 100.0,
            current_block=self.current_block,
            target_block=self.target_block,
            metrics=self.cumulative_metrics.to_dict(),
        )
        try:
            self.progress_listener(event)
        except Exception as e:
            logger.warning(f"{self.tag} Progress listener failed: {e}")

    async def _checkpoint(self) -> None:
        if self.checkpoint_hook is None:
            return
        try:
            await self.checkpoint_hook(self)
        except Exception as e:
            logger.error(f"{self.tag} Checkpoint failed, continuing: {e}")

    def pause(self) -> None:
        """Stop scheduling new chunks and ticks; in-flight work completes."""
        self._require(SessionStatus.RUNNING, action="pause")
        self._halt.set()
        self.status = SessionStatus.PAUSED
        self.paused_at = utc_now()
        logger.info(f"{self.tag} Paused at block {self.current_block}")

    async def resume(self) -> None:
        """Continue a paused session where it left off."""
        self._require(SessionStatus.PAUSED, action="resume")
        await self.wait_idle()
        self.status = SessionStatus.RUNNING
        self.paused_at = None
        self._launch()
        logger.info(f"{self.tag} Resumed at block {self.next_block}")

    async def stop(self, timeout: float | None = None) -> None:
        """
        Stop the session for good.

        Args:
            timeout: Seconds to wait for in-flight work before cancelling
                it (None waits forever)
        """
        if self.status in (SessionStatus.STOPPED, SessionStatus.FAILED):
            await self.drain(timeout)
            return
        self._halt.set()
        self.status = SessionStatus.STOPPED
        await self.drain(timeout)
        logger.info(f"{self.tag} Stopped at block {self.current_block}")

    async def drain(self, timeout: float | None = None) -> bool:
        """
        Wait for in-flight work, cancelling it once the timeout elapses.

        Returns:
            True if the work finished on its own
        """
        if await self.wait_idle(timeout):
            return True
        task = self._task
        assert task is not None
        task.cancel()
        await asyncio.wait({task})
        logger.warning(f"{self.tag} Cancelled work still running after {timeout}s")
        return False

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """
        Wait for the background work task to finish.

        Returns:
            True if no work is running anymore
        """
        task = self._task
        if task is None or task.done():
            return True
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            logger.warning(f"{self.tag} Work still in flight after {timeout}s")
        return bool(done)

    async def retry_failed_ranges(self) -> int:
        """
        Re-fetch failed ranges.

        While the polling loop runs the retry is queued for its next tick
        so chunks stay sequential.

        Returns:
            Number of ranges recovered now (0 when queued)
        """
        if not self.failed_ranges:
            return 0
        if self._task is not None and not self._task.done():
            self._retry_requested = True
            logger.info(f"{self.tag} Retry of {len(self.failed_ranges)} ranges queued")
            return 0
        return await self._retry_failed()

    async def _retry_failed(self) -> int:
        ranges = list(self.failed_ranges)
        if not ranges:
            return 0

        chunks = await self.components.chunk_manager.retry_failed_chunks(
            self.chain_id, self.contract_address, ranges, self.user_id
        )
        recovered = 0
        for chunk in chunks:
            if chunk.status != ChunkStatus.COMPLETED:
                continue
            assert chunk.metrics is not None
            self.cumulative_metrics = self.cumulative_metrics.fold(chunk.metrics)
            self.failed_ranges.remove(chunk.as_range())
            recovered += 1

        if recovered:
            await self._checkpoint()
        return recovered

    def to_snapshot(self) -> SessionSnapshot:
        """
        Build the persistable form of this session.

        Raises:
            InvalidStateTransitionError: If the session was never initialized
        """
        if self.tier is None or self.start_block is None:
            raise InvalidStateTransitionError(
                f"Session {self.user_id} has no state to persist"
            )
        assert self.deployment_block is not None
        assert self.current_block is not None and self.target_block is not None
        return SessionSnapshot(
            user_id=self.user_id,
            contract_address=self.contract_address,
            chain_id=self.chain_id,
            status=self.status,
            tier=self.tier.name,
            deployment_block=self.deployment_block,
            start_block=self.start_block,
            current_block=self.current_block,
            target_block=self.target_block,
            next_block=self.next_block,
            backfill_complete=self.backfill_complete,
            cumulative_metrics=self.cumulative_metrics,
            failed_ranges=list(self.failed_ranges),
            created_at=self.created_at,
            saved_at=utc_now(),
        )

    def get_status(self) -> dict[str, Any]:
        progress = None
        if self.start_block is not None and self.target_block is not None:
            span = self.target_block - self.start_block + 1
            done = (self.next_block or self.start_block) - self.start_block
            progress = round(min(done / span, 1.0) * 100, 2) if span > 0 else 100.0
        return {
            "user_id": self.user_id,
            "contract_address": self.contract_address,
            "chain_id": self.chain_id,
            "status": str(self.status),
            "tier": self.tier.name if self.tier else None,
            "deployment_block": self.deployment_block,
            "start_block": self.start_block,
            "current_block": self.current_block,
            "target_block": self.target_block,
            "backfill_complete": self.backfill_complete,
            "progress_percent": progress,
            "metrics": self.cumulative_metrics.to_dict(),
            "failed_ranges": [r.to_dict() for r in self.failed_ranges],
            "created_at": to_iso(self.created_at),
            "paused_at": to_iso(self.paused_at),
            "completed_at": to_iso(self.completed_at),
            "last_error": self.last_error,
        }
