"""
Chunk manager.

Partitions a block range into fixed-size chunks and processes them strictly
in ascending order. A chunk whose fetch exhausts its retries is marked
failed and the run continues; completed chunks are folded into the
cumulative metrics.
"""

import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from loguru import logger

from chain_indexer.config.constants import DEFAULT_CHUNK_SIZE
from chain_indexer.models.enums import ChunkStatus
from chain_indexer.models.indexing import BlockRange, Chunk, CumulativeMetrics
from chain_indexer.services.indexer.anomaly_detector import AnomalyDetector
from chain_indexer.services.indexer.contract_fetcher import ContractFetcher
from chain_indexer.services.indexer.horizontal_validator import HorizontalValidator
from chain_indexer.services.monitoring.metrics_collector import MetricsCollector
from chain_indexer.utils.exceptions import ChunkFetchError

ChunkCallback = Callable[[Chunk, int, CumulativeMetrics], Awaitable[None] | None]


@dataclass
class ChunkRunResult:
    """Outcome of processing a block range."""

    chunks: list[Chunk]
    metrics: CumulativeMetrics
    gaps: list[BlockRange] = field(default_factory=list)
    stopped_early: bool = False

    @property
    def failed(self) -> list[Chunk]:
        return [c for c in self.chunks if c.status == ChunkStatus.FAILED]

    @property
    def completed(self) -> list[Chunk]:
        return [c for c in self.chunks if c.status == ChunkStatus.COMPLETED]


class ChunkManager:
    """Sequential chunked fetch-validate-fold pipeline."""

    def __init__(
        self,
        fetcher: ContractFetcher,
        validator: HorizontalValidator | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        anomaly_detector: AnomalyDetector | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.fetcher = fetcher
        self.validator = validator if validator is not None else HorizontalValidator()
        self.chunk_size = chunk_size
        self.anomaly_detector = anomaly_detector
        self.metrics = metrics
        self._clock = clock

    def divide_into_chunks(self, start_block: int, end_block: int) -> list[Chunk]:
        """
        Partition [start_block, end_block] into contiguous chunks.

        chunk[i] = [start + i*size, min(start + (i+1)*size - 1, end)]

        Returns:
            Chunks in ascending order, empty if start_block > end_block
        """
        if start_block < 0:
            raise ValueError(f"start_block must be >= 0, got {start_block}")

        chunks: list[Chunk] = []
        index = 0
        chunk_start = start_block
        while chunk_start <= end_block:
            chunk_end = min(chunk_start + self.chunk_size - 1, end_block)
            chunks.append(Chunk(index=index, start_block=chunk_start, end_block=chunk_end))
            chunk_start = chunk_end + 1
            index += 1
        return chunks

    def _fail_chunk(
        self, chunk: Chunk, error: str, started: float, user_id: str | None
    ) -> Chunk:
        chunk.processing_time = self._clock() - started
        chunk.mark_failed(error)
        if self.metrics:
            self.metrics.record_error(user_id)
        return chunk

    async def process_chunk(
        self,
        chain_id: str,
        contract_address: str,
        chunk: Chunk,
        user_id: str | None = None,
    ) -> Chunk:
        """
        Fetch one chunk and move it to a terminal status.

        Returns:
            The same chunk, COMPLETED or FAILED
        """
        chunk.mark_processing()
        started = self._clock()

        try:
            logs = await self.fetcher.fetch_contract_data(
                chain_id, contract_address, chunk.start_block, chunk.end_block
            )
        except ChunkFetchError as e:
            logger.error(
                f"[ChunkManager] Chunk {chunk.start_block}-{chunk.end_block} failed: {e}"
            )
            return self._fail_chunk(chunk, str(e), started, user_id)
        except Exception as e:
            logger.exception(
                f"[ChunkManager] Unexpected error in chunk "
                f"{chunk.start_block}-{chunk.end_block}: {e!r}"
            )
            return self._fail_chunk(chunk, repr(e), started, user_id)

        chunk.processing_time = self._clock() - started
        chunk.mark_completed(logs)

        continuity = self.validator.verify_transaction_continuity(chunk)
        if not continuity.valid:
            chunk.warnings.append(
                f"{continuity.duplicate_count} duplicate logs: "
                f"{', '.join(continuity.duplicates[:5])}"
            )

        if self.anomaly_detector is not None:
            anomaly = self.anomaly_detector.observe(
                f"{chain_id}:{contract_address.lower()}", len(logs)
            )
            if anomaly.is_anomaly:
                message = (
                    f"Log count {len(logs)} deviates {anomaly.deviation:.1f} sigma "
                    f"from baseline mean {anomaly.mean:.1f}"
                )
                chunk.warnings.append(message)
                logger.warning(
                    f"[ChunkManager] Anomaly in {chunk.start_block}-{chunk.end_block}: "
                    f"{message}"
                )

        if self.metrics:
            self.metrics.record_chunk_processed(
                user_id, chunk.processing_time, chunk.block_count
            )

        logger.debug(
            f"[ChunkManager] Chunk {chunk.start_block}-{chunk.end_block}: "
            f"{len(logs)} logs in {chunk.processing_time:.2f}s"
        )
        return chunk

    async def process_chunks(
        self,
        chain_id: str,
        contract_address: str,
        start_block: int,
        end_block: int,
        initial_metrics: CumulativeMetrics | None = None,
        user_id: str | None = None,
        on_chunk: ChunkCallback | None = None,
        should_continue: Callable[[], bool] | None = None,
    ) -> ChunkRunResult:
        """
        Process [start_block, end_block] chunk by chunk.

        Args:
            chain_id: Chain identifier
            contract_address: Contract address
            start_block: First block (inclusive)
            end_block: Last block (inclusive)
            initial_metrics: Totals to fold on top of
            user_id: Session owner for metrics
            on_chunk: Called after every chunk with (chunk, total, metrics)
            should_continue: Checked before each chunk; False stops the run

        Returns:
            Processed chunks, folded metrics and detected gaps
        """
        chunks = self.divide_into_chunks(start_block, end_block)
        total = len(chunks)
        metrics = initial_metrics if initial_metrics is not None else CumulativeMetrics()
        gaps: list[BlockRange] = []
        last_completed: Chunk | None = None
        stopped_early = False

        logger.info(
            f"[ChunkManager] Processing blocks {start_block}-{end_block} "
            f"in {total} chunks on {chain_id}"
        )

        for chunk in chunks:
            if should_continue is not None and not should_continue():
                stopped_early = True
                logger.info(
                    f"[ChunkManager] Run halted before chunk {chunk.index + 1}/{total}"
                )
                break

            await self.process_chunk(chain_id, contract_address, chunk, user_id)

            if chunk.status == ChunkStatus.COMPLETED:
                if last_completed is not None:
                    boundary = self.validator.validate_chunk_boundary(last_completed, chunk)
                    if boundary.gap is not None:
                        gaps.append(boundary.gap)
                assert chunk.metrics is not None
                metrics = metrics.fold(chunk.metrics)
                last_completed = chunk

            if on_chunk is not None:
                outcome = on_chunk(chunk, total, metrics)
                if inspect.isawaitable(outcome):
                    await outcome

        processed = [c for c in chunks if c.is_terminal]
        failed = sum(1 for c in processed if c.status == ChunkStatus.FAILED)
        logger.info(
            f"[ChunkManager] Processed {len(processed)}/{total} chunks "
            f"({failed} failed), {metrics.total_logs} logs total"
        )
        return ChunkRunResult(
            chunks=processed,
            metrics=metrics,
            gaps=gaps,
            stopped_early=stopped_early,
        )

    async def retry_failed_chunks(
        self,
        chain_id: str,
        contract_address: str,
        ranges: list[BlockRange],
        user_id: str | None = None,
    ) -> list[Chunk]:
        """
        Re-fetch previously failed ranges in ascending order.

        Returns:
            One fresh terminal chunk per range
        """
        results: list[Chunk] = []
        for index, block_range in enumerate(sorted(ranges, key=lambda r: r.start_block)):
            chunk = Chunk(
                index=index,
                start_block=block_range.start_block,
                end_block=block_range.end_block,
            )
            results.append(
                await self.process_chunk(chain_id, contract_address, chunk, user_id)
            )

        recovered = sum(1 for c in results if c.status == ChunkStatus.COMPLETED)
        logger.info(
            f"[ChunkManager] Retried {len(results)} failed ranges, {recovered} recovered"
        )
        return results
