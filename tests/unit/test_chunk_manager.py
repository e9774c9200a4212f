"""
Tests for ChunkManager.

Covers:
- Partitioning into contiguous, ordered, non-overlapping chunks
- Sequential processing and metric folding
- Failed chunk isolation (upstream errors and malformed logs) and gap reporting
- Halting, callbacks, duplicates, anomalies and failed-range retries
"""

import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from chain_indexer.models.enums import ChunkStatus
from chain_indexer.models.indexing import BlockRange, CumulativeMetrics
from chain_indexer.services.indexer.anomaly_detector import AnomalyDetector
from chain_indexer.services.indexer.chunk_manager import ChunkManager
from tests.fakes import CONTRACT


def partition(start: int, end: int, size: int):
    return ChunkManager(fetcher=MagicMock(), chunk_size=size).divide_into_chunks(start, end)


class TestDivideIntoChunks:
    """Test block range partitioning."""

    def test_three_chunk_example(self):
        chunks = partition(1_000_000, 1_450_000, 200_000)

        assert [(c.start_block, c.end_block) for c in chunks] == [
            (1_000_000, 1_199_999),
            (1_200_000, 1_399_999),
            (1_400_000, 1_450_000),
        ]
        assert [c.index for c in chunks] == [0, 1, 2]
        assert all(c.status == ChunkStatus.PENDING for c in chunks)

    def test_single_block_range(self):
        chunks = partition(42, 42, 200_000)

        assert [(c.start_block, c.end_block) for c in chunks] == [(42, 42)]

    def test_exact_multiple(self):
        chunks = partition(0, 299, 100)

        assert [(c.start_block, c.end_block) for c in chunks] == [
            (0, 99), (100, 199), (200, 299),
        ]

    def test_empty_when_start_after_end(self):
        assert partition(101, 100, 10) == []

    def test_negative_start_rejected(self):
        with pytest.raises(ValueError):
            partition(-1, 100, 10)

    def test_invalid_chunk_size(self):
        with pytest.raises(ValueError):
            ChunkManager(fetcher=MagicMock(), chunk_size=0)

    @pytest.mark.parametrize("seed", range(20))
    def test_partition_covers_range_exactly(self, seed):
        rng = random.Random(seed)
        start = rng.randint(0, 10_000_000)
        end = start + rng.randint(0, 2_000_000)
        size = rng.randint(1, 300_000)

        chunks = partition(start, end, size)

        assert chunks[0].start_block == start
        assert chunks[-1].end_block == end
        for prev, curr in zip(chunks, chunks[1:]):
            assert curr.start_block == prev.end_block + 1
        assert all(c.block_count <= size for c in chunks)
        assert sum(c.block_count for c in chunks) == end - start + 1


class TestProcessChunks:
    """Test the sequential processing pipeline."""

    @pytest.mark.asyncio
    async def test_processes_chunks_in_order_and_folds_metrics(self, components, fake_chain):
        for block in (10, 150, 420, 999):
            fake_chain.add_log(block)

        result = await components.chunk_manager.process_chunks(
            "ethereum", CONTRACT, 0, 999
        )

        assert fake_chain.log_queries() == [(b, b + 99) for b in range(0, 1_000, 100)]
        assert len(result.completed) == 10
        assert result.failed == []
        assert result.gaps == []
        assert result.metrics.total_logs == 4
        assert result.metrics.chunks_processed == 10
        assert result.metrics.total_blocks_covered == 1_000
        assert result.metrics.first_log_block == 10
        assert result.metrics.last_log_block == 999

    @pytest.mark.asyncio
    async def test_failed_chunk_isolated_and_gap_recorded(self, components, fake_chain):
        for block in (10, 150, 420):
            fake_chain.add_log(block)
        fake_chain.failing_ranges.add((100, 199))

        result = await components.chunk_manager.process_chunks(
            "ethereum", CONTRACT, 0, 499
        )

        statuses = [c.status for c in result.chunks]
        assert statuses == [
            ChunkStatus.COMPLETED,
            ChunkStatus.FAILED,
            ChunkStatus.COMPLETED,
            ChunkStatus.COMPLETED,
            ChunkStatus.COMPLETED,
        ]
        assert result.failed[0].error is not None
        assert result.gaps == [BlockRange(100, 199)]
        assert result.metrics.total_logs == 2
        assert result.metrics.chunks_processed == 4

    @pytest.mark.asyncio
    async def test_malformed_log_fails_only_its_chunk(self, components, fake_chain):
        for block in (10, 150, 420):
            fake_chain.add_log(block)
        del fake_chain.logs[1]["transactionHash"]

        result = await components.chunk_manager.process_chunks(
            "ethereum", CONTRACT, 0, 499
        )

        assert [c.status for c in result.chunks] == [
            ChunkStatus.COMPLETED,
            ChunkStatus.FAILED,
            ChunkStatus.COMPLETED,
            ChunkStatus.COMPLETED,
            ChunkStatus.COMPLETED,
        ]
        assert "transactionHash" in result.failed[0].error
        assert result.metrics.total_logs == 2

    @pytest.mark.asyncio
    async def test_unexpected_fetch_error_marks_chunk_failed(self):
        fetcher = MagicMock()
        fetcher.fetch_contract_data = AsyncMock(side_effect=[RuntimeError("decoder bug"), []])
        manager = ChunkManager(fetcher, chunk_size=100)

        result = await manager.process_chunks("ethereum", CONTRACT, 0, 199)

        assert [c.status for c in result.chunks] == [
            ChunkStatus.FAILED,
            ChunkStatus.COMPLETED,
        ]
        assert "decoder bug" in result.failed[0].error
        assert result.metrics.chunks_processed == 1

    @pytest.mark.asyncio
    async def test_metrics_equal_replay_of_completed_chunks(self, components, fake_chain):
        rng = random.Random(3)
        for _ in range(40):
            fake_chain.add_log(rng.randint(0, 999), tx=rng.randint(1, 10_000))
        fake_chain.failing_ranges.update({(300, 399), (700, 799)})

        result = await components.chunk_manager.process_chunks(
            "ethereum", CONTRACT, 0, 999
        )

        assert result.metrics == CumulativeMetrics.replay(result.chunks)

    @pytest.mark.asyncio
    async def test_folds_on_top_of_initial_metrics(self, components, fake_chain):
        fake_chain.add_log(50)
        initial = CumulativeMetrics(
            total_logs=7, total_blocks_covered=500, chunks_processed=5,
            first_log_block=3, last_log_block=40,
        )

        result = await components.chunk_manager.process_chunks(
            "ethereum", CONTRACT, 0, 99, initial_metrics=initial
        )

        assert result.metrics.total_logs == 8
        assert result.metrics.chunks_processed == 6
        assert result.metrics.first_log_block == 3
        assert result.metrics.last_log_block == 50

    @pytest.mark.asyncio
    async def test_should_continue_halts_before_next_chunk(self, components, fake_chain):
        processed = []

        result = await components.chunk_manager.process_chunks(
            "ethereum",
            CONTRACT,
            0,
            999,
            on_chunk=lambda chunk, total, metrics: processed.append(chunk.index),
            should_continue=lambda: len(processed) < 3,
        )

        assert result.stopped_early is True
        assert processed == [0, 1, 2]
        assert len(result.chunks) == 3
        assert len(fake_chain.log_queries()) == 3

    @pytest.mark.asyncio
    async def test_async_callback_receives_running_totals(self, components, fake_chain):
        for block in (5, 105, 205):
            fake_chain.add_log(block)
        seen = []

        async def on_chunk(chunk, total, metrics):
            seen.append((chunk.index, total, metrics.total_logs))

        await components.chunk_manager.process_chunks(
            "ethereum", CONTRACT, 0, 299, on_chunk=on_chunk
        )

        assert seen == [(0, 3, 1), (1, 3, 2), (2, 3, 3)]

    @pytest.mark.asyncio
    async def test_callback_sees_failed_chunks(self, components, fake_chain):
        fake_chain.failing_ranges.add((0, 99))
        seen = []

        await components.chunk_manager.process_chunks(
            "ethereum", CONTRACT, 0, 199,
            on_chunk=lambda chunk, total, metrics: seen.append(chunk.status),
        )

        assert seen == [ChunkStatus.FAILED, ChunkStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_duplicate_logs_are_warnings(self, components, fake_chain):
        fake_chain.add_log(50, tx=5, log_index=0)
        fake_chain.add_log(50, tx=5, log_index=0)
        fake_chain.add_log(50, tx=5, log_index=1)

        result = await components.chunk_manager.process_chunks(
            "ethereum", CONTRACT, 0, 99
        )

        chunk = result.chunks[0]
        assert chunk.status == ChunkStatus.COMPLETED
        assert len(chunk.warnings) == 1
        assert chunk.warnings[0].startswith("1 duplicate logs")

    @pytest.mark.asyncio
    async def test_anomalous_log_count_flagged(self, components, fake_chain):
        components.chunk_manager.anomaly_detector = AnomalyDetector(min_samples=3)
        for log_index in range(20):
            fake_chain.add_log(350, tx=1, log_index=log_index)

        result = await components.chunk_manager.process_chunks(
            "ethereum", CONTRACT, 0, 399
        )

        assert [len(c.warnings) for c in result.chunks] == [0, 0, 0, 1]
        assert "sigma" in result.chunks[3].warnings[0]

    @pytest.mark.asyncio
    async def test_per_user_metrics_recorded(self, components, fake_chain):
        fake_chain.failing_ranges.add((100, 199))

        await components.chunk_manager.process_chunks(
            "ethereum", CONTRACT, 0, 299, user_id="u1"
        )

        user = components.metrics.get_user_metrics("u1")
        assert user["chunks_processed"] == 2
        assert user["blocks_processed"] == 200
        assert user["errors"] == 1


class TestRetryFailedChunks:
    """Test re-fetching failed ranges."""

    @pytest.mark.asyncio
    async def test_retries_in_ascending_order(self, components, fake_chain):
        fake_chain.add_log(150)

        chunks = await components.chunk_manager.retry_failed_chunks(
            "ethereum", CONTRACT, [BlockRange(300, 399), BlockRange(100, 199)]
        )

        assert [(c.start_block, c.end_block) for c in chunks] == [(100, 199), (300, 399)]
        assert all(c.status == ChunkStatus.COMPLETED for c in chunks)
        assert chunks[0].metrics.log_count == 1

    @pytest.mark.asyncio
    async def test_still_failing_range_reported(self, components, fake_chain):
        fake_chain.failing_ranges.add((300, 399))

        chunks = await components.chunk_manager.retry_failed_chunks(
            "ethereum", CONTRACT, [BlockRange(100, 199), BlockRange(300, 399)]
        )

        assert [c.status for c in chunks] == [ChunkStatus.COMPLETED, ChunkStatus.FAILED]
