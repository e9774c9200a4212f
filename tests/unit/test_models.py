"""
Tests for indexing models.

Covers:
- Chunk status transitions
- Cumulative metric folding
- Session snapshot serialization and resume point
"""

import pytest

from chain_indexer.models.enums import ChunkStatus, SessionStatus
from chain_indexer.models.indexing import (
    BlockRange,
    Chunk,
    ChunkMetrics,
    CumulativeMetrics,
    SessionSnapshot,
)
from chain_indexer.utils.exceptions import InvalidStateTransitionError


class TestChunkTransitions:
    """Test chunk lifecycle."""

    def test_pending_to_completed(self):
        chunk = Chunk(index=0, start_block=10, end_block=19)

        chunk.mark_processing()
        chunk.mark_completed([])

        assert chunk.status == ChunkStatus.COMPLETED
        assert chunk.metrics == ChunkMetrics(log_count=0, blocks_covered=10)

    def test_completed_chunk_cannot_fail(self):
        chunk = Chunk(index=0, start_block=10, end_block=19)
        chunk.mark_processing()
        chunk.mark_completed([])

        with pytest.raises(InvalidStateTransitionError):
            chunk.mark_failed("late error")

    def test_completed_chunk_cannot_restart(self):
        chunk = Chunk(index=0, start_block=10, end_block=19)
        chunk.mark_processing()
        chunk.mark_failed("boom")

        with pytest.raises(InvalidStateTransitionError):
            chunk.mark_processing()

    def test_complete_requires_processing(self):
        with pytest.raises(InvalidStateTransitionError):
            Chunk(index=0, start_block=0, end_block=1).mark_completed([])


class TestCumulativeMetrics:
    """Test metric folding."""

    def test_fold_accumulates(self):
        metrics = CumulativeMetrics().fold(
            ChunkMetrics(log_count=2, blocks_covered=100, first_log_block=5, last_log_block=50)
        ).fold(
            ChunkMetrics(log_count=0, blocks_covered=100)
        ).fold(
            ChunkMetrics(log_count=1, blocks_covered=50, first_log_block=220, last_log_block=220)
        )

        assert metrics == CumulativeMetrics(
            total_logs=3,
            total_blocks_covered=250,
            chunks_processed=3,
            first_log_block=5,
            last_log_block=220,
        )

    def test_round_trips_through_dict(self):
        metrics = CumulativeMetrics(4, 400, 4, 1, 399)

        assert CumulativeMetrics.from_dict(metrics.to_dict()) == metrics
        assert CumulativeMetrics.from_dict(None) == CumulativeMetrics()


class TestSessionSnapshot:
    """Test persisted session state."""

    def base_fields(self) -> dict:
        return {
            "user_id": "u1",
            "contract_address": "0x" + "ab" * 20,
            "chain_id": "ethereum",
            "status": "running",
            "tier": "pro",
            "deployment_block": 100,
            "start_block": 500,
            "current_block": 900,
            "target_block": 1_000,
        }

    def test_minimal_document_resumes_after_current_block(self):
        snapshot = SessionSnapshot.from_dict(self.base_fields())

        assert snapshot.status == SessionStatus.RUNNING
        assert snapshot.next_block is None
        assert snapshot.resume_block() == 901
        assert snapshot.failed_ranges == []
        assert snapshot.cumulative_metrics == CumulativeMetrics()

    def test_next_block_wins_when_present(self):
        snapshot = SessionSnapshot.from_dict({**self.base_fields(), "next_block": 500})

        assert snapshot.resume_block() == 500

    def test_full_round_trip(self):
        snapshot = SessionSnapshot.from_dict({
            **self.base_fields(),
            "next_block": 901,
            "backfill_complete": True,
            "cumulative_metrics": {"total_logs": 3, "chunks_processed": 2},
            "failed_ranges": [{"start_block": 600, "end_block": 699}],
            "created_at": "2026-01-01T00:00:00+00:00",
        })

        restored = SessionSnapshot.from_dict(snapshot.to_dict())

        assert restored == snapshot
        assert restored.failed_ranges == [BlockRange(600, 699)]
        assert restored.created_at.year == 2026

    def test_invalid_status_rejected(self):
        with pytest.raises(ValueError):
            SessionSnapshot.from_dict({**self.base_fields(), "status": "exploded"})

    def test_missing_field_rejected(self):
        fields = self.base_fields()
        del fields["current_block"]

        with pytest.raises(KeyError):
            SessionSnapshot.from_dict(fields)
