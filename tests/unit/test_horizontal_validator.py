"""Tests for HorizontalValidator."""

import pytest

from chain_indexer.models.enums import ChunkStatus
from chain_indexer.models.indexing import BlockRange, Chunk, LogRecord
from chain_indexer.services.indexer.horizontal_validator import HorizontalValidator


def make_chunk(start: int, end: int, status: ChunkStatus = ChunkStatus.COMPLETED) -> Chunk:
    return Chunk(index=0, start_block=start, end_block=end, status=status)


def make_log(tx_hash: str, log_index: int, block: int = 1) -> LogRecord:
    return LogRecord(
        address="0x" + "ab" * 20,
        topics=(),
        data="0x",
        block_number=block,
        transaction_hash=tx_hash,
        transaction_index=0,
        log_index=log_index,
    )


@pytest.fixture
def validator():
    return HorizontalValidator()


class TestChunkBoundary:
    """Test adjacent chunk checks."""

    def test_contiguous_chunks_valid(self, validator):
        result = validator.validate_chunk_boundary(make_chunk(0, 99), make_chunk(100, 199))

        assert result.valid is True
        assert result.missing_blocks == 0

    def test_gap_detected(self, validator):
        result = validator.validate_chunk_boundary(make_chunk(0, 99), make_chunk(150, 199))

        assert result.valid is False
        assert result.gap == BlockRange(100, 149)
        assert result.missing_blocks == 50

    def test_overlap_detected(self, validator):
        result = validator.validate_chunk_boundary(make_chunk(0, 99), make_chunk(90, 199))

        assert result.valid is False
        assert result.overlap == BlockRange(90, 99)


class TestDetectMissingData:
    """Test coverage gap detection."""

    def test_no_chunks(self, validator):
        assert validator.detect_missing_data([]) == []

    def test_full_coverage(self, validator):
        chunks = [make_chunk(0, 99), make_chunk(100, 199)]

        assert validator.detect_missing_data(chunks) == []

    def test_failed_chunks_are_missing(self, validator):
        chunks = [
            make_chunk(0, 99),
            make_chunk(100, 199, ChunkStatus.FAILED),
            make_chunk(200, 299),
            make_chunk(300, 399, ChunkStatus.FAILED),
        ]

        assert validator.detect_missing_data(chunks) == [
            BlockRange(100, 199),
            BlockRange(300, 399),
        ]


class TestTransactionContinuity:
    """Test duplicate log detection."""

    def test_multiple_events_in_one_transaction_are_not_duplicates(self, validator):
        chunk = make_chunk(0, 99)
        chunk.logs = [make_log("0xaa", 0), make_log("0xaa", 1), make_log("0xbb", 0)]

        result = validator.verify_transaction_continuity(chunk)

        assert result.valid is True
        assert result.total_logs == 3

    def test_repeated_log_flagged(self, validator):
        chunk = make_chunk(0, 99)
        chunk.logs = [make_log("0xaa", 0), make_log("0xaa", 0), make_log("0xaa", 0)]

        result = validator.verify_transaction_continuity(chunk)

        assert result.valid is False
        assert result.duplicate_count == 2
        assert result.duplicates == ["0xaa#0"]
