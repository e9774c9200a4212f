"""
Horizontal validator.

Consistency checks across adjacent chunks: gaps, overlaps and duplicate
logs. Findings are warnings; they never stop processing.
"""

from collections import Counter
from dataclasses import dataclass, field

from loguru import logger

from chain_indexer.models.enums import ChunkStatus
from chain_indexer.models.indexing import BlockRange, Chunk


@dataclass
class BoundaryValidation:
    """Result of comparing two consecutive chunks."""

    valid: bool
    gap: BlockRange | None = None
    overlap: BlockRange | None = None
    message: str | None = None

    @property
    def missing_blocks(self) -> int:
        return self.gap.block_count if self.gap else 0


@dataclass
class ContinuityResult:
    """Duplicate-log check over one chunk."""

    valid: bool
    total_logs: int
    duplicate_count: int = 0
    duplicates: list[str] = field(default_factory=list)


class HorizontalValidator:
    """Validates block coverage and log uniqueness."""

    def validate_chunk_boundary(self, prev: Chunk, curr: Chunk) -> BoundaryValidation:
        """
        Check that ``curr`` starts right after ``prev``.

        Args:
            prev: Previous chunk
            curr: Current chunk

        Returns:
            Validation result with the missing or overlapping range
        """
        expected = prev.end_block + 1
        if curr.start_block == expected:
            return BoundaryValidation(valid=True)

        if curr.start_block > expected:
            gap = BlockRange(expected, curr.start_block - 1)
            message = (
                f"Gap between chunks: blocks {gap.start_block}-{gap.end_block} "
                f"({gap.block_count} blocks) missing"
            )
            logger.warning(f"[Validator] {message}")
            return BoundaryValidation(valid=False, gap=gap, message=message)

        overlap = BlockRange(curr.start_block, min(prev.end_block, curr.end_block))
        message = f"Overlapping chunks: blocks {overlap.start_block}-{overlap.end_block}"
        logger.warning(f"[Validator] {message}")
        return BoundaryValidation(valid=False, overlap=overlap, message=message)

    def detect_missing_data(self, chunks: list[Chunk]) -> list[BlockRange]:
        """
        Find every block range not covered by a completed chunk.

        The span checked runs from the first to the last chunk's bounds;
        failed or unprocessed chunks count as uncovered.

        Returns:
            Missing ranges in ascending order
        """
        if not chunks:
            return []

        span_start = min(chunk.start_block for chunk in chunks)
        span_end = max(chunk.end_block for chunk in chunks)
        completed = sorted(
            (c for c in chunks if c.status == ChunkStatus.COMPLETED),
            key=lambda c: c.start_block,
        )

        missing: list[BlockRange] = []
        cursor = span_start
        for chunk in completed:
            if chunk.start_block > cursor:
                missing.append(BlockRange(cursor, chunk.start_block - 1))
            cursor = max(cursor, chunk.end_block + 1)
        if cursor <= span_end:
            missing.append(BlockRange(cursor, span_end))

        if missing:
            total = sum(r.block_count for r in missing)
            logger.warning(
                f"[Validator] {len(missing)} missing ranges ({total} blocks)"
            )
        return missing

    def verify_transaction_continuity(self, chunk: Chunk) -> ContinuityResult:
        """
        Flag logs fetched more than once within a chunk.

        A log is identified by (transaction hash, log index), so a single
        transaction emitting several events is not a duplicate.
        """
        counts = Counter(
            (log.transaction_hash, log.log_index) for log in chunk.logs
        )
        duplicates = sorted(
            f"{tx_hash}#{log_index}"
            for (tx_hash, log_index), count in counts.items()
            if count > 1
        )
        duplicate_count = sum(count - 1 for count in counts.values() if count > 1)

        if duplicates:
            logger.warning(
                f"[Validator] {duplicate_count} duplicate logs in blocks "
                f"{chunk.start_block}-{chunk.end_block}"
            )

        return ContinuityResult(
            valid=not duplicates,
            total_logs=len(chunk.logs),
            duplicate_count=duplicate_count,
            duplicates=duplicates,
        )
