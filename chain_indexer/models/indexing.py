"""
Indexing domain models.

In-memory dataclasses shared by the pool, the chunk pipeline and sessions.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from chain_indexer.models.enums import ChunkStatus, SessionStatus
from chain_indexer.utils.datetime_utils import from_iso, to_iso, utc_now
from chain_indexer.utils.exceptions import InvalidStateTransitionError


@dataclass
class RPCEndpoint:
    """One upstream RPC endpoint and its advisory health state."""

    url: str
    chain_id: str
    healthy: bool = True
    consecutive_failures: int = 0
    last_response_time_ms: float | None = None
    last_checked_at: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "chain_id": self.chain_id,
            "healthy": self.healthy,
            "consecutive_failures": self.consecutive_failures,
            "last_response_time_ms": self.last_response_time_ms,
            "last_checked_at": to_iso(self.last_checked_at),
            "last_error": self.last_error,
        }


@dataclass(frozen=True)
class LogRecord:
    """Normalized contract event log."""

    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int
    transaction_hash: str
    transaction_index: int
    log_index: int
    removed: bool = False


@dataclass(frozen=True)
class BlockRange:
    """Inclusive block range."""

    start_block: int
    end_block: int

    @property
    def block_count(self) -> int:
        return self.end_block - self.start_block + 1

    def to_dict(self) -> dict[str, int]:
        return {"start_block": self.start_block, "end_block": self.end_block}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BlockRange":
        return cls(int(data["start_block"]), int(data["end_block"]))


@dataclass(frozen=True)
class ChunkMetrics:
    """Metrics derived from one fetched chunk."""

    log_count: int
    blocks_covered: int
    first_log_block: int | None = None
    last_log_block: int | None = None

    @classmethod
    def from_logs(
        cls, logs: list[LogRecord], start_block: int, end_block: int
    ) -> "ChunkMetrics":
        blocks = [log.block_number for log in logs]
        return cls(
            log_count=len(logs),
            blocks_covered=end_block - start_block + 1,
            first_log_block=min(blocks) if blocks else None,
            last_log_block=max(blocks) if blocks else None,
        )


def _min_optional(left: int | None, right: int | None) -> int | None:
    if left is None:
        return right
    if right is None:
        return left
    return min(left, right)


def _max_optional(left: int | None, right: int | None) -> int | None:
    if left is None:
        return right
    if right is None:
        return left
    return max(left, right)


@dataclass(frozen=True)
class CumulativeMetrics:
    """
    Running totals over completed chunks.

    Always equal to folding every completed chunk's metrics in block order,
    so a session can be reproduced by replaying its chunks.
    """

    total_logs: int = 0
    total_blocks_covered: int = 0
    chunks_processed: int = 0
    first_log_block: int | None = None
    last_log_block: int | None = None

    def fold(self, chunk_metrics: ChunkMetrics) -> "CumulativeMetrics":
        """Return new totals with one more completed chunk folded in."""
        return CumulativeMetrics(
            total_logs=self.total_logs + chunk_metrics.log_count,
            total_blocks_covered=self.total_blocks_covered + chunk_metrics.blocks_covered,
            chunks_processed=self.chunks_processed + 1,
            first_log_block=_min_optional(self.first_log_block, chunk_metrics.first_log_block),
            last_log_block=_max_optional(self.last_log_block, chunk_metrics.last_log_block),
        )

    @classmethod
    def replay(cls, chunks: Iterable["Chunk"]) -> "CumulativeMetrics":
        """Fold every completed chunk in block order."""
        metrics = cls()
        for chunk in sorted(chunks, key=lambda c: c.start_block):
            if chunk.status == ChunkStatus.COMPLETED and chunk.metrics is not None:
                metrics = metrics.fold(chunk.metrics)
        return metrics

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_logs": self.total_logs,
            "total_blocks_covered": self.total_blocks_covered,
            "chunks_processed": self.chunks_processed,
            "first_log_block": self.first_log_block,
            "last_log_block": self.last_log_block,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CumulativeMetrics":
        if not data:
            return cls()
        return cls(
            total_logs=int(data.get("total_logs", 0)),
            total_blocks_covered=int(data.get("total_blocks_covered", 0)),
            chunks_processed=int(data.get("chunks_processed", 0)),
            first_log_block=data.get("first_log_block"),
            last_log_block=data.get("last_log_block"),
        )


@dataclass
class Chunk:
    """
    Contiguous block range processed as one unit.

    Created PENDING by the partitioner, moved through PROCESSING to a
    terminal status exactly once. Retrying a failed range uses a new Chunk.
    """

    index: int
    start_block: int
    end_block: int
    status: ChunkStatus = ChunkStatus.PENDING
    logs: list[LogRecord] = field(default_factory=list)
    metrics: ChunkMetrics | None = None
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    processing_time: float | None = None

    @property
    def block_count(self) -> int:
        return self.end_block - self.start_block + 1

    @property
    def is_terminal(self) -> bool:
        return self.status in (ChunkStatus.COMPLETED, ChunkStatus.FAILED)

    def as_range(self) -> BlockRange:
        return BlockRange(self.start_block, self.end_block)

    def mark_processing(self) -> None:
        if self.status != ChunkStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Chunk {self.start_block}-{self.end_block} is {self.status}, "
                f"cannot start processing"
            )
        self.status = ChunkStatus.PROCESSING

    def mark_completed(self, logs: list[LogRecord]) -> None:
        if self.status != ChunkStatus.PROCESSING:
            raise InvalidStateTransitionError(
                f"Chunk {self.start_block}-{self.end_block} is {self.status}, "
                f"cannot complete"
            )
        self.logs = logs
        self.metrics = ChunkMetrics.from_logs(logs, self.start_block, self.end_block)
        self.status = ChunkStatus.COMPLETED

    def mark_failed(self, error: str) -> None:
        if self.is_terminal:
            raise InvalidStateTransitionError(
                f"Chunk {self.start_block}-{self.end_block} is already {self.status}"
            )
        self.error = error
        self.status = ChunkStatus.FAILED


@dataclass
class ProgressEvent:
    """Progress notification emitted after every chunk."""

    user_id: str
    chunk: int
    total: int
    percent: float
    current_block: int
    target_block: int
    metrics: dict[str, Any]
    timestamp: datetime = field(default_factory=utc_now)
    type: str = "progress"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "user_id": self.user_id,
            "chunk": self.chunk,
            "total": self.total,
            "percent": self.percent,
            "current_block": self.current_block,
            "target_block": self.target_block,
            "metrics": self.metrics,
            "timestamp": to_iso(self.timestamp),
        }


@dataclass
class SessionSnapshot:
    """Persisted state of one session, keyed by user id."""

    user_id: str
    contract_address: str
    chain_id: str
    status: SessionStatus
    tier: str
    deployment_block: int
    start_block: int
    current_block: int
    target_block: int
    next_block: int | None = None
    backfill_complete: bool = False
    cumulative_metrics: CumulativeMetrics = field(default_factory=CumulativeMetrics)
    failed_ranges: list[BlockRange] = field(default_factory=list)
    created_at: datetime | None = None
    saved_at: datetime | None = None

    def resume_block(self) -> int:
        """First block not yet covered by this session."""
        if self.next_block is not None:
            return self.next_block
        return self.current_block + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "contract_address": self.contract_address,
            "chain_id": self.chain_id,
            "status": str(self.status),
            "tier": self.tier,
            "deployment_block": self.deployment_block,
            "start_block": self.start_block,
            "current_block": self.current_block,
            "target_block": self.target_block,
            "next_block": self.next_block,
            "backfill_complete": self.backfill_complete,
            "cumulative_metrics": self.cumulative_metrics.to_dict(),
            "failed_ranges": [r.to_dict() for r in self.failed_ranges],
            "created_at": to_iso(self.created_at),
            "saved_at": to_iso(self.saved_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionSnapshot":
        """
        Build a snapshot from its stored form.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has an invalid value
        """
        next_block = data.get("next_block")
        return cls(
            user_id=str(data["user_id"]),
            contract_address=data["contract_address"],
            chain_id=data["chain_id"],
            status=SessionStatus(data["status"]),
            tier=data["tier"],
            deployment_block=int(data["deployment_block"]),
            start_block=int(data["start_block"]),
            current_block=int(data["current_block"]),
            target_block=int(data["target_block"]),
            next_block=int(next_block) if next_block is not None else None,
            backfill_complete=bool(data.get("backfill_complete", False)),
            cumulative_metrics=CumulativeMetrics.from_dict(data.get("cumulative_metrics")),
            failed_ranges=[BlockRange.from_dict(r) for r in data.get("failed_ranges", [])],
            created_at=from_iso(data.get("created_at")),
            saved_at=from_iso(data.get("saved_at")),
        )
