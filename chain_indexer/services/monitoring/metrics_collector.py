"""
Metrics collector.

In-process counters for throughput, RPC reliability and per-user activity.
"""

import time
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from chain_indexer.config.constants import LATENCY_SAMPLE_LIMIT
from chain_indexer.utils.datetime_utils import to_iso, utc_now


@dataclass
class UserMetrics:
    """Activity counters for one user."""

    blocks_processed: int = 0
    chunks_processed: int = 0
    errors: int = 0
    last_activity: datetime | None = None


class MetricsCollector:
    """Collects indexing and RPC metrics."""

    def __init__(
        self,
        sample_limit: int = LATENCY_SAMPLE_LIMIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sample_limit = sample_limit
        self._clock = clock
        self.reset()

    def reset(self) -> None:
        self._started_at = self._clock()
        self.blocks_processed = 0
        self.chunks_processed = 0
        self.rpc_requests = 0
        self.rpc_failures = 0
        self.errors = 0
        self._rpc_latencies: deque[float] = deque(maxlen=self._sample_limit)
        self._chunk_times: deque[float] = deque(maxlen=self._sample_limit)
        self._users: dict[str, UserMetrics] = {}

    def _user(self, user_id: str) -> UserMetrics:
        metrics = self._users.get(user_id)
        if metrics is None:
            metrics = UserMetrics()
            self._users[user_id] = metrics
        metrics.last_activity = utc_now()
        return metrics

    def record_blocks_processed(self, user_id: str | None, count: int) -> None:
        self.blocks_processed += count
        if user_id is not None:
            self._user(user_id).blocks_processed += count

    def record_chunk_processed(
        self, user_id: str | None, duration: float, blocks: int = 0
    ) -> None:
        """
        Record one completed chunk.

        Args:
            user_id: Session owner, if any
            duration: Processing time in seconds
            blocks: Blocks covered by the chunk
        """
        self.chunks_processed += 1
        self._chunk_times.append(duration)
        if user_id is not None:
            self._user(user_id).chunks_processed += 1
        if blocks:
            self.record_blocks_processed(user_id, blocks)

    def record_rpc_request(self, success: bool, latency_ms: float) -> None:
        self.rpc_requests += 1
        if not success:
            self.rpc_failures += 1
        self._rpc_latencies.append(latency_ms)

    def record_error(self, user_id: str | None = None) -> None:
        self.errors += 1
        if user_id is not None:
            self._user(user_id).errors += 1

    @property
    def uptime(self) -> float:
        return self._clock() - self._started_at

    @property
    def blocks_per_second(self) -> float:
        uptime = self.uptime
        return self.blocks_processed / uptime if uptime > 0 else 0.0

    @property
    def average_chunk_time(self) -> float:
        if not self._chunk_times:
            return 0.0
        return sum(self._chunk_times) / len(self._chunk_times)

    @property
    def average_rpc_latency_ms(self) -> float:
        if not self._rpc_latencies:
            return 0.0
        return sum(self._rpc_latencies) / len(self._rpc_latencies)

    @property
    def rpc_success_rate(self) -> float:
        """Percentage of successful RPC requests (100 when none were made)."""
        if self.rpc_requests == 0:
            return 100.0
        return (self.rpc_requests - self.rpc_failures) / self.rpc_requests * 100

    def get_user_metrics(self, user_id: str) -> dict[str, Any] | None:
        metrics = self._users.get(user_id)
        if metrics is None:
            return None
        data = asdict(metrics)
        data["last_activity"] = to_iso(metrics.last_activity)
        return data

    def get_metrics(self) -> dict[str, Any]:
        return {
            "uptime_seconds": round(self.uptime, 2),
            "blocks_processed": self.blocks_processed,
            "chunks_processed": self.chunks_processed,
            "blocks_per_second": round(self.blocks_per_second, 2),
            "average_chunk_time": round(self.average_chunk_time, 3),
            "errors": self.errors,
            "rpc": {
                "requests": self.rpc_requests,
                "failures": self.rpc_failures,
                "success_rate": round(self.rpc_success_rate, 2),
                "average_latency_ms": round(self.average_rpc_latency_ms, 2),
            },
            "users": len(self._users),
        }
