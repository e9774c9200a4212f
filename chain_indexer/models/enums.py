"""
Enumerations for indexer models.
"""

from enum import StrEnum


class ChunkStatus(StrEnum):
    """Processing status of one block-range chunk."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SessionStatus(StrEnum):
    """Lifecycle status of an indexing session."""

    PENDING = "pending"
    INITIALIZED = "initialized"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (
            SessionStatus.INITIALIZED,
            SessionStatus.RUNNING,
            SessionStatus.PAUSED,
        )


class HealthStatus(StrEnum):
    """Component health levels."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
