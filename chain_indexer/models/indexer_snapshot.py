"""
Indexer Snapshot model.

Stores the persisted state of indexing sessions.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from chain_indexer.models.base import Base


class IndexerSnapshot(Base):
    """
    Persisted indexing session snapshot.

    Used to:
    - Resume sessions after restart
    - Keep progress across graceful shutdowns
    """

    __tablename__ = "indexer_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Snapshot key, e.g. indexer-<user_id>
    key: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )

    # Full snapshot document
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )
