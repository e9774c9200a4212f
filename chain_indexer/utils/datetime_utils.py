"""
Datetime utilities.

Provides timezone-aware datetime functions.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone info.

    Returns:
        Current datetime in UTC with timezone awareness
    """
    return datetime.now(UTC)


def to_iso(value: datetime | None) -> str | None:
    """Serialize an optional datetime to ISO-8601."""
    return value.isoformat() if value else None


def from_iso(value: str | None) -> datetime | None:
    """Parse an optional ISO-8601 string."""
    return datetime.fromisoformat(value) if value else None
