"""
Utility functions for timestamp conversions.
All timestamps handled by graph-sync are timezone-aware UTC datetimes.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utcnow_iso() -> str:
    """
    Get current UTC timestamp as ISO format string.

    Returns:
        ISO format timestamp string (e.g., "2024-01-01T12:00:00.000000Z")
    """
    return to_iso(utcnow())


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Format a datetime as ISO-8601 with a trailing Z."""
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (with or without a trailing Z) into an aware datetime.

    Returns None for empty input.
    """
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def from_timestamp(seconds: float) -> datetime:
    """Convert a POSIX timestamp (e.g. a file mtime) to an aware UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)
