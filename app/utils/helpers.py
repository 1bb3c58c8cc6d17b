"""
Helper Functions
================

Common utility functions used across the application.
"""

from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Get current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)


def from_epoch_seconds(value: Any) -> Optional[datetime]:
    """
    Convert a provider epoch-seconds timestamp to an aware UTC datetime.

    Accepts ints, floats and numeric strings. Returns None for missing or
    non-numeric values.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite returns them naive)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def split_full_name(full_name: Optional[str]) -> tuple[str, str]:
    """Split "First Last Names" into (first, rest). Empty input gives ("", "")."""
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])
