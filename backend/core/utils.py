"""
Utility functions for the workflow automation engine.

Includes:
- UTC datetime helpers
- Dotted-path lookups into nested payloads
"""

from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    """
    Get the current UTC time as a **naive** datetime.

    Timestamp columns are ``TIMESTAMP WITHOUT TIME ZONE``, so every
    value written or compared against them is naive UTC.

    Returns:
        Current naive UTC datetime
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware or naive datetime to naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


_MISSING = object()


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """
    Resolve a dotted path (``"client.rsvp_status"``) inside nested dicts.

    Args:
        data: Root mapping
        path: Dot-separated key path
        default: Returned when any segment is missing

    Returns:
        The value at the path, or ``default``
    """
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part, _MISSING)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return default
        if current is _MISSING:
            return default
    return current


def has_path(data: Any, path: str) -> bool:
    """Return True when every segment of ``path`` exists in ``data``."""
    return get_path(data, path, _MISSING) is not _MISSING


class SystemClock:
    """Wall clock used by the engine; tests swap in a manual one."""

    def now(self) -> datetime:
        return utc_now()
