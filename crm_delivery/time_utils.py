"""
Time helpers for delivery reports.

All timestamps are stored as timezone-aware UTC datetimes. The vendor sends
event times as epoch milliseconds, either as JSON numbers or numeric strings.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


def now_utc() -> datetime:
    """
    Get current time as timezone-aware UTC datetime.

    Returns:
        Current datetime in UTC
    """
    return datetime.now(timezone.utc)


def from_epoch_millis(value) -> Optional[datetime]:
    """
    Convert an epoch-milliseconds value to an aware UTC datetime.

    Args:
        value: int, float, numeric string, or None

    Returns:
        Aware UTC datetime, or None if the value is empty or not numeric

    Examples:
        >>> from_epoch_millis(1526347800000)
        datetime(2018, 5, 15, 1, 30, tzinfo=timezone.utc)
        >>> from_epoch_millis("not-a-number")
        None
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None

    try:
        millis = float(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric epoch value %r", value)
        return None

    try:
        return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        logger.debug("Ignoring out-of-range epoch value %r", value)
        return None


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string for an optional datetime, always expressed in UTC."""
    dt = ensure_utc(dt)
    return dt.isoformat() if dt else None
