"""
UTC timestamp utilities for LLM Rank Watcher.

All timestamps are UTC with explicit timezone markers. Stored timestamps use
ISO 8601 with a 'Z' suffix so they sort lexicographically in SQLite.

This module provides:
- utc_now(): Current time as timezone-aware datetime
- utc_timestamp(): ISO 8601 timestamp string with 'Z' suffix
- format_timestamp(): Same format for an arbitrary aware datetime
- new_run_id(): Sortable, collision-resistant analysis run identifier
- start_of_week(): Monday 00:00 UTC of the week containing a datetime

Examples:
    >>> from llm_rank_watcher.utils.time import utc_timestamp, new_run_id
    >>> utc_timestamp()
    '2025-11-02T08:30:45Z'
    >>> new_run_id()
    '2025-11-02T08-30-45Z-3f9c2a1b'
"""

import uuid
from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    """
    Return current time in UTC with timezone info.

    Note:
        NEVER use datetime.now() without a timezone or datetime.utcnow().
        Always use utc_now() so freezegun-based tests stay deterministic.
    """
    return datetime.now(UTC)


def format_timestamp(dt: datetime) -> str:
    """
    Format an aware datetime as YYYY-MM-DDTHH:MM:SSZ.

    Args:
        dt: Timezone-aware datetime

    Returns:
        str: ISO 8601 timestamp in UTC

    Raises:
        ValueError: If dt is naive
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Datetime must be timezone-aware (use timezone.utc). "
            "Got naive datetime. Use utc_now() or ensure dt has tzinfo set."
        )
    return dt.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_timestamp() -> str:
    """
    Return ISO 8601 timestamp string with 'Z' suffix.

    Example:
        >>> timestamp = utc_timestamp()
        >>> timestamp.endswith('Z')
        True
    """
    return format_timestamp(utc_now())


def new_run_id(dt: datetime | None = None) -> str:
    """
    Generate an analysis run identifier.

    Format: YYYY-MM-DDTHH-MM-SSZ-<8 hex chars>. The timestamp prefix keeps ids
    chronologically sortable; the random suffix keeps concurrent runs for
    different items from colliding within the same second.

    Args:
        dt: Optional datetime to embed. If None, uses utc_now().

    Returns:
        str: Run identifier
    """
    if dt is None:
        dt = utc_now()
    if dt.tzinfo is None:
        raise ValueError("Datetime must be timezone-aware (use timezone.utc)")
    return f"{dt.astimezone(UTC).strftime('%Y-%m-%dT%H-%M-%SZ')}-{uuid.uuid4().hex[:8]}"


def start_of_week(dt: datetime) -> datetime:
    """
    Return Monday 00:00:00 UTC of the ISO week containing dt.

    Example:
        >>> start_of_week(datetime(2025, 11, 5, 15, 0, tzinfo=UTC))
        datetime.datetime(2025, 11, 3, 0, 0, tzinfo=datetime.timezone.utc)
    """
    dt = dt.astimezone(UTC)
    monday = dt - timedelta(days=dt.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)
