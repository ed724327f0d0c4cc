"""Datetime utilities for timezone-aware UTC timestamps.

Usage:
    from src.utils.datetime_utils import utc_now, to_iso, date_stamp

    timestamp = utc_now()
    export_date = to_iso(timestamp)          # "2024-03-01T12:00:00.000Z"
    filename_part = date_stamp(timestamp)    # "2024-03-01"
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime.

    Returns:
        Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string with millisecond precision.

    Naive datetimes are assumed to already be UTC.

    Returns:
        String like "2024-03-01T12:00:00.000Z"
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def date_stamp(value: datetime) -> str:
    """Return the YYYY-MM-DD part used in snapshot filenames."""
    return value.strftime("%Y-%m-%d")
