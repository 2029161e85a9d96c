"""
Time helpers.

All timestamps are stored as naive UTC datetimes so SQLite and PostgreSQL
compare them identically.
"""
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def truncate_to_minute(value: datetime) -> datetime:
    """Drop seconds and microseconds (name-history dedupe key)."""
    return value.replace(second=0, microsecond=0)
