"""
Time helpers.

The store keeps naive UTC timestamps; everything that compares against
them goes through utcnow() so the comparison never mixes aware and naive
datetimes.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    """ISO-8601 string for a datetime, None passes through."""
    return value.isoformat() if value else None
