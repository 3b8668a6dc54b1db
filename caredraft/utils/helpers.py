"""Shared utility functions for blueprints and services.

parse_datetime:  ISO-8601 string → timezone-aware UTC datetime
as_utc:          normalise naive datetimes read back from SQLite
"""
from datetime import datetime, timezone


def as_utc(value):
    """Return ``value`` as a timezone-aware UTC datetime.

    SQLite drops tzinfo on ``DateTime(timezone=True)`` columns, so values
    read back from it are naive. They were written as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value):
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted).

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except (ValueError, TypeError):
        return None
