"""Utility functions for the admission service."""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def get_utc_date_key(reference: Optional[datetime] = None) -> str:
    """Return the UTC calendar day of ``reference`` as ``YYYY-MM-DD``.

    Naive datetimes are assumed to already be in UTC.

    Examples:
        >>> get_utc_date_key(datetime(2026, 2, 17, 23, 59, tzinfo=timezone.utc))
        '2026-02-17'
        >>> get_utc_date_key(datetime(2026, 2, 17, 20, 0, tzinfo=timezone(timedelta(hours=-5))))
        '2026-02-18'
    """
    ref = reference or utc_now()
    if ref.tzinfo is not None:
        ref = ref.astimezone(timezone.utc)
    return ref.strftime("%Y-%m-%d")


def seconds_until_next_utc_day(reference: Optional[datetime] = None) -> int:
    """Seconds until the next UTC midnight, at least 1."""
    ref = reference or utc_now()
    if ref.tzinfo is None:
        ref = ref.replace(tzinfo=timezone.utc)
    ref = ref.astimezone(timezone.utc)
    midnight = (ref + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return max(1, int((midnight - ref).total_seconds()))
