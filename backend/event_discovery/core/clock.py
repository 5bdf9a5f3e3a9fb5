"""
Time helpers.

Timestamps are stored as naive UTC datetimes. Components that need "now"
accept a ``Clock`` so tests can drive time explicitly.
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(moment: datetime) -> datetime:
    """Midnight (UTC) of the day containing ``moment``."""
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)
