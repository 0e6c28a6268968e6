"""Clock helpers. Engine components take a clock callable so tests can pin time."""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed hours from start to end (negative if end precedes start)."""
    return (end - start).total_seconds() / 3600


def time_of_day(moment: datetime) -> str:
    """HH:MM string for time-of-day rule windows."""
    return moment.strftime("%H:%M")
