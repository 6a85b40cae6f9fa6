"""Pure helpers for half-open time intervals and recurring slot expansion."""
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional, Tuple
import enum

from dateutil.relativedelta import relativedelta
import pytz


DEFAULT_HORIZON_DAYS = 90
DEFAULT_MAX_COUNT = 30


class RecurrencePattern(str, enum.Enum):
    NONE = "NONE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


def utc_now() -> datetime:
    """Default clock: the current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """True if [a_start, a_end) and [b_start, b_end) share any instant.

    Touching endpoints do not overlap, so back-to-back slots are allowed.
    """
    return a_start < b_end and a_end > b_start


def _step(pattern: RecurrencePattern) -> relativedelta:
    if pattern == RecurrencePattern.DAILY:
        return relativedelta(days=1)
    if pattern == RecurrencePattern.WEEKLY:
        return relativedelta(weeks=1)
    if pattern == RecurrencePattern.MONTHLY:
        return relativedelta(months=1)
    raise ValueError(f"Cannot expand recurrence pattern {pattern!r}")


class RecurrenceExpansion:
    """Lazy, finite and restartable sequence of (start, end) occurrences.

    Each occurrence advances from the previous one. A monthly step clamps to
    the end of a short month and carries that day forward, so Jan 31 gives
    Feb 28 and then Mar 28.
    """

    def __init__(
        self,
        start_at: datetime,
        end_at: datetime,
        pattern: RecurrencePattern,
        horizon_end: Optional[datetime] = None,
        max_count: int = DEFAULT_MAX_COUNT,
    ):
        self.start_at = start_at
        self.end_at = end_at
        self.pattern = RecurrencePattern(pattern)
        self.horizon_end = horizon_end or start_at + timedelta(days=DEFAULT_HORIZON_DAYS)
        self.max_count = max_count

    def __iter__(self) -> Iterator[Tuple[datetime, datetime]]:
        duration = self.end_at - self.start_at

        if self.pattern == RecurrencePattern.NONE:
            if self.max_count > 0 and self.start_at < self.horizon_end:
                yield self.start_at, self.end_at
            return

        step = _step(self.pattern)
        occurrence_start = self.start_at
        for _ in range(self.max_count):
            if occurrence_start >= self.horizon_end:
                return
            yield occurrence_start, occurrence_start + duration
            occurrence_start = occurrence_start + step

    def __repr__(self):
        return (
            f"<RecurrenceExpansion(pattern={self.pattern.value}, start_at={self.start_at}, "
            f"horizon_end={self.horizon_end}, max_count={self.max_count})>"
        )


def expand_recurrence(
    start_at: datetime,
    end_at: datetime,
    pattern: RecurrencePattern,
    horizon_end: Optional[datetime] = None,
    max_count: int = DEFAULT_MAX_COUNT,
) -> RecurrenceExpansion:
    """Expand a slot template into its occurrences up to ``horizon_end`` (exclusive)"""
    return RecurrenceExpansion(start_at, end_at, pattern, horizon_end, max_count)


def duration_minutes(start_at: datetime, end_at: datetime) -> int:
    return int((end_at - start_at).total_seconds() // 60)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_local(value: datetime, tz_name: str) -> datetime:
    """Render a UTC timestamp in a user's timezone"""
    return ensure_utc(value).astimezone(pytz.timezone(tz_name))
