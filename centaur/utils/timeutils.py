"""
Time helpers.

All persisted timestamps are naive UTC, matching datetime.utcnow()
defaults on the models. Week boundaries follow the ISO convention of
Monday as the first day.
"""
from datetime import date, datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC. Naive values are assumed UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def start_of_week(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def week_end(week_start: date) -> date:
    """Friday of a billing week (Monday + 4 days)."""
    return week_start + timedelta(days=4)


def is_monday(day: date) -> bool:
    return day.weekday() == 0


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days elapsed between two timestamps."""
    return int((later - earlier).total_seconds() // 86400)
