"""
RFQ Broadcast Scheduling

Pure time calculations for the RFQ race: when the race opens, and when
each provider is shown the RFQ.

FAIRNESS RULES:
- Standard RFQs reach every provider at 09:00 in their own time zone,
  skipping weekends, so nobody wins because they were awake first.
- Urgent RFQs reach everyone when the race opens.
- Providers below verified_partner are shown the RFQ TIER_DELAY later.

All inputs and outputs are naive UTC datetimes.
"""
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from centaur.models.provider import SupplierTier
from centaur.models.rfq import Urgency
from centaur.utils.timeutils import to_naive_utc, utcnow

PRIORITY_HOLD_DURATION = timedelta(hours=2)
TIER_DELAY = timedelta(seconds=30)
MIN_RACE_DELAY = timedelta(minutes=5)
DEFAULT_BROADCAST_HOUR = 9
BUSINESS_HOURS_START = 9
BUSINESS_HOURS_END = 18


@dataclass
class ProviderSlot:
    """A provider as seen by the scheduler."""
    provider_id: str
    timezone: str
    tier: str


@dataclass
class BroadcastSchedule:
    provider_id: str
    timezone: str
    scheduled_at: datetime
    local_time: str
    tier: str
    delay_seconds: int


def _zone(name: Optional[str]) -> Optional[ZoneInfo]:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def is_valid_timezone(name: Optional[str]) -> bool:
    return _zone(name) is not None


def compute_race_opens_at(urgency: str, now: Optional[datetime] = None) -> datetime:
    """
    Urgent RFQs open after the minimum race delay; standard RFQs open
    at 09:00 UTC the next day.
    """
    now = now or utcnow()
    if urgency == Urgency.URGENT.value:
        return now + MIN_RACE_DELAY
    tomorrow = now + timedelta(days=1)
    return tomorrow.replace(hour=DEFAULT_BROADCAST_HOUR, minute=0, second=0, microsecond=0)


def broadcast_window(timezone_name: str, base_time: datetime) -> datetime:
    """
    Next 09:00 local time in ``timezone_name`` at or after ``base_time``.

    If it is already 09:00 or later locally, the window moves to the next
    day. Saturdays and Sundays roll forward to Monday. Unknown time zones
    fall back to 09:00 UTC the following day.
    """
    zone = _zone(timezone_name)
    if zone is None:
        fallback = base_time + timedelta(days=1)
        return fallback.replace(hour=DEFAULT_BROADCAST_HOUR, minute=0, second=0, microsecond=0)

    local = base_time.replace(tzinfo=timezone.utc).astimezone(zone)
    target_day = local.date()
    if local.hour >= DEFAULT_BROADCAST_HOUR:
        target_day += timedelta(days=1)

    weekday = target_day.weekday()
    if weekday == 5:
        target_day += timedelta(days=2)
    elif weekday == 6:
        target_day += timedelta(days=1)

    local_target = datetime.combine(target_day, time(DEFAULT_BROADCAST_HOUR), tzinfo=zone)
    return to_naive_utc(local_target)


def format_local_time(moment: datetime, timezone_name: str) -> str:
    zone = _zone(timezone_name)
    if zone is None:
        return moment.isoformat()
    local = moment.replace(tzinfo=timezone.utc).astimezone(zone)
    return local.strftime("%a %d %b %H:%M")


def calculate_broadcast_schedule(
    race_opens_at: datetime,
    urgency: str,
    providers: Iterable[ProviderSlot],
) -> List[BroadcastSchedule]:
    """One schedule entry per provider, earliest first."""
    schedules = []

    for provider in providers:
        if urgency == Urgency.URGENT.value:
            scheduled_at = race_opens_at
        else:
            scheduled_at = broadcast_window(provider.timezone, race_opens_at)

        delay_seconds = 0
        if provider.tier != SupplierTier.VERIFIED_PARTNER.value:
            delay_seconds = int(TIER_DELAY.total_seconds())
            scheduled_at = scheduled_at + TIER_DELAY

        schedules.append(BroadcastSchedule(
            provider_id=provider.provider_id,
            timezone=provider.timezone,
            scheduled_at=scheduled_at,
            local_time=format_local_time(scheduled_at, provider.timezone),
            tier=provider.tier,
            delay_seconds=delay_seconds,
        ))

    schedules.sort(key=lambda s: s.scheduled_at)
    return schedules


def is_race_open(race_opens_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """No scheduled time means the race is open."""
    if race_opens_at is None:
        return True
    return race_opens_at <= (now or utcnow())


def time_until_race_opens(race_opens_at: Optional[datetime], now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    if race_opens_at is None or race_opens_at <= now:
        return {"is_open": True, "time_until_open_ms": None, "formatted_time": None}

    diff_ms = int((race_opens_at - now).total_seconds() * 1000)
    return {
        "is_open": False,
        "time_until_open_ms": diff_ms,
        "formatted_time": format_duration(diff_ms),
    }


def format_duration(ms: int) -> str:
    """Human readable duration: "2d 3h", "4h 5m", "6m 7s" or "8s"."""
    if ms < 0:
        return "0s"

    seconds = ms // 1000
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def is_within_business_hours(moment: datetime, timezone_name: str) -> bool:
    """09:00 to 18:00 local. Unknown zones count as business hours."""
    zone = _zone(timezone_name)
    if zone is None:
        return True
    hour = moment.replace(tzinfo=timezone.utc).astimezone(zone).hour
    return BUSINESS_HOURS_START <= hour < BUSINESS_HOURS_END
