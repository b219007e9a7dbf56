"""
Retainer Service

Weekly-hours commitments between a buyer and a provider.

PRICING: larger commitments earn a discount on the provider's base
hourly rate. The discounted rate is what timesheets are billed at.

    10h/week -> 0%
    20h/week -> 5%
    40h/week -> 10%

LIFECYCLE:
    pending --accept--> active --pause--> paused --resume--> active
    pending --decline--> cancelled
    active|paused --cancel--> cancelled (with a 14 day notice period)
"""
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from centaur.core.exceptions import (
    BusinessRuleError,
    InvalidInputError,
    ProviderNotFoundError,
    RetainerNotFoundError,
)
from centaur.core.permissions import require_buyer, require_party, require_provider_owner
from centaur.models.provider import ProviderProfile
from centaur.models.retainer import Retainer, RetainerStatus, TimesheetStatus
from centaur.models.user import User
from centaur.services.race import get_provider_profile
from centaur.utils.logging import get_logger
from centaur.utils.timeutils import start_of_week, utcnow

logger = get_logger(__name__)

RETAINER_DISCOUNTS = {
    10: 0.0,
    20: 0.05,
    40: 0.10,
}
WEEKLY_HOURS_OPTIONS = tuple(sorted(RETAINER_DISCOUNTS))
CANCELLATION_NOTICE_DAYS = 14
WEEKS_PER_MONTH = 4.33

EDITABLE_STATUSES = (RetainerStatus.PENDING.value, RetainerStatus.ACTIVE.value)
CANCELLABLE_STATUSES = (RetainerStatus.ACTIVE.value, RetainerStatus.PAUSED.value)
BILLED_TIMESHEET_STATUSES = (TimesheetStatus.APPROVED.value, TimesheetStatus.PAID.value)


@dataclass
class RetainerPricing:
    weekly_hours: int
    base_hourly_rate: float
    discount_percent: float
    discounted_rate: float
    weekly_total: float
    monthly_estimate: float
    currency: str


def discount_for(weekly_hours: int) -> float:
    if weekly_hours not in RETAINER_DISCOUNTS:
        raise InvalidInputError(
            f"Weekly hours must be one of {', '.join(str(h) for h in WEEKLY_HOURS_OPTIONS)}"
        )
    return RETAINER_DISCOUNTS[weekly_hours]


def discounted_rate(weekly_hours: int, base_hourly_rate: float) -> float:
    return base_hourly_rate * (1 - discount_for(weekly_hours))


def calculate_pricing(weekly_hours: int, base_hourly_rate: float, currency: str = "GBP") -> RetainerPricing:
    if base_hourly_rate <= 0:
        raise InvalidInputError("Hourly rate must be positive")

    rate = discounted_rate(weekly_hours, base_hourly_rate)
    weekly_total = rate * weekly_hours
    return RetainerPricing(
        weekly_hours=weekly_hours,
        base_hourly_rate=base_hourly_rate,
        discount_percent=round(discount_for(weekly_hours) * 100, 2),
        discounted_rate=rate,
        weekly_total=weekly_total,
        monthly_estimate=weekly_total * WEEKS_PER_MONTH,
        currency=currency,
    )


def provider_user_id(retainer: Retainer) -> Optional[str]:
    return retainer.provider.user_id if retainer.provider else None


def get_retainer(db: Session, user: User, retainer_id: str) -> Retainer:
    """
    Load a retainer the user is party to.

    Buyers see retainers in their foundry; providers see retainers
    against their profile from any foundry.
    """
    retainer = db.query(Retainer).filter(Retainer.id == retainer_id).first()
    if not retainer:
        raise RetainerNotFoundError(retainer_id)

    if retainer.buyer_id == user.id and retainer.foundry_id == user.foundry_id:
        return retainer
    if provider_user_id(retainer) == user.id:
        return retainer

    raise RetainerNotFoundError(retainer_id)


def create_retainer(db: Session, buyer: User, data: Dict) -> Retainer:
    provider = db.query(ProviderProfile).filter(
        ProviderProfile.id == data["provider_id"]
    ).first()
    if not provider:
        raise ProviderNotFoundError(data["provider_id"])
    if provider.user_id == buyer.id:
        raise BusinessRuleError("You cannot create a retainer with yourself")
    if not provider.can_respond:
        raise BusinessRuleError("Provider is not accepting new work")

    base_rate = data.get("hourly_rate") or provider.hourly_rate
    if not base_rate or base_rate <= 0:
        raise InvalidInputError("Hourly rate must be positive")

    weekly_hours = data["weekly_hours"]
    retainer = Retainer(
        foundry_id=buyer.foundry_id,
        buyer_id=buyer.id,
        provider_id=provider.id,
        title=data.get("title"),
        description=data.get("description"),
        weekly_hours=weekly_hours,
        base_hourly_rate=base_rate,
        hourly_rate=discounted_rate(weekly_hours, base_rate),
        currency=data.get("currency") or provider.currency or "GBP",
        status=RetainerStatus.PENDING.value,
    )
    db.add(retainer)
    db.commit()
    db.refresh(retainer)

    logger.info(
        f"Retainer created: {retainer.id} ({weekly_hours}h/wk) by {buyer.id}",
        extra={"foundry_id": buyer.foundry_id},
    )
    return retainer


def update_retainer(db: Session, user: User, retainer_id: str, updates: Dict) -> Retainer:
    """
    Buyer edits terms while pending or active.

    A weekly_hours change re-applies the discount to the supplied base
    rate, or to the current base rate.
    """
    retainer = get_retainer(db, user, retainer_id)
    require_buyer(user, retainer.buyer_id, "update this retainer")

    if retainer.status not in EDITABLE_STATUSES:
        raise BusinessRuleError("Cannot update a cancelled or paused retainer")

    base_rate = updates.pop("hourly_rate", None)
    if base_rate is not None and base_rate <= 0:
        raise InvalidInputError("Hourly rate must be positive")

    weekly_hours = updates.pop("weekly_hours", None)
    if weekly_hours is not None:
        retainer.weekly_hours = weekly_hours
    if base_rate is not None:
        retainer.base_hourly_rate = base_rate
    if weekly_hours is not None or base_rate is not None:
        retainer.hourly_rate = discounted_rate(retainer.weekly_hours, retainer.base_hourly_rate)

    for field, value in updates.items():
        setattr(retainer, field, value)

    db.commit()
    db.refresh(retainer)
    logger.info(f"Retainer updated: {retainer.id} by {user.id}")
    return retainer


def _transition(db: Session, retainer: Retainer, expected: str, target: str, error: str, **stamps) -> Retainer:
    if retainer.status != expected:
        raise BusinessRuleError(error)
    retainer.status = target
    for field, value in stamps.items():
        setattr(retainer, field, value)
    db.commit()
    db.refresh(retainer)
    logger.info(f"Retainer {retainer.id}: {expected} -> {target}")
    return retainer


def accept_retainer(db: Session, user: User, retainer_id: str) -> Retainer:
    retainer = get_retainer(db, user, retainer_id)
    require_provider_owner(user, provider_user_id(retainer), "accept this retainer")
    return _transition(
        db, retainer,
        RetainerStatus.PENDING.value, RetainerStatus.ACTIVE.value,
        "Only pending retainers can be activated",
        started_at=utcnow(),
    )


def decline_retainer(db: Session, user: User, retainer_id: str, reason: Optional[str] = None) -> Retainer:
    retainer = get_retainer(db, user, retainer_id)
    require_provider_owner(user, provider_user_id(retainer), "decline this retainer")
    return _transition(
        db, retainer,
        RetainerStatus.PENDING.value, RetainerStatus.CANCELLED.value,
        "Only pending retainers can be declined",
        cancelled_at=utcnow(),
        cancellation_reason=reason,
    )


def pause_retainer(db: Session, user: User, retainer_id: str) -> Retainer:
    retainer = get_retainer(db, user, retainer_id)
    require_party(user, retainer.buyer_id, provider_user_id(retainer))
    return _transition(
        db, retainer,
        RetainerStatus.ACTIVE.value, RetainerStatus.PAUSED.value,
        "Only active retainers can be paused",
        paused_at=utcnow(),
    )


def resume_retainer(db: Session, user: User, retainer_id: str) -> Retainer:
    retainer = get_retainer(db, user, retainer_id)
    require_party(user, retainer.buyer_id, provider_user_id(retainer))
    return _transition(
        db, retainer,
        RetainerStatus.PAUSED.value, RetainerStatus.ACTIVE.value,
        "Only paused retainers can be resumed",
        paused_at=None,
    )


def cancel_retainer(
    db: Session,
    user: User,
    retainer_id: str,
    effective_date: Optional[datetime] = None,
    reason: Optional[str] = None,
) -> Dict:
    """
    Cancel with notice. The effective date is the later of the requested
    date and now + 14 days.

    Returns the cancellation details including the amount still owed for
    the notice period.
    """
    retainer = get_retainer(db, user, retainer_id)
    require_party(user, retainer.buyer_id, provider_user_id(retainer))

    if retainer.status not in CANCELLABLE_STATUSES:
        raise BusinessRuleError("Retainer is already cancelled or not yet active")

    now = utcnow()
    earliest = now + timedelta(days=CANCELLATION_NOTICE_DAYS)
    effective = effective_date if effective_date and effective_date > earliest else earliest

    weeks_remaining = math.floor((effective - now).days / 7)
    pending_amount = weeks_remaining * retainer.weekly_hours * retainer.hourly_rate

    retainer.status = RetainerStatus.CANCELLED.value
    retainer.cancelled_at = now
    retainer.cancellation_effective = effective
    retainer.cancellation_reason = reason
    db.commit()
    db.refresh(retainer)

    logger.info(f"Retainer cancelled: {retainer.id} by {user.id}, effective {effective.isoformat()}")

    return {
        "retainer_id": retainer.id,
        "requested_at": now,
        "effective_date": effective,
        "notice_period_days": CANCELLATION_NOTICE_DAYS,
        "remaining_timesheets": weeks_remaining,
        "pending_amount": round(pending_amount, 2),
        "currency": retainer.currency,
    }


def list_retainers(
    db: Session,
    user: User,
    role: Optional[str] = None,
    statuses: Optional[List[str]] = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[Retainer], int]:
    """
    Retainers where the user is buyer, provider, or either (role=None).
    """
    provider = get_provider_profile(db, user)
    query = db.query(Retainer)

    if role == "buyer":
        query = query.filter(Retainer.buyer_id == user.id)
    elif role == "provider":
        if provider is None:
            return [], 0
        query = query.filter(Retainer.provider_id == provider.id)
    elif provider is not None:
        query = query.filter(or_(Retainer.buyer_id == user.id, Retainer.provider_id == provider.id))
    else:
        query = query.filter(Retainer.buyer_id == user.id)

    if statuses:
        query = query.filter(Retainer.status.in_(statuses))

    total = query.count()
    retainers = query.order_by(Retainer.created_at.desc()).offset(offset).limit(limit).all()
    return retainers, total


def retainer_stats(db: Session, user: User, retainer_id: str, today: Optional[date] = None) -> Dict:
    retainer = get_retainer(db, user, retainer_id)
    now = utcnow()
    today = today or now.date()

    timesheets = list(retainer.timesheets)
    this_week = start_of_week(today)
    month_start = today.replace(day=1)

    hours_this_week = sum(t.hours_logged or 0 for t in timesheets if t.week_start == this_week)
    hours_this_month = sum(t.hours_logged or 0 for t in timesheets if t.week_start >= month_start)

    billed = [t for t in timesheets if t.status in BILLED_TIMESHEET_STATUSES]
    total_amount = sum((t.hours_logged or 0) * retainer.hourly_rate for t in billed)

    submitted = [t for t in timesheets if t.status != TimesheetStatus.DRAFT.value]
    approval_rate = len(billed) / len(submitted) * 100 if submitted else 100.0

    weeks_active = 0
    if retainer.started_at:
        weeks_active = (now - retainer.started_at).days // 7 + 1

    total_hours = sum(t.hours_logged or 0 for t in timesheets)
    average = total_hours / weeks_active if weeks_active > 0 else 0.0

    return {
        "total_hours_this_week": hours_this_week,
        "total_hours_this_month": hours_this_month,
        "weekly_commitment": retainer.weekly_hours,
        "hours_remaining": max(0, retainer.weekly_hours - hours_this_week),
        "total_amount": round(total_amount, 2),
        "weeks_active": weeks_active,
        "approval_rate": round(approval_rate, 2),
        "average_hours_per_week": round(average, 2),
        "currency": retainer.currency,
    }

