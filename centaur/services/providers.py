"""
Provider Profile Service

Marketplace identity CRUD and badge eligibility.

Badges are computed from the stats columns on the profile; nothing is
stored. Rates (on_time_rate, completion_rate) are fractions 0..1.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from centaur.core.exceptions import ConflictError, InvalidInputError, ProviderNotFoundError
from centaur.models.provider import ProviderProfile, SupplierTier
from centaur.models.user import User
from centaur.services.race import get_provider_profile
from centaur.services.scheduling import is_valid_timezone
from centaur.utils.logging import get_logger
from centaur.utils.timeutils import days_between, utcnow

logger = get_logger(__name__)

BADGE_THRESHOLDS = {
    "fast_responder": {"max_response_hours": 2, "min_messages": 10},
    "top_rated": {"min_rating": 4.8, "min_reviews": 10},
    "reliable": {"min_on_time_rate": 0.95, "min_orders": 10},
    "rising_star": {"max_days_active": 90, "min_rating": 4.5, "min_orders": 3, "min_completion_rate": 0.9},
}


@dataclass
class BadgeEligibility:
    badge_type: str
    eligible: bool
    progress: int
    description: str


def _pct(value: float, target: float) -> float:
    if target <= 0:
        return 100.0
    return min(100.0, value / target * 100)


def check_fast_responder(profile: ProviderProfile) -> BadgeEligibility:
    rule = BADGE_THRESHOLDS["fast_responder"]
    hours = profile.avg_response_time_hours
    messages = profile.messages_received or 0

    if hours is None:
        return BadgeEligibility(
            "fast_responder", False, 0,
            "Start responding to messages to track your response time",
        )

    speed = 100.0 if hours <= 0 else _pct(rule["max_response_hours"], hours)
    progress = min(speed, _pct(messages, rule["min_messages"]))
    eligible = hours <= rule["max_response_hours"] and messages >= rule["min_messages"]

    if messages < rule["min_messages"]:
        description = f"{messages}/{rule['min_messages']} messages"
    else:
        description = (
            f"Average response time: {hours:.1f} hours "
            f"(need <={rule['max_response_hours']} hours)"
        )
    return BadgeEligibility("fast_responder", eligible, round(progress), description)


def check_top_rated(profile: ProviderProfile) -> BadgeEligibility:
    rule = BADGE_THRESHOLDS["top_rated"]
    rating = profile.rating or 0
    reviews = profile.review_count or 0

    eligible = rating >= rule["min_rating"] and reviews >= rule["min_reviews"]
    progress = min(_pct(rating, rule["min_rating"]), _pct(reviews, rule["min_reviews"]))

    if reviews < rule["min_reviews"]:
        description = f"{reviews}/{rule['min_reviews']} reviews"
    elif rating < rule["min_rating"]:
        description = f"Rating {rating:.1f}/{rule['min_rating']}"
    else:
        description = "Eligible!"
    return BadgeEligibility("top_rated", eligible, round(progress), description)


def check_reliable(profile: ProviderProfile) -> BadgeEligibility:
    rule = BADGE_THRESHOLDS["reliable"]
    on_time = profile.on_time_rate or 0
    orders = profile.completed_orders or 0

    eligible = on_time >= rule["min_on_time_rate"] and orders >= rule["min_orders"]
    progress = min(_pct(on_time, rule["min_on_time_rate"]), _pct(orders, rule["min_orders"]))

    if orders < rule["min_orders"]:
        description = f"{orders}/{rule['min_orders']} completed orders"
    elif on_time < rule["min_on_time_rate"]:
        description = f"On-time rate: {on_time * 100:.0f}% (need {rule['min_on_time_rate'] * 100:.0f}%)"
    else:
        description = "Eligible!"
    return BadgeEligibility("reliable", eligible, round(progress), description)


def check_rising_star(profile: ProviderProfile, now: Optional[datetime] = None) -> BadgeEligibility:
    rule = BADGE_THRESHOLDS["rising_star"]
    days_active = days_between(profile.created_at, now or utcnow())

    if days_active > rule["max_days_active"]:
        return BadgeEligibility(
            "rising_star", False, 0,
            "This badge is for providers in their first 90 days",
        )

    rating = profile.rating or 0
    orders = profile.completed_orders or 0
    completion = profile.completion_rate or 0

    meets_rating = rating >= rule["min_rating"]
    meets_orders = orders >= rule["min_orders"]
    meets_completion = completion >= rule["min_completion_rate"]

    progress = (
        _pct(rating, rule["min_rating"])
        + _pct(orders, rule["min_orders"])
        + _pct(completion, rule["min_completion_rate"])
    ) / 3

    needs = []
    if not meets_orders:
        needs.append(f"{orders}/{rule['min_orders']} orders")
    if not meets_rating and (profile.review_count or 0) > 0:
        needs.append(f"{rating:.1f}/{rule['min_rating']} rating")
    if not meets_completion:
        needs.append(f"{completion * 100:.0f}%/{rule['min_completion_rate'] * 100:.0f}% completion")

    description = f"Needs: {', '.join(needs)}" if needs else "Eligible!"
    eligible = meets_rating and meets_orders and meets_completion
    return BadgeEligibility("rising_star", eligible, round(progress), description)


def evaluate_badges(profile: ProviderProfile, now: Optional[datetime] = None) -> List[BadgeEligibility]:
    return [
        check_fast_responder(profile),
        check_top_rated(profile),
        check_reliable(profile),
        check_rising_star(profile, now),
    ]


def _validate_timezone(name: Optional[str]) -> None:
    if name is not None and not is_valid_timezone(name):
        raise InvalidInputError(f"Unknown time zone: {name}")


def create_profile(db: Session, user: User, data: Dict) -> ProviderProfile:
    if get_provider_profile(db, user) is not None:
        raise ConflictError("You already have a provider profile")

    _validate_timezone(data.get("timezone"))

    profile = ProviderProfile(
        user_id=user.id,
        foundry_id=user.foundry_id,
        display_name=data.get("display_name") or user.full_name or user.email,
        headline=data.get("headline"),
        bio=data.get("bio"),
        timezone=data.get("timezone") or "UTC",
        hourly_rate=data.get("hourly_rate"),
        day_rate=data.get("day_rate"),
        currency=data.get("currency") or "GBP",
        tier=SupplierTier.PENDING.value,
    )
    db.add(profile)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("You already have a provider profile")

    db.refresh(profile)
    logger.info(f"Provider profile created: {profile.id} for user {user.id}")
    return profile


def get_my_profile(db: Session, user: User) -> ProviderProfile:
    profile = get_provider_profile(db, user)
    if profile is None:
        raise ProviderNotFoundError()
    return profile


def get_profile(db: Session, provider_id: str) -> ProviderProfile:
    profile = db.query(ProviderProfile).filter(ProviderProfile.id == provider_id).first()
    if profile is None:
        raise ProviderNotFoundError(provider_id)
    return profile


def update_my_profile(db: Session, user: User, updates: Dict) -> ProviderProfile:
    profile = get_my_profile(db, user)
    _validate_timezone(updates.get("timezone"))

    for field, value in updates.items():
        setattr(profile, field, value)

    db.commit()
    db.refresh(profile)
    logger.info(f"Provider profile updated: {profile.id}")
    return profile


def set_tier(db: Session, admin: User, provider_id: str, tier: str) -> ProviderProfile:
    """Admin tier change, limited to providers whose home foundry is the admin's."""
    profile = db.query(ProviderProfile).filter(
        ProviderProfile.id == provider_id,
        ProviderProfile.foundry_id == admin.foundry_id,
    ).first()
    if profile is None:
        raise ProviderNotFoundError(provider_id)

    previous = profile.tier
    profile.tier = tier
    db.commit()
    db.refresh(profile)

    logger.info(
        f"Provider {profile.id} tier {previous} -> {tier} by {admin.id}",
        extra={"foundry_id": admin.foundry_id, "user_id": admin.id},
    )
    return profile
