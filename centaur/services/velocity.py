"""
Velocity Limits

Spending limits that grow with account age. A user's tier is derived
from how long their account has existed; each tier has a single
transaction cap plus rolling daily, weekly and monthly caps.

Usage is stored in TransactionLimit rows. A row whose reset_at has
passed reads as zero usage until the next consume rewrites it.

NOTE: amounts are GBP. A limit_amount of 0 means unlimited.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.orm import Session

from centaur.core.exceptions import InvalidInputError, UserNotFoundError
from centaur.models.fraud import TransactionLimit
from centaur.models.user import User
from centaur.utils.logging import get_logger
from centaur.utils.timeutils import days_between, utcnow

logger = get_logger(__name__)

ACCOUNT_TIERS = ("new", "starter", "established", "trusted")
LIMIT_TYPES = ("per_transaction", "daily", "weekly", "monthly")
ROLLING_LIMIT_TYPES = ("daily", "weekly", "monthly")

TIER_LIMITS = {
    "new": {"single": 1000, "daily": 2000, "weekly": 3500, "monthly": 5000},
    "starter": {"single": 5000, "daily": 10000, "weekly": 17500, "monthly": 25000},
    "established": {"single": 10000, "daily": 25000, "weekly": 50000, "monthly": 75000},
    "trusted": {"single": 50000, "daily": 100000, "weekly": 250000, "monthly": 0},
}

# Minimum account age in days
TIER_THRESHOLDS = {
    "new": 0,
    "starter": 7,
    "established": 30,
    "trusted": 90,
}

TIER_NAMES = {
    "new": "New Account",
    "starter": "Starter",
    "established": "Established",
    "trusted": "Trusted",
}


@dataclass
class LimitInfo:
    limit: float
    used: float = 0
    remaining: Optional[float] = None  # None = unlimited
    resets_at: Optional[datetime] = None

    def allows(self, amount: float) -> bool:
        return self.remaining is None or amount <= self.remaining


@dataclass
class UserLimits:
    tier: str
    account_age_days: int
    single: LimitInfo
    daily: LimitInfo
    weekly: LimitInfo
    monthly: LimitInfo


@dataclass
class LimitCheck:
    allowed: bool
    reason: Optional[str] = None
    limits: Optional[UserLimits] = field(default=None, repr=False)


def format_amount(amount: float) -> str:
    """£1,500 or £1,500.5 style, no trailing zero pence."""
    text = f"{amount:,.2f}".rstrip("0").rstrip(".")
    return f"£{text}"


def tier_from_account_age(days: int) -> str:
    if days >= TIER_THRESHOLDS["trusted"]:
        return "trusted"
    if days >= TIER_THRESHOLDS["established"]:
        return "established"
    if days >= TIER_THRESHOLDS["starter"]:
        return "starter"
    return "new"


def calculate_reset_time(limit_type: str, now: Optional[datetime] = None) -> datetime:
    """
    daily: next midnight. weekly: next Monday midnight (never today).
    monthly: first day of next month.
    """
    now = now or utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if limit_type == "daily":
        return midnight + timedelta(days=1)
    if limit_type == "weekly":
        days_until_monday = (7 - now.weekday()) % 7 or 7
        return midnight + timedelta(days=days_until_monday)
    if limit_type == "monthly":
        if now.month == 12:
            return midnight.replace(year=now.year + 1, month=1, day=1)
        return midnight.replace(month=now.month + 1, day=1)
    raise InvalidInputError(f"Invalid limit type: {limit_type}")


def _build_limit_info(
    limit_type: str,
    default_limit: float,
    row: Optional[TransactionLimit],
    now: datetime,
) -> LimitInfo:
    if row is None:
        return LimitInfo(
            limit=default_limit,
            used=0,
            remaining=default_limit if default_limit > 0 else None,
        )

    expired = row.reset_at is not None and row.reset_at <= now
    limit = row.limit_amount or default_limit
    used = 0 if expired else (row.current_amount or 0)
    remaining = max(0, limit - used) if limit > 0 else None

    return LimitInfo(
        limit=limit,
        used=used,
        remaining=remaining,
        resets_at=calculate_reset_time(limit_type, now) if expired else row.reset_at,
    )


def _load_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise UserNotFoundError(user_id)
    return user


def _limit_rows(db: Session, user_id: str) -> Dict[str, TransactionLimit]:
    rows = db.query(TransactionLimit).filter(TransactionLimit.user_id == user_id).all()
    return {row.limit_type: row for row in rows}


def account_age_days(user: User, now: Optional[datetime] = None) -> int:
    return days_between(user.created_at, now or utcnow())


def get_transaction_limits(db: Session, user_id: str, now: Optional[datetime] = None) -> UserLimits:
    """Current limits and usage for a user."""
    now = now or utcnow()
    user = _load_user(db, user_id)
    age = account_age_days(user, now)
    tier = tier_from_account_age(age)
    defaults = TIER_LIMITS[tier]
    rows = _limit_rows(db, user_id)

    # An admin-set per_transaction row overrides the tier's single cap
    single_row = rows.get("per_transaction")
    single_limit = (single_row.limit_amount if single_row else 0) or defaults["single"]

    return UserLimits(
        tier=tier,
        account_age_days=age,
        single=LimitInfo(limit=single_limit, used=0, remaining=single_limit),
        daily=_build_limit_info("daily", defaults["daily"], rows.get("daily"), now),
        weekly=_build_limit_info("weekly", defaults["weekly"], rows.get("weekly"), now),
        monthly=_build_limit_info("monthly", defaults["monthly"], rows.get("monthly"), now),
    )


def check_limit_availability(
    db: Session,
    user_id: str,
    amount: float,
    now: Optional[datetime] = None,
) -> LimitCheck:
    """
    Check ``amount`` against single, daily, weekly and monthly limits,
    in that order. The first limit that refuses names itself in the reason.
    """
    limits = get_transaction_limits(db, user_id, now)

    if amount > limits.single.limit:
        return LimitCheck(
            allowed=False,
            reason=(
                f"Amount {format_amount(amount)} exceeds single transaction limit "
                f"of {format_amount(limits.single.limit)}"
            ),
            limits=limits,
        )

    for name in ROLLING_LIMIT_TYPES:
        info = getattr(limits, name)
        if not info.allows(amount):
            return LimitCheck(
                allowed=False,
                reason=(
                    f"Amount {format_amount(amount)} exceeds {name} remaining limit "
                    f"of {format_amount(info.remaining)}"
                ),
                limits=limits,
            )

    return LimitCheck(allowed=True, limits=limits)


def consume_limit(db: Session, user_id: str, amount: float, now: Optional[datetime] = None) -> None:
    """
    Record ``amount`` against the rolling limits after a successful
    transaction. Expired windows restart from ``amount``.

    The caller commits.
    """
    now = now or utcnow()
    user = _load_user(db, user_id)
    defaults = TIER_LIMITS[tier_from_account_age(account_age_days(user, now))]
    rows = _limit_rows(db, user_id)

    for limit_type in ROLLING_LIMIT_TYPES:
        row = rows.get(limit_type)
        if row is None:
            db.add(TransactionLimit(
                user_id=user_id,
                limit_type=limit_type,
                limit_amount=defaults[limit_type],
                current_amount=amount,
                reset_at=calculate_reset_time(limit_type, now),
            ))
        elif row.reset_at is not None and row.reset_at <= now:
            row.current_amount = amount
            row.reset_at = calculate_reset_time(limit_type, now)
        else:
            row.current_amount = (row.current_amount or 0) + amount
            if row.reset_at is None:
                row.reset_at = calculate_reset_time(limit_type, now)

    db.flush()


def reset_limits(db: Session, user_id: str, limit_type: Optional[str] = None) -> int:
    """Zero a user's usage. Returns the number of rows reset."""
    if limit_type is not None and limit_type not in LIMIT_TYPES:
        raise InvalidInputError(f"Invalid limit type: {limit_type}")

    query = db.query(TransactionLimit).filter(TransactionLimit.user_id == user_id)
    if limit_type:
        query = query.filter(TransactionLimit.limit_type == limit_type)

    count = 0
    for row in query.all():
        row.current_amount = 0
        row.reset_at = None
        count += 1

    db.commit()
    logger.info(f"Reset {count} limits for user {user_id}", extra={"user_id": user_id})
    return count


def _upsert_limit_amounts(db: Session, user_id: str, amounts: Dict[str, float]) -> None:
    rows = _limit_rows(db, user_id)
    now = utcnow()

    for limit_type, amount in amounts.items():
        row = rows.get(limit_type)
        if row is not None:
            row.limit_amount = amount
            continue
        db.add(TransactionLimit(
            user_id=user_id,
            limit_type=limit_type,
            limit_amount=amount,
            current_amount=0,
            reset_at=None if limit_type == "per_transaction" else calculate_reset_time(limit_type, now),
        ))

    db.commit()


def increase_limits(db: Session, user_id: str, tier: str) -> None:
    """Manual upgrade: overwrite every limit amount with ``tier``'s values."""
    if tier not in TIER_LIMITS:
        raise InvalidInputError(f"Invalid tier: {tier}")
    _load_user(db, user_id)

    tier_limits = TIER_LIMITS[tier]
    _upsert_limit_amounts(db, user_id, {
        "per_transaction": tier_limits["single"],
        "daily": tier_limits["daily"],
        "weekly": tier_limits["weekly"],
        "monthly": tier_limits["monthly"],
    })
    logger.info(f"Limits for user {user_id} raised to tier {tier}", extra={"user_id": user_id})


def set_limit_amounts(db: Session, user_id: str, amounts: Dict[str, float]) -> None:
    """Admin override for individual limit amounts."""
    for limit_type, amount in amounts.items():
        if limit_type not in LIMIT_TYPES:
            raise InvalidInputError(f"Invalid limit type: {limit_type}")
        if amount < 0:
            raise InvalidInputError("Limit amounts cannot be negative")
    _load_user(db, user_id)
    _upsert_limit_amounts(db, user_id, amounts)


def next_tier(tier: str) -> Optional[str]:
    index = ACCOUNT_TIERS.index(tier)
    if index + 1 < len(ACCOUNT_TIERS):
        return ACCOUNT_TIERS[index + 1]
    return None


def get_limits_summary(db: Session, user_id: str) -> Dict:
    limits = get_transaction_limits(db, user_id)
    upcoming = next_tier(limits.tier)
    days_until = None
    if upcoming is not None:
        days_until = TIER_THRESHOLDS[upcoming] - limits.account_age_days

    return {
        "tier": limits.tier,
        "tier_name": TIER_NAMES[limits.tier],
        "next_tier": upcoming,
        "days_until_next_tier": days_until,
        "limits": limits,
    }
