"""
Timesheet Service

One timesheet per retainer per week. The provider logs hours and
submits; the buyer approves or disputes; a foundry admin marks an
approved week paid once the payment processor confirms.

HOURS CAP: a week may log up to 150% of the committed weekly hours.
Overtime beyond that needs a new retainer, not a bigger timesheet.
"""
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from centaur.core.exceptions import BusinessRuleError, ConflictError, InvalidInputError, TimesheetNotFoundError
from centaur.core.permissions import require_buyer, require_provider_owner
from centaur.models.retainer import Retainer, RetainerStatus, TimesheetEntry, TimesheetStatus
from centaur.models.user import User
from centaur.services.retainers import get_retainer, provider_user_id
from centaur.utils.logging import get_logger
from centaur.utils.timeutils import is_monday, start_of_week, utcnow

logger = get_logger(__name__)

MAX_HOURS_FACTOR = 1.5
EDITABLE_STATUSES = (TimesheetStatus.DRAFT.value, TimesheetStatus.SUBMITTED.value)


def max_weekly_hours(retainer: Retainer) -> float:
    return (retainer.weekly_hours or 40) * MAX_HOURS_FACTOR


def _fmt_hours(hours: float) -> str:
    return f"{hours:g}"


def get_timesheet(db: Session, user: User, timesheet_id: str) -> TimesheetEntry:
    """Load a timesheet whose retainer the user is party to."""
    timesheet = db.query(TimesheetEntry).filter(TimesheetEntry.id == timesheet_id).first()
    if not timesheet:
        raise TimesheetNotFoundError(timesheet_id)
    # Raises the retainer's 404 for outsiders
    get_retainer(db, user, timesheet.retainer_id)
    return timesheet


def create_timesheet(
    db: Session,
    user: User,
    retainer_id: str,
    week_start: date,
    description: Optional[str] = None,
) -> TimesheetEntry:
    retainer = get_retainer(db, user, retainer_id)
    require_provider_owner(user, provider_user_id(retainer), "create timesheets")

    if not is_monday(week_start):
        raise InvalidInputError("Week start must be a Monday")
    if retainer.status != RetainerStatus.ACTIVE.value:
        raise BusinessRuleError("Retainer is not active")

    existing = db.query(TimesheetEntry.id).filter(
        TimesheetEntry.retainer_id == retainer.id,
        TimesheetEntry.week_start == week_start,
    ).first()
    if existing:
        raise ConflictError("Timesheet already exists for this week")

    timesheet = TimesheetEntry(
        retainer_id=retainer.id,
        week_start=week_start,
        hours_logged=0,
        description=description,
        status=TimesheetStatus.DRAFT.value,
    )
    db.add(timesheet)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent create for the same week
        db.rollback()
        raise ConflictError("Timesheet already exists for this week")

    db.refresh(timesheet)
    logger.info(f"Timesheet created: {timesheet.id} for week {week_start}")
    return timesheet


def get_or_create_current_timesheet(db: Session, user: User, retainer_id: str) -> TimesheetEntry:
    week = start_of_week(utcnow().date())
    timesheet = db.query(TimesheetEntry).filter(
        TimesheetEntry.retainer_id == retainer_id,
        TimesheetEntry.week_start == week,
    ).first()
    if timesheet:
        get_retainer(db, user, retainer_id)
        return timesheet
    return create_timesheet(db, user, retainer_id, week)


def _load_for_provider(db: Session, user: User, timesheet_id: str, action: str) -> TimesheetEntry:
    timesheet = get_timesheet(db, user, timesheet_id)
    require_provider_owner(user, provider_user_id(timesheet.retainer), action)
    return timesheet


def _load_for_buyer(db: Session, user: User, timesheet_id: str, action: str) -> TimesheetEntry:
    timesheet = get_timesheet(db, user, timesheet_id)
    require_buyer(user, timesheet.retainer.buyer_id, action)
    return timesheet


def log_hours(
    db: Session,
    user: User,
    timesheet_id: str,
    hours: float,
    description: Optional[str] = None,
) -> TimesheetEntry:
    """
    Add hours to the week. Amending a submitted week sends it back to
    draft so the buyer reviews the new total.
    """
    timesheet = _load_for_provider(db, user, timesheet_id, "log hours")

    if timesheet.status not in EDITABLE_STATUSES:
        raise BusinessRuleError("Cannot log hours on this timesheet")
    if hours < 0:
        raise InvalidInputError("Hours must be positive")

    cap = max_weekly_hours(timesheet.retainer)
    new_total = (timesheet.hours_logged or 0) + hours
    if new_total > cap:
        raise BusinessRuleError(f"Total hours would exceed {_fmt_hours(cap)} hours limit")

    timesheet.hours_logged = new_total
    if description is not None:
        timesheet.description = description
    timesheet.status = TimesheetStatus.DRAFT.value
    db.commit()
    db.refresh(timesheet)

    logger.info(f"Logged {hours}h on timesheet {timesheet.id} (total {new_total})")
    return timesheet


def update_hours(
    db: Session,
    user: User,
    timesheet_id: str,
    hours: float,
    description: Optional[str] = None,
) -> TimesheetEntry:
    """Replace the week's total rather than adding to it."""
    timesheet = _load_for_provider(db, user, timesheet_id, "modify this timesheet")

    if timesheet.status not in EDITABLE_STATUSES:
        raise BusinessRuleError("Cannot modify this timesheet")
    if hours < 0:
        raise InvalidInputError("Hours must be positive")

    cap = max_weekly_hours(timesheet.retainer)
    if hours > cap:
        raise BusinessRuleError(f"Hours cannot exceed {_fmt_hours(cap)}")

    timesheet.hours_logged = hours
    if description is not None:
        timesheet.description = description
    timesheet.status = TimesheetStatus.DRAFT.value
    db.commit()
    db.refresh(timesheet)
    return timesheet


def submit_timesheet(db: Session, user: User, timesheet_id: str) -> TimesheetEntry:
    timesheet = _load_for_provider(db, user, timesheet_id, "submit this timesheet")

    if timesheet.status != TimesheetStatus.DRAFT.value:
        raise BusinessRuleError("Timesheet is already submitted")
    if not timesheet.hours_logged or timesheet.hours_logged <= 0:
        raise BusinessRuleError("Cannot submit a timesheet with 0 hours")

    timesheet.status = TimesheetStatus.SUBMITTED.value
    timesheet.submitted_at = utcnow()
    db.commit()
    db.refresh(timesheet)
    logger.info(f"Timesheet submitted: {timesheet.id}")
    return timesheet


def approve_timesheet(db: Session, user: User, timesheet_id: str) -> TimesheetEntry:
    timesheet = _load_for_buyer(db, user, timesheet_id, "approve this timesheet")

    if timesheet.status != TimesheetStatus.SUBMITTED.value:
        raise BusinessRuleError("Timesheet must be submitted before approval")

    timesheet.status = TimesheetStatus.APPROVED.value
    timesheet.approved_at = utcnow()
    db.commit()
    db.refresh(timesheet)
    logger.info(f"Timesheet approved: {timesheet.id} by {user.id}")
    return timesheet


def dispute_timesheet(db: Session, user: User, timesheet_id: str, reason: str) -> TimesheetEntry:
    if not reason or not reason.strip():
        raise InvalidInputError("Dispute reason is required")

    timesheet = _load_for_buyer(db, user, timesheet_id, "dispute this timesheet")
    if timesheet.status != TimesheetStatus.SUBMITTED.value:
        raise BusinessRuleError("Only submitted timesheets can be disputed")

    timesheet.description = f"{timesheet.description or ''}\n\n[DISPUTE: {reason.strip()}]".strip()
    timesheet.status = TimesheetStatus.DISPUTED.value
    timesheet.disputed_at = utcnow()
    db.commit()
    db.refresh(timesheet)
    logger.info(f"Timesheet disputed: {timesheet.id} by {user.id}")
    return timesheet


def mark_paid(db: Session, foundry_id: str, timesheet_id: str, payment_intent_id: str) -> TimesheetEntry:
    """Admin only; the endpoint checks the role. Scoped to the retainer's foundry."""
    timesheet = db.query(TimesheetEntry).join(
        Retainer, Retainer.id == TimesheetEntry.retainer_id
    ).filter(
        TimesheetEntry.id == timesheet_id,
        Retainer.foundry_id == foundry_id,
    ).first()
    if not timesheet:
        raise TimesheetNotFoundError(timesheet_id)
    if timesheet.status != TimesheetStatus.APPROVED.value:
        raise BusinessRuleError("Timesheet must be approved before marking as paid")

    timesheet.status = TimesheetStatus.PAID.value
    timesheet.paid_at = utcnow()
    timesheet.payment_intent_id = payment_intent_id
    db.commit()
    db.refresh(timesheet)
    logger.info(f"Timesheet paid: {timesheet.id} ref {payment_intent_id}")
    return timesheet


def timesheet_history(
    db: Session,
    user: User,
    retainer_id: str,
    statuses: Optional[List[str]] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[TimesheetEntry], int]:
    retainer = get_retainer(db, user, retainer_id)
    query = db.query(TimesheetEntry).filter(TimesheetEntry.retainer_id == retainer.id)

    if statuses:
        query = query.filter(TimesheetEntry.status.in_(statuses))
    if start_date:
        query = query.filter(TimesheetEntry.week_start >= start_date)
    if end_date:
        query = query.filter(TimesheetEntry.week_start <= end_date)

    total = query.count()
    entries = query.order_by(TimesheetEntry.week_start.desc()).offset(offset).limit(limit).all()
    return entries, total
