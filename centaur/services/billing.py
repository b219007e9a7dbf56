"""
Weekly Billing

Amounts for a retainer week. Charging happens at the payment processor;
this module only prices the week and lists what is owed or paid.

    subtotal = hours x discounted hourly rate
    fee      = 8% of subtotal (includes escrow protection)
    VAT      = 20% of (subtotal + fee)
    total    = subtotal + fee + VAT

TRADEOFF: amounts stay as floats and are rounded to pence only for
display and for the minor-unit payment amount.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from centaur.core.exceptions import TimesheetNotFoundError
from centaur.models.retainer import Retainer, TimesheetEntry, TimesheetStatus
from centaur.models.user import User
from centaur.services.retainers import get_retainer
from centaur.services.timesheets import get_timesheet
from centaur.utils.timeutils import week_end

PLATFORM_FEE_PERCENT = 8
VAT_RATE = 0.20


@dataclass
class BillingLineItem:
    label: str
    amount: float
    type: str  # hours, fee, tax, total
    description: Optional[str] = None


@dataclass
class WeeklyBilling:
    timesheet_id: str
    retainer_id: str
    week_start: date
    week_end: date
    hours_logged: float
    hours_committed: int
    hourly_rate: float
    subtotal: float
    platform_fee: float
    platform_fee_percent: int
    vat_amount: float
    vat_rate: float
    total: float
    amount_minor_units: int
    currency: str
    status: str
    items: List[BillingLineItem] = field(default_factory=list)


def price_week(hours: float, hourly_rate: float) -> Dict[str, float]:
    """Unrounded subtotal, fee, VAT and total for a week."""
    subtotal = hours * hourly_rate
    platform_fee = subtotal * PLATFORM_FEE_PERCENT / 100
    vat_amount = (subtotal + platform_fee) * VAT_RATE
    return {
        "subtotal": subtotal,
        "platform_fee": platform_fee,
        "vat_amount": vat_amount,
        "total": subtotal + platform_fee + vat_amount,
    }


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def _pence(amount: float) -> float:
    return round(amount, 2)


def build_weekly_billing(timesheet: TimesheetEntry, retainer: Retainer) -> WeeklyBilling:
    hours = timesheet.hours_logged or 0
    rate = retainer.hourly_rate
    amounts = price_week(hours, rate)

    items = [
        BillingLineItem(
            label=f"{hours:g} hours @ {retainer.currency} {rate:.2f}/hour",
            amount=_pence(amounts["subtotal"]),
            type="hours",
        ),
        BillingLineItem(
            label=f"Platform fee ({PLATFORM_FEE_PERCENT}%)",
            amount=_pence(amounts["platform_fee"]),
            type="fee",
            description="Includes escrow protection",
        ),
        BillingLineItem(
            label=f"VAT ({VAT_RATE * 100:g}%)",
            amount=_pence(amounts["vat_amount"]),
            type="tax",
        ),
        BillingLineItem(label="Total", amount=_pence(amounts["total"]), type="total"),
    ]

    return WeeklyBilling(
        timesheet_id=timesheet.id,
        retainer_id=retainer.id,
        week_start=timesheet.week_start,
        week_end=week_end(timesheet.week_start),
        hours_logged=hours,
        hours_committed=retainer.weekly_hours,
        hourly_rate=rate,
        subtotal=_pence(amounts["subtotal"]),
        platform_fee=_pence(amounts["platform_fee"]),
        platform_fee_percent=PLATFORM_FEE_PERCENT,
        vat_amount=_pence(amounts["vat_amount"]),
        vat_rate=VAT_RATE,
        total=_pence(amounts["total"]),
        amount_minor_units=to_minor_units(amounts["total"]),
        currency=retainer.currency,
        status=timesheet.status,
        items=items,
    )


def weekly_billing(db: Session, user: User, timesheet_id: str) -> WeeklyBilling:
    timesheet = get_timesheet(db, user, timesheet_id)
    return build_weekly_billing(timesheet, timesheet.retainer)


def weekly_invoice(db: Session, user: User, retainer_id: str, week_start: date) -> WeeklyBilling:
    retainer = get_retainer(db, user, retainer_id)
    timesheet = db.query(TimesheetEntry).filter(
        TimesheetEntry.retainer_id == retainer.id,
        TimesheetEntry.week_start == week_start,
    ).first()
    if not timesheet:
        raise TimesheetNotFoundError(f"{retainer_id} week {week_start.isoformat()}")
    return build_weekly_billing(timesheet, retainer)


def _billings_with_status(db: Session, user: User, retainer_id: str, status: str) -> List[WeeklyBilling]:
    retainer = get_retainer(db, user, retainer_id)
    timesheets = db.query(TimesheetEntry).filter(
        TimesheetEntry.retainer_id == retainer.id,
        TimesheetEntry.status == status,
    ).order_by(TimesheetEntry.week_start.desc()).all()
    return [build_weekly_billing(t, retainer) for t in timesheets]


def pending_billing(db: Session, user: User, retainer_id: str) -> List[WeeklyBilling]:
    """Approved weeks not yet paid."""
    return _billings_with_status(db, user, retainer_id, TimesheetStatus.APPROVED.value)


def billing_history(db: Session, user: User, retainer_id: str) -> List[WeeklyBilling]:
    return _billings_with_status(db, user, retainer_id, TimesheetStatus.PAID.value)
