"""
Timesheet Endpoints

The provider logs and submits hours; the buyer approves or disputes;
a foundry admin records payment once the processor confirms it.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from centaur.database import get_db
from centaur.models.user import User
from centaur.schemas.retainer import (
    HoursLog,
    TimesheetDispute,
    TimesheetPaid,
    TimesheetResponse,
    WeeklyBillingResponse,
)
from centaur.api.deps import get_current_user, require_admin
from centaur.services import billing, timesheets as timesheet_service

router = APIRouter(prefix="/timesheets", tags=["timesheets"])


@router.get("/{timesheet_id}", response_model=TimesheetResponse)
async def get_timesheet(
    timesheet_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return timesheet_service.get_timesheet(db, current_user, timesheet_id)


@router.post("/{timesheet_id}/log", response_model=TimesheetResponse)
async def log_hours(
    timesheet_id: str,
    entry: HoursLog,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Adds to the week's total; capped at 150% of the weekly commitment."""
    return timesheet_service.log_hours(db, current_user, timesheet_id, entry.hours, entry.description)


@router.put("/{timesheet_id}/hours", response_model=TimesheetResponse)
async def set_hours(
    timesheet_id: str,
    entry: HoursLog,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return timesheet_service.update_hours(db, current_user, timesheet_id, entry.hours, entry.description)


@router.post("/{timesheet_id}/submit", response_model=TimesheetResponse)
async def submit_timesheet(
    timesheet_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return timesheet_service.submit_timesheet(db, current_user, timesheet_id)


@router.post("/{timesheet_id}/approve", response_model=TimesheetResponse)
async def approve_timesheet(
    timesheet_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return timesheet_service.approve_timesheet(db, current_user, timesheet_id)


@router.post("/{timesheet_id}/dispute", response_model=TimesheetResponse)
async def dispute_timesheet(
    timesheet_id: str,
    dispute: TimesheetDispute,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return timesheet_service.dispute_timesheet(db, current_user, timesheet_id, dispute.reason)


@router.post("/{timesheet_id}/paid", response_model=TimesheetResponse)
async def mark_paid(
    timesheet_id: str,
    payment: TimesheetPaid,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return timesheet_service.mark_paid(
        db, current_user.foundry_id, timesheet_id, payment.payment_intent_id
    )


@router.get("/{timesheet_id}/billing", response_model=WeeklyBillingResponse)
async def weekly_billing(
    timesheet_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return billing.weekly_billing(db, current_user, timesheet_id)
