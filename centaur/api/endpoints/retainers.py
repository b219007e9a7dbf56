"""
Retainer Endpoints

Weekly-hours commitments. The buyer creates and manages terms; the
provider accepts or declines; either side can pause, resume or cancel
with notice. Retainer-scoped timesheet and billing views live here too.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from centaur.database import get_db
from centaur.models.user import User
from centaur.schemas.retainer import (
    RetainerCancelRequest,
    RetainerCancelResponse,
    RetainerCreate,
    RetainerDecline,
    RetainerListResponse,
    RetainerPricingRequest,
    RetainerPricingResponse,
    RetainerResponse,
    RetainerStatsResponse,
    RetainerUpdate,
    TimesheetCreate,
    TimesheetListResponse,
    TimesheetResponse,
    WeeklyBillingResponse,
)
from centaur.api.deps import get_current_user, require_member
from centaur.services import billing, retainers as retainer_service, timesheets as timesheet_service
from centaur.utils.timeutils import to_naive_utc

router = APIRouter(prefix="/retainers", tags=["retainers"])


@router.post("/pricing", response_model=RetainerPricingResponse)
async def preview_pricing(
    pricing: RetainerPricingRequest,
    current_user: User = Depends(get_current_user)
):
    """Discounted rate, weekly total and monthly estimate for a commitment."""
    return retainer_service.calculate_pricing(pricing.weekly_hours, pricing.hourly_rate, pricing.currency)


@router.post("", response_model=RetainerResponse, status_code=status.HTTP_201_CREATED)
async def create_retainer(
    retainer_data: RetainerCreate,
    current_user: User = Depends(require_member),
    db: Session = Depends(get_db)
):
    return retainer_service.create_retainer(db, current_user, retainer_data.model_dump())


@router.get("", response_model=RetainerListResponse)
async def list_retainers(
    role: Optional[str] = Query(None, pattern="^(buyer|provider)$"),
    status: Optional[List[str]] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    retainers, total = retainer_service.list_retainers(
        db, current_user, role=role, statuses=status, limit=limit, offset=offset
    )
    return RetainerListResponse(retainers=retainers, total=total, limit=limit, offset=offset)


@router.get("/{retainer_id}", response_model=RetainerResponse)
async def get_retainer(
    retainer_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return retainer_service.get_retainer(db, current_user, retainer_id)


@router.patch("/{retainer_id}", response_model=RetainerResponse)
async def update_retainer(
    retainer_id: str,
    retainer_data: RetainerUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return retainer_service.update_retainer(
        db, current_user, retainer_id, retainer_data.model_dump(exclude_unset=True)
    )


@router.post("/{retainer_id}/accept", response_model=RetainerResponse)
async def accept_retainer(
    retainer_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return retainer_service.accept_retainer(db, current_user, retainer_id)


@router.post("/{retainer_id}/decline", response_model=RetainerResponse)
async def decline_retainer(
    retainer_id: str,
    decline: Optional[RetainerDecline] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    reason = decline.reason if decline else None
    return retainer_service.decline_retainer(db, current_user, retainer_id, reason)


@router.post("/{retainer_id}/pause", response_model=RetainerResponse)
async def pause_retainer(
    retainer_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return retainer_service.pause_retainer(db, current_user, retainer_id)


@router.post("/{retainer_id}/resume", response_model=RetainerResponse)
async def resume_retainer(
    retainer_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return retainer_service.resume_retainer(db, current_user, retainer_id)


@router.post("/{retainer_id}/cancel", response_model=RetainerCancelResponse)
async def cancel_retainer(
    retainer_id: str,
    cancel: Optional[RetainerCancelRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Effective no sooner than 14 days from now."""
    effective = None
    reason = None
    if cancel is not None:
        effective = to_naive_utc(cancel.effective_date) if cancel.effective_date else None
        reason = cancel.reason
    return retainer_service.cancel_retainer(db, current_user, retainer_id, effective, reason)


@router.get("/{retainer_id}/stats", response_model=RetainerStatsResponse)
async def retainer_stats(
    retainer_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return retainer_service.retainer_stats(db, current_user, retainer_id)


@router.post(
    "/{retainer_id}/timesheets",
    response_model=TimesheetResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_timesheet(
    retainer_id: str,
    timesheet_data: TimesheetCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return timesheet_service.create_timesheet(
        db, current_user, retainer_id, timesheet_data.week_start, timesheet_data.description
    )


@router.get("/{retainer_id}/timesheets/current", response_model=TimesheetResponse)
async def current_timesheet(
    retainer_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """This week's timesheet, created on first access."""
    return timesheet_service.get_or_create_current_timesheet(db, current_user, retainer_id)


@router.get("/{retainer_id}/timesheets", response_model=TimesheetListResponse)
async def timesheet_history(
    retainer_id: str,
    status: Optional[List[str]] = Query(None),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    entries, total = timesheet_service.timesheet_history(
        db, current_user, retainer_id,
        statuses=status,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return TimesheetListResponse(timesheets=entries, total=total, limit=limit, offset=offset)


@router.get("/{retainer_id}/billing/pending", response_model=list[WeeklyBillingResponse])
async def pending_billing(
    retainer_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return billing.pending_billing(db, current_user, retainer_id)


@router.get("/{retainer_id}/billing/history", response_model=list[WeeklyBillingResponse])
async def billing_history(
    retainer_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return billing.billing_history(db, current_user, retainer_id)


@router.get("/{retainer_id}/invoice", response_model=WeeklyBillingResponse)
async def weekly_invoice(
    retainer_id: str,
    week_start: date,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return billing.weekly_invoice(db, current_user, retainer_id, week_start)
