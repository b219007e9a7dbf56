"""
Retainer, Timesheet and Billing Schemas
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import date, datetime


def _weekly_hours(value):
    if value is not None and value not in (10, 20, 40):
        raise ValueError("Weekly hours must be one of 10, 20, 40")
    return value


class RetainerPricingRequest(BaseModel):
    weekly_hours: int
    hourly_rate: float = Field(..., gt=0)
    currency: str = Field("GBP", min_length=3, max_length=3)

    @field_validator("weekly_hours")
    @classmethod
    def check_weekly_hours(cls, v):
        return _weekly_hours(v)


class RetainerPricingResponse(BaseModel):
    weekly_hours: int
    base_hourly_rate: float
    discount_percent: float
    discounted_rate: float
    weekly_total: float
    monthly_estimate: float
    currency: str

    class Config:
        from_attributes = True


class RetainerCreate(BaseModel):
    provider_id: str
    weekly_hours: int
    # Defaults to the provider's listed hourly rate
    hourly_rate: Optional[float] = Field(None, gt=0)
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)

    @field_validator("weekly_hours")
    @classmethod
    def check_weekly_hours(cls, v):
        return _weekly_hours(v)


class RetainerUpdate(BaseModel):
    weekly_hours: Optional[int] = None
    hourly_rate: Optional[float] = Field(None, gt=0)
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None

    @field_validator("weekly_hours")
    @classmethod
    def check_weekly_hours(cls, v):
        return _weekly_hours(v)


class RetainerResponse(BaseModel):
    id: str
    foundry_id: str
    buyer_id: str
    provider_id: str
    title: Optional[str]
    description: Optional[str]
    weekly_hours: int
    base_hourly_rate: float
    hourly_rate: float
    currency: str
    status: str
    started_at: Optional[datetime]
    paused_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_effective: Optional[datetime]
    cancellation_reason: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class RetainerListResponse(BaseModel):
    retainers: list[RetainerResponse]
    total: int
    limit: int
    offset: int


class RetainerDecline(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class RetainerCancelRequest(BaseModel):
    effective_date: Optional[datetime] = None
    reason: Optional[str] = Field(None, max_length=2000)


class RetainerCancelResponse(BaseModel):
    retainer_id: str
    requested_at: datetime
    effective_date: datetime
    notice_period_days: int
    remaining_timesheets: int
    pending_amount: float
    currency: str


class RetainerStatsResponse(BaseModel):
    total_hours_this_week: float
    total_hours_this_month: float
    weekly_commitment: int
    hours_remaining: float
    total_amount: float
    weeks_active: int
    approval_rate: float
    average_hours_per_week: float
    currency: str


class TimesheetCreate(BaseModel):
    week_start: date
    description: Optional[str] = None


class HoursLog(BaseModel):
    hours: float = Field(..., ge=0, le=168)
    description: Optional[str] = None


class TimesheetDispute(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class TimesheetPaid(BaseModel):
    payment_intent_id: str = Field(..., min_length=1, max_length=255)


class TimesheetResponse(BaseModel):
    id: str
    retainer_id: str
    week_start: date
    hours_logged: float
    description: Optional[str]
    status: str
    submitted_at: Optional[datetime]
    approved_at: Optional[datetime]
    disputed_at: Optional[datetime]
    paid_at: Optional[datetime]
    payment_intent_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class TimesheetListResponse(BaseModel):
    timesheets: list[TimesheetResponse]
    total: int
    limit: int
    offset: int


class BillingLineItemResponse(BaseModel):
    label: str
    amount: float
    type: str
    description: Optional[str] = None

    class Config:
        from_attributes = True


class WeeklyBillingResponse(BaseModel):
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
    items: list[BillingLineItemResponse]

    class Config:
        from_attributes = True
