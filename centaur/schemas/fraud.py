"""
Fraud and Velocity Limit Schemas
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime

ACCOUNT_TIER_PATTERN = "^(new|starter|established|trusted)$"


class LimitInfoResponse(BaseModel):
    limit: float
    used: float
    remaining: Optional[float]  # null = unlimited
    resets_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserLimitsResponse(BaseModel):
    tier: str
    account_age_days: int
    single: LimitInfoResponse
    daily: LimitInfoResponse
    weekly: LimitInfoResponse
    monthly: LimitInfoResponse

    class Config:
        from_attributes = True


class LimitsSummaryResponse(BaseModel):
    tier: str
    tier_name: str
    next_tier: Optional[str]
    days_until_next_tier: Optional[int]
    limits: UserLimitsResponse


class LimitCheckRequest(BaseModel):
    amount: float = Field(..., gt=0)


class LimitCheckResponse(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class RiskScoreResponse(BaseModel):
    score: int = Field(..., ge=0, le=100)
    level: str  # low, medium, high, critical
    factors: list[Dict[str, Any]]

    class Config:
        from_attributes = True


class FraudReport(BaseModel):
    user_id: str
    reason: str = Field(..., min_length=1, max_length=2000)
    details: Optional[Dict[str, Any]] = None


class FraudSignalResponse(BaseModel):
    id: str
    user_id: str
    signal_type: str
    severity: str
    details: Dict[str, Any]
    ip_address: Optional[str]
    device_fingerprint: Optional[str]
    action_taken: Optional[str]
    reviewed_by: Optional[str]
    reviewed_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class FraudSignalListResponse(BaseModel):
    signals: list[FraudSignalResponse]
    total: int
    limit: int
    offset: int


class SignalClear(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class HighRiskUser(BaseModel):
    user_id: str
    full_name: Optional[str]
    email: str
    signal_count: int
    latest_signal_at: datetime


class LimitReset(BaseModel):
    limit_type: Optional[str] = Field(None, pattern="^(daily|weekly|monthly|per_transaction)$")


class LimitResetResponse(BaseModel):
    reset: int


class TierUpgrade(BaseModel):
    tier: str = Field(..., pattern=ACCOUNT_TIER_PATTERN)


class LimitAmounts(BaseModel):
    """Explicit limit amounts; 0 means unlimited."""
    per_transaction: Optional[float] = Field(None, ge=0)
    daily: Optional[float] = Field(None, ge=0)
    weekly: Optional[float] = Field(None, ge=0)
    monthly: Optional[float] = Field(None, ge=0)
