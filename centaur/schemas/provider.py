"""
Provider Profile Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

TIER_PATTERN = "^(verified_partner|approved|pending|suspended)$"


class ProviderProfileCreate(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    headline: Optional[str] = Field(None, max_length=255)
    bio: Optional[str] = None
    timezone: Optional[str] = Field(None, max_length=64)
    hourly_rate: Optional[float] = Field(None, gt=0)
    day_rate: Optional[float] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class ProviderProfileUpdate(BaseModel):
    """Providers edit their listing; tier and stats are not editable here."""
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    headline: Optional[str] = Field(None, max_length=255)
    bio: Optional[str] = None
    timezone: Optional[str] = Field(None, max_length=64)
    hourly_rate: Optional[float] = Field(None, gt=0)
    day_rate: Optional[float] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    is_active: Optional[bool] = None


class ProviderTierUpdate(BaseModel):
    tier: str = Field(..., pattern=TIER_PATTERN)


class ProviderProfileResponse(BaseModel):
    id: str
    user_id: str
    foundry_id: str
    display_name: str
    headline: Optional[str]
    bio: Optional[str]
    tier: str
    timezone: str
    hourly_rate: Optional[float]
    day_rate: Optional[float]
    currency: str
    is_active: bool
    avg_response_time_hours: Optional[float]
    rating: Optional[float]
    review_count: int
    completed_orders: int
    created_at: datetime

    class Config:
        from_attributes = True


class BadgeEligibilityResponse(BaseModel):
    badge_type: str
    eligible: bool
    progress: int = Field(..., ge=0, le=100)
    description: str

    class Config:
        from_attributes = True
