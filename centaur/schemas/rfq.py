"""
RFQ Schemas

Request/response models for the RFQ marketplace and the response race.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime

from centaur.models.rfq import RFQ_CATEGORIES

RFQ_TYPE_PATTERN = "^(commodity|custom|service)$"
URGENCY_PATTERN = "^(urgent|standard)$"
RESPONSE_TYPE_PATTERN = "^(accept|info_request|decline)$"


def _known_category(value):
    if value is not None and value not in RFQ_CATEGORIES:
        raise ValueError(f"Unknown category: {value}")
    return value


class RFQBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    specifications: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    budget_min: Optional[float] = Field(None, ge=0)
    budget_max: Optional[float] = Field(None, ge=0)
    deadline: Optional[datetime] = None


class RFQCreate(RFQBase):
    rfq_type: str = Field("commodity", pattern=RFQ_TYPE_PATTERN)
    urgency: str = Field("standard", pattern=URGENCY_PATTERN)

    @field_validator("category")
    @classmethod
    def check_category(cls, v):
        return _known_category(v)

    class Config:
        json_schema_extra = {
            "example": {
                "title": "500 machined aluminium brackets",
                "specifications": "6061-T6, anodised black, drawing attached",
                "category": "Components",
                "budget_min": 2000,
                "budget_max": 3500,
                "rfq_type": "commodity",
                "urgency": "standard"
            }
        }


class RFQUpdate(BaseModel):
    """Only allowed while the RFQ is still Open."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    specifications: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    budget_min: Optional[float] = Field(None, ge=0)
    budget_max: Optional[float] = Field(None, ge=0)
    deadline: Optional[datetime] = None

    @field_validator("category")
    @classmethod
    def check_category(cls, v):
        return _known_category(v)


class RFQResponse(RFQBase):
    id: str
    foundry_id: str
    buyer_id: str
    rfq_type: str
    urgency: str
    status: str
    race_opens_at: Optional[datetime]
    awarded_to: Optional[str]
    awarded_at: Optional[datetime]
    priority_holder_id: Optional[str]
    priority_hold_expires_at: Optional[datetime]
    closed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RFQCreateResponse(BaseModel):
    rfq: RFQResponse
    broadcast_count: int


class RFQListItem(RFQResponse):
    response_count: int = 0


class RFQListResponse(BaseModel):
    rfqs: list[RFQListItem]
    total: int
    page: int
    page_size: int


class SupplierRFQItem(RFQResponse):
    """An RFQ in a provider's feed, with when it reached them."""
    scheduled_at: datetime
    viewed_at: Optional[datetime] = None


class SupplierRFQListResponse(BaseModel):
    rfqs: list[SupplierRFQItem]
    total: int
    page: int
    page_size: int


class RFQCountsResponse(BaseModel):
    open: int
    bidding: int
    awarded: int
    closed: int
    total: int


class QuoteResponse(BaseModel):
    """A provider's answer to an RFQ."""
    id: str
    rfq_id: str
    provider_id: str
    response_type: str
    quoted_price: Optional[float]
    message: Optional[str]
    responded_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BroadcastResponse(BaseModel):
    id: str
    provider_id: str
    scheduled_at: datetime
    delivered_at: Optional[datetime]
    viewed_at: Optional[datetime]

    class Config:
        from_attributes = True


class RFQDetailResponse(BaseModel):
    """Responses and broadcasts are only populated for the buyer."""
    rfq: RFQResponse
    responses: list[QuoteResponse]
    broadcasts: list[BroadcastResponse]
    has_user_responded: bool
    is_buyer: bool


class QuoteSubmit(BaseModel):
    response_type: str = Field(..., pattern=RESPONSE_TYPE_PATTERN)
    quoted_price: Optional[float] = Field(None, gt=0)
    message: Optional[str] = Field(None, max_length=5000)


class QuoteUpdate(BaseModel):
    quoted_price: Optional[float] = Field(None, gt=0)
    message: Optional[str] = Field(None, max_length=5000)


class QuoteSubmitResult(BaseModel):
    id: str
    awarded: bool
    priority_hold: bool


class ResponseCountsResponse(BaseModel):
    total: int
    accepts: int
    declines: int
    info_requests: int


class AwardRequest(BaseModel):
    provider_id: str


class RaceWinner(BaseModel):
    provider_id: str
    quoted_price: Optional[float]


class RaceStatusResponse(BaseModel):
    rfq_id: str
    status: str  # scheduled, open, priority_hold, awarded, closed, cancelled
    race_opens_at: Optional[datetime]
    time_until_open_ms: int
    formatted_time: str
    priority_holder_id: Optional[str]
    priority_hold_expires_at: Optional[datetime]
    winner: Optional[RaceWinner]
    total_responses: int
    accept_count: int


class SupplierMatch(BaseModel):
    provider_id: str
    display_name: str
    tier: str
    score: int


class HoldSweepResponse(BaseModel):
    expired: int
