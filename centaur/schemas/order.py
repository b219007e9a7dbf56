"""
Order Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

ORDER_STATUS_PATTERN = "^(accepted|in_progress|completed|cancelled)$"
ESCROW_STATUS_PATTERN = "^(held|released|failed|refunded)$"


class OrderCreate(BaseModel):
    provider_id: str
    amount: float = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    description: Optional[str] = None
    rfq_id: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., pattern=ORDER_STATUS_PATTERN)


class EscrowUpdate(BaseModel):
    escrow_status: str = Field(..., pattern=ESCROW_STATUS_PATTERN)
    payment_intent_id: Optional[str] = Field(None, max_length=255)


class OrderResponse(BaseModel):
    id: str
    foundry_id: str
    buyer_id: str
    provider_id: str
    rfq_id: Optional[str]
    description: Optional[str]
    amount: float
    currency: str
    status: str
    escrow_status: str
    payment_intent_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]
    total: int
    limit: int
    offset: int


class DisputeCreate(BaseModel):
    reason: str = Field(..., min_length=1, max_length=5000)


class DisputeResponse(BaseModel):
    id: str
    order_id: str
    raised_by: str
    reason: str
    status: str
    created_at: datetime

    class Config:
        from_attributes = True
