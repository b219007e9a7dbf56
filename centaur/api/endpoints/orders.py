"""
Order Endpoints

One-off purchases from a provider. Order creation passes through the
fraud gate: the client IP and X-Device-Fingerprint header feed pattern
detection.
"""
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session
from typing import Optional

from centaur.database import get_db
from centaur.models.user import User
from centaur.schemas.order import (
    DisputeCreate,
    DisputeResponse,
    EscrowUpdate,
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
)
from centaur.api.deps import client_ip, get_current_user, require_member
from centaur.services import orders as order_service

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_data: OrderCreate,
    request: Request,
    current_user: User = Depends(require_member),
    db: Session = Depends(get_db)
):
    """
    SECURITY: refused with 403 when fraud detection blocks the buyer or
    the amount exceeds their velocity limits.
    """
    return order_service.create_order(
        db,
        current_user,
        order_data.model_dump(),
        ip_address=client_ip(request),
        device_fingerprint=request.headers.get("X-Device-Fingerprint"),
    )


@router.get("", response_model=OrderListResponse)
async def list_orders(
    role: Optional[str] = Query(None, pattern="^(buyer|provider)$"),
    status: Optional[str] = Query(
        None, pattern="^(pending|accepted|in_progress|disputed|completed|cancelled)$"
    ),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    orders, total = order_service.list_orders(
        db, current_user, role=role, status=status, limit=limit, offset=offset
    )
    return OrderListResponse(orders=orders, total=total, limit=limit, offset=offset)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return order_service.get_order(db, current_user, order_id)


@router.post("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    update: OrderStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return order_service.update_status(db, current_user, order_id, update.status)


@router.post("/{order_id}/escrow", response_model=OrderResponse)
async def update_escrow(
    order_id: str,
    update: EscrowUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return order_service.update_escrow(
        db, current_user, order_id, update.escrow_status, update.payment_intent_id
    )


@router.post("/{order_id}/disputes", response_model=DisputeResponse, status_code=status.HTTP_201_CREATED)
async def raise_dispute(
    order_id: str,
    dispute: DisputeCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return order_service.raise_dispute(db, current_user, order_id, dispute.reason)
