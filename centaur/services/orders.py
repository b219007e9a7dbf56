"""
Order Service

One-off purchases from a provider. Creating an order is the money
moving action the fraud gate protects: detection and velocity limits
run first, and the amount is recorded against the buyer's limits only
once the order exists.

Status machine:
    pending -> accepted -> in_progress -> completed
    in_progress -> disputed -> in_progress | completed | cancelled
    pending | accepted | in_progress -> cancelled

Escrow (tracked only; funds live at the payment processor):
    pending -> held | failed,  failed -> held,  held -> released | refunded
"""
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from centaur.core.exceptions import (
    BusinessRuleError,
    InvalidInputError,
    OrderNotFoundError,
    PermissionDenied,
    ProviderNotFoundError,
    RFQNotFoundError,
    TransactionBlockedError,
)
from centaur.models.order import Dispute, EscrowStatus, Order, OrderStatus
from centaur.models.provider import ProviderProfile
from centaur.models.rfq import RFQ
from centaur.models.user import User, UserRole
from centaur.services import fraud_detection, velocity
from centaur.services.race import get_provider_profile
from centaur.utils.logging import get_logger

logger = get_logger(__name__)

STATUS_TRANSITIONS = {
    OrderStatus.PENDING.value: (OrderStatus.ACCEPTED.value, OrderStatus.CANCELLED.value),
    OrderStatus.ACCEPTED.value: (OrderStatus.IN_PROGRESS.value, OrderStatus.CANCELLED.value),
    OrderStatus.IN_PROGRESS.value: (
        OrderStatus.COMPLETED.value, OrderStatus.DISPUTED.value, OrderStatus.CANCELLED.value,
    ),
    OrderStatus.DISPUTED.value: (
        OrderStatus.IN_PROGRESS.value, OrderStatus.CANCELLED.value, OrderStatus.COMPLETED.value,
    ),
    OrderStatus.COMPLETED.value: (),
    OrderStatus.CANCELLED.value: (),
}

# Who may move an order into a status; disputes go through raise_dispute
STATUS_ACTORS = {
    OrderStatus.ACCEPTED.value: ("provider",),
    OrderStatus.IN_PROGRESS.value: ("provider",),
    OrderStatus.COMPLETED.value: ("buyer",),
    OrderStatus.CANCELLED.value: ("buyer", "provider"),
}

ESCROW_TRANSITIONS = {
    EscrowStatus.PENDING.value: (EscrowStatus.HELD.value, EscrowStatus.FAILED.value),
    EscrowStatus.FAILED.value: (EscrowStatus.HELD.value,),
    EscrowStatus.HELD.value: (EscrowStatus.RELEASED.value, EscrowStatus.REFUNDED.value),
    EscrowStatus.RELEASED.value: (),
    EscrowStatus.REFUNDED.value: (),
}


def can_transition(current: str, target: str) -> bool:
    return target in STATUS_TRANSITIONS.get(current, ())


def can_transition_escrow(current: str, target: str) -> bool:
    return target in ESCROW_TRANSITIONS.get(current, ())


def _role_in_order(user: User, order: Order) -> Optional[str]:
    if order.buyer_id == user.id and order.foundry_id == user.foundry_id:
        return "buyer"
    if order.provider and order.provider.user_id == user.id:
        return "provider"
    if user.role == UserRole.ADMIN and order.foundry_id == user.foundry_id:
        return "admin"
    return None


def get_order(db: Session, user: User, order_id: str) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order or _role_in_order(user, order) is None:
        raise OrderNotFoundError(order_id)
    return order


def create_order(
    db: Session,
    buyer: User,
    data: Dict,
    ip_address: Optional[str] = None,
    device_fingerprint: Optional[str] = None,
) -> Order:
    amount = data["amount"]
    if amount is None or amount <= 0:
        raise InvalidInputError("Amount must be positive")

    provider = db.query(ProviderProfile).filter(ProviderProfile.id == data["provider_id"]).first()
    if not provider:
        raise ProviderNotFoundError(data["provider_id"])
    if provider.user_id == buyer.id:
        raise BusinessRuleError("You cannot order from yourself")
    if not provider.can_respond:
        raise BusinessRuleError("Provider is not accepting new work")

    rfq_id = data.get("rfq_id")
    if rfq_id:
        rfq = db.query(RFQ.id).filter(
            RFQ.id == rfq_id,
            RFQ.foundry_id == buyer.foundry_id,
            RFQ.buyer_id == buyer.id,
        ).first()
        if not rfq:
            raise RFQNotFoundError(rfq_id)

    check = fraud_detection.check_transaction(
        db,
        buyer.id,
        "order_create",
        amount=amount,
        ip_address=ip_address,
        device_fingerprint=device_fingerprint,
    )
    if not check.allowed:
        raise TransactionBlockedError(check.reason)

    order = Order(
        foundry_id=buyer.foundry_id,
        buyer_id=buyer.id,
        provider_id=provider.id,
        rfq_id=rfq_id,
        description=data.get("description"),
        amount=amount,
        currency=data.get("currency") or provider.currency or "GBP",
        status=OrderStatus.PENDING.value,
        escrow_status=EscrowStatus.PENDING.value,
    )
    db.add(order)
    velocity.consume_limit(db, buyer.id, amount)
    db.commit()
    db.refresh(order)

    logger.info(
        f"Order created: {order.id} {amount} {order.currency} by {buyer.id} (risk {check.risk_score})",
        extra={"foundry_id": buyer.foundry_id, "user_id": buyer.id},
    )
    return order


def list_orders(
    db: Session,
    user: User,
    role: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[Order], int]:
    provider = get_provider_profile(db, user)

    if role == "provider":
        if provider is None:
            return [], 0
        query = db.query(Order).filter(Order.provider_id == provider.id)
    elif role == "buyer" or provider is None:
        query = db.query(Order).filter(
            Order.buyer_id == user.id,
            Order.foundry_id == user.foundry_id,
        )
    else:
        query = db.query(Order).filter(
            (Order.buyer_id == user.id) | (Order.provider_id == provider.id)
        )

    if status:
        query = query.filter(Order.status == status)

    total = query.count()
    orders = query.order_by(Order.created_at.desc()).offset(offset).limit(limit).all()
    return orders, total


def update_status(db: Session, user: User, order_id: str, target: str) -> Order:
    order = get_order(db, user, order_id)
    role = _role_in_order(user, order)

    if target == OrderStatus.DISPUTED.value:
        raise BusinessRuleError("Use the dispute endpoint to dispute an order")
    if not can_transition(order.status, target):
        raise BusinessRuleError(f"Cannot move order from {order.status} to {target}")
    if role not in STATUS_ACTORS.get(target, ()) and role != "admin":
        raise PermissionDenied(f"Not authorized to mark this order {target}")

    previous = order.status
    order.status = target
    if target == OrderStatus.COMPLETED.value:
        for dispute in order.disputes:
            if dispute.status == "open":
                dispute.status = "resolved"

    db.commit()
    db.refresh(order)
    logger.info(f"Order {order.id}: {previous} -> {target} by {user.id}")
    return order


def update_escrow(
    db: Session,
    user: User,
    order_id: str,
    target: str,
    payment_intent_id: Optional[str] = None,
) -> Order:
    """Buyer or a foundry admin records what the payment processor reported."""
    order = get_order(db, user, order_id)
    role = _role_in_order(user, order)
    if role not in ("buyer", "admin"):
        raise PermissionDenied("Only the buyer can update escrow")

    if not can_transition_escrow(order.escrow_status, target):
        raise BusinessRuleError(f"Cannot move escrow from {order.escrow_status} to {target}")
    if target == EscrowStatus.RELEASED.value and order.status != OrderStatus.COMPLETED.value:
        raise BusinessRuleError("Escrow can only be released for completed orders")
    if target == EscrowStatus.REFUNDED.value and order.status != OrderStatus.CANCELLED.value:
        raise BusinessRuleError("Escrow can only be refunded for cancelled orders")

    order.escrow_status = target
    if payment_intent_id:
        order.payment_intent_id = payment_intent_id
    db.commit()
    db.refresh(order)
    logger.info(f"Order {order.id} escrow -> {target} by {user.id}")
    return order


def raise_dispute(db: Session, user: User, order_id: str, reason: str) -> Dispute:
    if not reason or not reason.strip():
        raise InvalidInputError("Dispute reason is required")

    order = get_order(db, user, order_id)
    if _role_in_order(user, order) != "buyer":
        raise PermissionDenied("Only the buyer can dispute this order")
    if not can_transition(order.status, OrderStatus.DISPUTED.value):
        raise BusinessRuleError("Only orders in progress can be disputed")

    dispute = Dispute(order_id=order.id, raised_by=user.id, reason=reason.strip())
    order.status = OrderStatus.DISPUTED.value
    db.add(dispute)
    db.commit()
    db.refresh(dispute)

    logger.info(f"Dispute raised on order {order.id} by {user.id}")
    return dispute
