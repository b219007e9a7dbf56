"""
RFQ Management Service

Buyer-side lifecycle (create, update, cancel, close), broadcasting to
providers, listings, and supplier matching.

VISIBILITY:
- Buyers see RFQs of their own foundry.
- Providers see an RFQ from any foundry once a broadcast addressed to
  their profile exists.
"""
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from centaur.core.exceptions import BusinessRuleError, InvalidInputError, RFQNotFoundError
from centaur.core.permissions import require_buyer
from centaur.models.provider import ProviderProfile, SupplierTier
from centaur.models.rfq import ACCEPTING_RESPONSES, RFQ, RFQBroadcast, RFQResponse, RFQStatus, RFQType
from centaur.models.user import User
from centaur.services.race import expire_priority_hold, get_provider_profile
from centaur.services.scheduling import (
    ProviderSlot,
    calculate_broadcast_schedule,
    compute_race_opens_at,
)
from centaur.utils.logging import get_logger
from centaur.utils.timeutils import utcnow

logger = get_logger(__name__)

MATCH_BASE_SCORE = 50
MATCH_TIER_BONUS = {
    SupplierTier.VERIFIED_PARTNER.value: 30,
    SupplierTier.APPROVED.value: 15,
}


def _eligible_providers(db: Session) -> List[ProviderProfile]:
    return db.query(ProviderProfile).filter(
        ProviderProfile.is_active == True,  # noqa: E712
        ProviderProfile.tier != SupplierTier.SUSPENDED.value,
    ).all()


def create_rfq(db: Session, user: User, data: Dict) -> Tuple[RFQ, int]:
    """
    Create an RFQ in the buyer's foundry and broadcast it.

    Returns the RFQ and the number of providers it was broadcast to.
    """
    title = (data.get("title") or "").strip()
    if not title:
        raise InvalidInputError("Title is required")

    budget_min = data.get("budget_min")
    budget_max = data.get("budget_max")
    if budget_min is not None and budget_max is not None and budget_min > budget_max:
        raise InvalidInputError("Minimum budget must be less than maximum budget")

    now = utcnow()
    rfq = RFQ(
        foundry_id=user.foundry_id,
        buyer_id=user.id,
        title=title,
        specifications=data.get("specifications"),
        category=data.get("category"),
        budget_min=budget_min,
        budget_max=budget_max,
        deadline=data.get("deadline"),
        rfq_type=data.get("rfq_type") or RFQType.COMMODITY.value,
        urgency=data["urgency"],
        status=RFQStatus.OPEN.value,
        race_opens_at=compute_race_opens_at(data["urgency"], now),
    )
    db.add(rfq)
    db.commit()
    db.refresh(rfq)

    logger.info(f"RFQ created: {rfq.id} by {user.id}", extra={"foundry_id": user.foundry_id})

    broadcast_count = broadcast_rfq(db, rfq)
    return rfq, broadcast_count


def broadcast_rfq(db: Session, rfq: RFQ) -> int:
    """
    Schedule the RFQ for every eligible provider and move it to Bidding
    once at least one provider is scheduled.

    Idempotent: providers that already have a broadcast are skipped.
    The buyer's own provider profile is never included.
    """
    existing = {
        provider_id for (provider_id,) in db.query(RFQBroadcast.provider_id).filter(
            RFQBroadcast.rfq_id == rfq.id
        ).all()
    }

    slots = [
        ProviderSlot(provider_id=p.id, timezone=p.timezone or "UTC", tier=p.tier)
        for p in _eligible_providers(db)
        if p.id not in existing and p.user_id != rfq.buyer_id
    ]

    schedules = calculate_broadcast_schedule(
        rfq.race_opens_at or utcnow(),
        rfq.urgency,
        slots,
    )

    for schedule in schedules:
        db.add(RFQBroadcast(
            rfq_id=rfq.id,
            provider_id=schedule.provider_id,
            scheduled_at=schedule.scheduled_at,
        ))

    # An empty market leaves the RFQ Open so the buyer can still edit it
    if schedules and rfq.status == RFQStatus.OPEN.value:
        rfq.status = RFQStatus.BIDDING.value

    db.commit()
    db.refresh(rfq)

    logger.info(f"RFQ {rfq.id} broadcast to {len(schedules)} providers", extra={"rfq_id": rfq.id})
    return len(schedules)


def get_buyer_rfq(db: Session, user: User, rfq_id: str) -> RFQ:
    """RFQ in the user's foundry, or 404."""
    rfq = db.query(RFQ).filter(
        RFQ.id == rfq_id,
        RFQ.foundry_id == user.foundry_id,
    ).first()
    if not rfq:
        raise RFQNotFoundError(rfq_id)
    return rfq


def get_visible_rfq(db: Session, user: User, rfq_id: str) -> RFQ:
    """
    RFQ visible to ``user``: same foundry, or broadcast to their
    provider profile.
    """
    rfq = db.query(RFQ).filter(RFQ.id == rfq_id).first()
    if not rfq:
        raise RFQNotFoundError(rfq_id)
    if rfq.foundry_id == user.foundry_id:
        return rfq

    provider = get_provider_profile(db, user)
    if provider is not None:
        broadcast = db.query(RFQBroadcast.id).filter(
            RFQBroadcast.rfq_id == rfq.id,
            RFQBroadcast.provider_id == provider.id,
        ).first()
        if broadcast:
            return rfq

    # Same response as a missing row so ids can't be discovered across foundries
    raise RFQNotFoundError(rfq_id)


def get_rfq_detail(db: Session, user: User, rfq_id: str) -> Dict:
    rfq = get_visible_rfq(db, user, rfq_id)
    if expire_priority_hold(db, rfq):
        db.commit()

    provider = get_provider_profile(db, user)
    has_responded = False
    if provider is not None:
        has_responded = db.query(RFQResponse.id).filter(
            RFQResponse.rfq_id == rfq.id,
            RFQResponse.provider_id == provider.id,
        ).first() is not None

    # Only the buyer sees other providers' responses and the broadcast list
    is_buyer = rfq.buyer_id == user.id
    return {
        "rfq": rfq,
        "responses": list(rfq.responses) if is_buyer else [],
        "broadcasts": list(rfq.broadcasts) if is_buyer else [],
        "has_user_responded": has_responded,
        "is_buyer": is_buyer,
    }


def list_buyer_rfqs(
    db: Session,
    user: User,
    status: Optional[str] = None,
    rfq_type: Optional[str] = None,
    category: Optional[str] = None,
    urgency: Optional[str] = None,
    search: Optional[str] = None,
    mine_only: bool = False,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[List[Tuple[RFQ, int]], int]:
    """Foundry RFQs with response counts, newest first."""
    query = db.query(RFQ).filter(RFQ.foundry_id == user.foundry_id)

    if status:
        query = query.filter(RFQ.status == status)
    if rfq_type:
        query = query.filter(RFQ.rfq_type == rfq_type)
    if category:
        query = query.filter(RFQ.category == category)
    if urgency:
        query = query.filter(RFQ.urgency == urgency)
    if mine_only:
        query = query.filter(RFQ.buyer_id == user.id)
    if search:
        query = query.filter(RFQ.title.ilike(f"%{search}%"))

    total = query.count()
    offset = (page - 1) * page_size
    rfqs = query.order_by(RFQ.created_at.desc()).offset(offset).limit(page_size).all()

    counts = _response_counts_for(db, [r.id for r in rfqs])
    return [(rfq, counts.get(rfq.id, 0)) for rfq in rfqs], total


def list_supplier_rfqs(
    db: Session,
    user: User,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[List[Tuple[RFQ, RFQBroadcast]], int]:
    """
    RFQs waiting on this provider: broadcast and due, still accepting
    responses, not yet answered by them.
    """
    provider = get_provider_profile(db, user)
    if provider is None:
        return [], 0

    now = utcnow()
    responded = db.query(RFQResponse.rfq_id).filter(RFQResponse.provider_id == provider.id)

    query = db.query(RFQ, RFQBroadcast).join(
        RFQBroadcast, RFQBroadcast.rfq_id == RFQ.id
    ).filter(
        RFQBroadcast.provider_id == provider.id,
        or_(RFQBroadcast.delivered_at.isnot(None), RFQBroadcast.scheduled_at <= now),
        RFQ.status.in_(ACCEPTING_RESPONSES),
        ~RFQ.id.in_(responded),
    )

    total = query.count()
    offset = (page - 1) * page_size
    rows = query.order_by(RFQBroadcast.scheduled_at.desc()).offset(offset).limit(page_size).all()
    return [(rfq, broadcast) for rfq, broadcast in rows], total


def _response_counts_for(db: Session, rfq_ids: List[str]) -> Dict[str, int]:
    if not rfq_ids:
        return {}
    rows = db.query(RFQResponse.rfq_id, func.count(RFQResponse.id)).filter(
        RFQResponse.rfq_id.in_(rfq_ids)
    ).group_by(RFQResponse.rfq_id).all()
    return {rfq_id: count for rfq_id, count in rows}


def rfq_counts(db: Session, user: User) -> Dict[str, int]:
    """The buyer's RFQs by status, for the dashboard."""
    rows = db.query(RFQ.status, func.count(RFQ.id)).filter(
        RFQ.foundry_id == user.foundry_id,
        RFQ.buyer_id == user.id,
    ).group_by(RFQ.status).all()
    by_status = {status: count for status, count in rows}
    return {
        "open": by_status.get(RFQStatus.OPEN.value, 0),
        "bidding": by_status.get(RFQStatus.BIDDING.value, 0) + by_status.get(RFQStatus.PRIORITY_HOLD.value, 0),
        "awarded": by_status.get(RFQStatus.AWARDED.value, 0),
        "closed": by_status.get(RFQStatus.CLOSED.value, 0) + by_status.get(RFQStatus.CANCELLED.value, 0),
        "total": sum(by_status.values()),
    }


def update_rfq(db: Session, user: User, rfq_id: str, updates: Dict) -> RFQ:
    """Buyer edits are only allowed before bidding starts."""
    rfq = get_buyer_rfq(db, user, rfq_id)
    require_buyer(user, rfq.buyer_id, "update this RFQ")

    if rfq.status != RFQStatus.OPEN.value:
        raise BusinessRuleError("Cannot update RFQ after bidding has started")

    if "title" in updates and not (updates["title"] or "").strip():
        raise InvalidInputError("Title is required")

    budget_min = updates.get("budget_min", rfq.budget_min)
    budget_max = updates.get("budget_max", rfq.budget_max)
    if budget_min is not None and budget_max is not None and budget_min > budget_max:
        raise InvalidInputError("Minimum budget must be less than maximum budget")

    for field, value in updates.items():
        setattr(rfq, field, value)

    db.commit()
    db.refresh(rfq)
    logger.info(f"RFQ updated: {rfq.id} by {user.id}")
    return rfq


def cancel_rfq(db: Session, user: User, rfq_id: str) -> RFQ:
    rfq = get_buyer_rfq(db, user, rfq_id)
    require_buyer(user, rfq.buyer_id, "cancel this RFQ")

    if rfq.status in (RFQStatus.AWARDED.value, RFQStatus.CANCELLED.value):
        raise BusinessRuleError(f"Cannot cancel an RFQ that is {rfq.status}")

    rfq.status = RFQStatus.CANCELLED.value
    rfq.cancelled_at = utcnow()
    rfq.priority_holder_id = None
    rfq.priority_hold_expires_at = None
    db.commit()
    db.refresh(rfq)
    logger.info(f"RFQ cancelled: {rfq.id} by {user.id}")
    return rfq


def close_rfq(db: Session, user: User, rfq_id: str) -> RFQ:
    rfq = get_buyer_rfq(db, user, rfq_id)
    require_buyer(user, rfq.buyer_id, "close this RFQ")

    if rfq.status not in ACCEPTING_RESPONSES:
        raise BusinessRuleError("Can only close RFQs that are Open or Bidding")

    rfq.status = RFQStatus.CLOSED.value
    rfq.closed_at = utcnow()
    db.commit()
    db.refresh(rfq)
    logger.info(f"RFQ closed: {rfq.id} by {user.id}")
    return rfq


def mark_viewed(db: Session, user: User, rfq_id: str) -> bool:
    """Record that the provider opened the RFQ. Returns False if nothing changed."""
    provider = get_provider_profile(db, user)
    if provider is None:
        return False

    broadcast = db.query(RFQBroadcast).filter(
        RFQBroadcast.rfq_id == rfq_id,
        RFQBroadcast.provider_id == provider.id,
        RFQBroadcast.viewed_at.is_(None),
    ).first()
    if broadcast is None:
        return False

    now = utcnow()
    broadcast.viewed_at = now
    if broadcast.delivered_at is None:
        broadcast.delivered_at = now
    db.commit()
    return True


def score_supplier(provider: ProviderProfile) -> int:
    return MATCH_BASE_SCORE + MATCH_TIER_BONUS.get(provider.tier, 0)


def match_suppliers(db: Session, user: User, rfq_id: str, limit: int = 20) -> List[Dict]:
    """Eligible providers ranked for the buyer's RFQ, best first."""
    rfq = get_buyer_rfq(db, user, rfq_id)
    require_buyer(user, rfq.buyer_id, "view matched suppliers")

    matches = [
        {"provider": provider, "score": score_supplier(provider)}
        for provider in _eligible_providers(db)
        if provider.user_id != rfq.buyer_id
    ]
    matches.sort(key=lambda m: m["score"], reverse=True)
    return matches[:limit]
