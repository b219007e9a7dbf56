"""
RFQ Race Service

Provider responses and the first-accept race.

RACE RULES:
- commodity: the first accept wins the RFQ outright (Awarded)
- custom: the first accept gets a 2 hour priority hold; the buyer
  awards or releases, and an expired hold falls back to Bidding
- service: accepts never change the RFQ; the buyer always chooses

CONCURRENCY: two providers accepting at the same moment are resolved in
the database, not in Python.
1. uq_rfq_response_provider stops one provider answering twice.
2. The winning transition is a conditional UPDATE that only matches while
   the RFQ is still Open or Bidding. The second writer updates zero rows
   and its accept is recorded without changing the RFQ.
"""
import math
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from centaur.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    InvalidInputError,
    PermissionDenied,
    RFQNotFoundError,
    RFQResponseNotFoundError,
)
from centaur.core.permissions import require_buyer
from centaur.models.provider import ProviderProfile, SupplierTier
from centaur.models.rfq import (
    ACCEPTING_RESPONSES,
    RFQ,
    RFQBroadcast,
    RFQResponse,
    RFQStatus,
    RFQType,
    ResponseType,
)
from centaur.models.user import User
from centaur.services.scheduling import (
    PRIORITY_HOLD_DURATION,
    TIER_DELAY,
    time_until_race_opens,
)
from centaur.utils.logging import get_logger
from centaur.utils.timeutils import utcnow

logger = get_logger(__name__)

CLOSED_FOR_CHANGES = (
    RFQStatus.AWARDED.value,
    RFQStatus.CLOSED.value,
    RFQStatus.CANCELLED.value,
)


def get_provider_profile(db: Session, user: User) -> Optional[ProviderProfile]:
    return db.query(ProviderProfile).filter(ProviderProfile.user_id == user.id).first()


def require_active_provider(db: Session, user: User) -> ProviderProfile:
    """An RFQ response requires an active provider profile."""
    provider = get_provider_profile(db, user)
    if not provider:
        raise PermissionDenied("You need a provider profile to respond to RFQs")
    if not provider.can_respond:
        raise PermissionDenied("Your provider profile is not active")
    return provider


def expire_priority_hold(db: Session, rfq: RFQ, now=None) -> bool:
    """
    Return an RFQ whose priority hold has lapsed to Bidding.

    Returns True when the hold was expired. Caller commits.
    """
    now = now or utcnow()
    if (
        rfq.status == RFQStatus.PRIORITY_HOLD.value
        and rfq.priority_hold_expires_at is not None
        and rfq.priority_hold_expires_at <= now
    ):
        logger.info(f"Priority hold expired on RFQ {rfq.id} (holder {rfq.priority_holder_id})")
        rfq.status = RFQStatus.BIDDING.value
        rfq.priority_holder_id = None
        rfq.priority_hold_expires_at = None
        return True
    return False


def expire_priority_holds(db: Session, foundry_id: Optional[str] = None) -> int:
    """Sweep every lapsed hold, optionally within one foundry."""
    now = utcnow()
    query = db.query(RFQ).filter(
        RFQ.status == RFQStatus.PRIORITY_HOLD.value,
        RFQ.priority_hold_expires_at <= now,
    )
    if foundry_id:
        query = query.filter(RFQ.foundry_id == foundry_id)

    expired = 0
    for rfq in query.all():
        if expire_priority_hold(db, rfq, now):
            expired += 1
    db.commit()
    return expired


def _accept_count(db: Session, rfq_id: str) -> int:
    return db.query(func.count(RFQResponse.id)).filter(
        RFQResponse.rfq_id == rfq_id,
        RFQResponse.response_type == ResponseType.ACCEPT.value,
    ).scalar() or 0


def _claim_rfq(db: Session, rfq: RFQ, values: Dict) -> bool:
    """
    Compare-and-set: apply ``values`` only if the RFQ is still accepting
    responses. Returns True if this call won.
    """
    updated = db.query(RFQ).filter(
        RFQ.id == rfq.id,
        RFQ.status.in_(ACCEPTING_RESPONSES),
    ).update(values, synchronize_session=False)
    return updated == 1


def submit_response(
    db: Session,
    user: User,
    rfq_id: str,
    response_type: str,
    quoted_price: Optional[float] = None,
    message: Optional[str] = None,
) -> Dict:
    """
    Record a provider's response and run the race rules.

    Returns {"id", "awarded", "priority_hold"}.
    """
    provider = require_active_provider(db, user)

    rfq = db.query(RFQ).filter(RFQ.id == rfq_id).first()
    if not rfq:
        raise RFQNotFoundError()

    if rfq.buyer_id == user.id:
        raise BusinessRuleError("You cannot respond to your own RFQ")

    now = utcnow()
    if expire_priority_hold(db, rfq, now):
        db.commit()

    if not rfq.is_accepting_responses:
        raise BusinessRuleError(f"RFQ is {rfq.status}, cannot respond")

    if rfq.race_opens_at and rfq.race_opens_at > now:
        raise BusinessRuleError("Race has not started yet")

    existing = db.query(RFQResponse.id).filter(
        RFQResponse.rfq_id == rfq.id,
        RFQResponse.provider_id == provider.id,
    ).first()
    if existing:
        raise ConflictError("Already responded to this RFQ")

    valid_types = {t.value for t in ResponseType}
    if response_type not in valid_types:
        raise InvalidInputError("Invalid response type")

    message = message.strip() if message else None
    if response_type == ResponseType.INFO_REQUEST.value and not message:
        raise InvalidInputError("Please provide your questions")

    broadcast = db.query(RFQBroadcast).filter(
        RFQBroadcast.rfq_id == rfq.id,
        RFQBroadcast.provider_id == provider.id,
    ).first()

    # Approved suppliers see broadcasts after verified partners
    if (
        response_type == ResponseType.ACCEPT.value
        and broadcast is not None
        and provider.tier == SupplierTier.APPROVED.value
    ):
        allowed_at = broadcast.scheduled_at + TIER_DELAY
        if now < allowed_at:
            wait_seconds = math.ceil((allowed_at - now).total_seconds())
            raise BusinessRuleError(f"Please wait {wait_seconds} more seconds (tier delay)")

    response = RFQResponse(
        rfq_id=rfq.id,
        provider_id=provider.id,
        response_type=response_type,
        quoted_price=quoted_price if response_type == ResponseType.ACCEPT.value else None,
        message=message,
        responded_at=now,
    )
    db.add(response)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Already responded to this RFQ")

    awarded = False
    priority_hold = False

    if response_type == ResponseType.ACCEPT.value and _accept_count(db, rfq.id) == 1:
        if rfq.rfq_type == RFQType.COMMODITY.value:
            awarded = _claim_rfq(db, rfq, {
                RFQ.status: RFQStatus.AWARDED.value,
                RFQ.awarded_to: provider.id,
                RFQ.awarded_at: now,
                RFQ.updated_at: now,
            })
        elif rfq.rfq_type == RFQType.CUSTOM.value:
            priority_hold = _claim_rfq(db, rfq, {
                RFQ.status: RFQStatus.PRIORITY_HOLD.value,
                RFQ.priority_holder_id: provider.id,
                RFQ.priority_hold_expires_at: now + PRIORITY_HOLD_DURATION,
                RFQ.updated_at: now,
            })

    if broadcast is not None and broadcast.delivered_at is None:
        broadcast.delivered_at = now
        broadcast.viewed_at = now

    db.commit()
    db.refresh(rfq)

    if awarded:
        logger.info(f"RFQ {rfq.id} awarded to first accept {provider.id}", extra={"rfq_id": rfq.id})
    elif priority_hold:
        logger.info(f"RFQ {rfq.id} priority hold granted to {provider.id}", extra={"rfq_id": rfq.id})
    else:
        logger.info(f"RFQ response {response.id} ({response_type}) by provider {provider.id}")

    return {"id": response.id, "awarded": awarded, "priority_hold": priority_hold}


def _load_own_response(db: Session, user: User, response_id: str):
    provider = get_provider_profile(db, user)
    if not provider:
        raise PermissionDenied("No provider profile")

    response = db.query(RFQResponse).filter(RFQResponse.id == response_id).first()
    if not response:
        raise RFQResponseNotFoundError()
    if response.provider_id != provider.id:
        raise PermissionDenied("Not authorized")
    return provider, response


def update_response(
    db: Session,
    user: User,
    response_id: str,
    quoted_price: Optional[float] = None,
    message: Optional[str] = None,
) -> RFQResponse:
    """Change the quote or message while the RFQ is still live."""
    _, response = _load_own_response(db, user, response_id)

    if response.rfq.status in CLOSED_FOR_CHANGES:
        raise BusinessRuleError("Cannot update response after RFQ is closed")

    response.quoted_price = quoted_price
    response.message = message.strip() if message and message.strip() else None
    db.commit()
    db.refresh(response)

    logger.info(f"RFQ response updated: {response.id} by {user.id}")
    return response


def withdraw_response(db: Session, user: User, response_id: str) -> None:
    """
    Delete a provider's own response. A provider holding priority gives
    the hold up and the RFQ returns to Bidding.
    """
    provider, response = _load_own_response(db, user, response_id)
    rfq = response.rfq

    if rfq.status in CLOSED_FOR_CHANGES:
        raise BusinessRuleError("Cannot withdraw after RFQ is closed")
    if rfq.awarded_to == provider.id:
        raise BusinessRuleError("Cannot withdraw after being awarded")

    if rfq.priority_holder_id == provider.id:
        rfq.status = RFQStatus.BIDDING.value
        rfq.priority_holder_id = None
        rfq.priority_hold_expires_at = None
        logger.info(f"Priority hold on RFQ {rfq.id} released by withdrawal")

    db.delete(response)
    db.commit()
    logger.info(f"RFQ response withdrawn: {response_id} by {user.id}")


def get_my_response(db: Session, user: User, rfq_id: str) -> Optional[RFQResponse]:
    provider = get_provider_profile(db, user)
    if not provider:
        return None
    return db.query(RFQResponse).filter(
        RFQResponse.rfq_id == rfq_id,
        RFQResponse.provider_id == provider.id,
    ).first()


def _load_buyer_rfq(db: Session, user: User, rfq_id: str) -> RFQ:
    rfq = db.query(RFQ).filter(
        RFQ.id == rfq_id,
        RFQ.foundry_id == user.foundry_id,
    ).first()
    if not rfq:
        raise RFQNotFoundError(rfq_id)
    return rfq


def list_responses(db: Session, user: User, rfq_id: str) -> List[RFQResponse]:
    """All responses for the buyer's RFQ, oldest first."""
    rfq = _load_buyer_rfq(db, user, rfq_id)
    require_buyer(user, rfq.buyer_id, "view responses")
    return db.query(RFQResponse).filter(
        RFQResponse.rfq_id == rfq.id
    ).order_by(RFQResponse.responded_at.asc()).all()


def response_counts(db: Session, rfq_id: str) -> Dict[str, int]:
    rows = db.query(
        RFQResponse.response_type, func.count(RFQResponse.id)
    ).filter(RFQResponse.rfq_id == rfq_id).group_by(RFQResponse.response_type).all()

    by_type = {response_type: count for response_type, count in rows}
    return {
        "total": sum(by_type.values()),
        "accepts": by_type.get(ResponseType.ACCEPT.value, 0),
        "declines": by_type.get(ResponseType.DECLINE.value, 0),
        "info_requests": by_type.get(ResponseType.INFO_REQUEST.value, 0),
    }


def award_rfq(db: Session, user: User, rfq_id: str, provider_id: str) -> RFQ:
    """Buyer awards the RFQ to a provider who accepted it."""
    rfq = _load_buyer_rfq(db, user, rfq_id)
    require_buyer(user, rfq.buyer_id, "award this RFQ")

    if rfq.status in CLOSED_FOR_CHANGES:
        raise BusinessRuleError(f"RFQ is already {rfq.status}")

    accepted = db.query(RFQResponse.id).filter(
        RFQResponse.rfq_id == rfq.id,
        RFQResponse.provider_id == provider_id,
        RFQResponse.response_type == ResponseType.ACCEPT.value,
    ).first()
    if not accepted:
        raise BusinessRuleError("Can only award to a provider who accepted")

    now = utcnow()
    rfq.status = RFQStatus.AWARDED.value
    rfq.awarded_to = provider_id
    rfq.awarded_at = now
    rfq.priority_holder_id = None
    rfq.priority_hold_expires_at = None
    db.commit()
    db.refresh(rfq)

    logger.info(f"RFQ {rfq.id} awarded to {provider_id} by {user.id}", extra={"rfq_id": rfq.id})
    return rfq


def release_priority_hold(db: Session, user: User, rfq_id: str) -> RFQ:
    """Buyer passes on the priority holder; bidding reopens."""
    rfq = _load_buyer_rfq(db, user, rfq_id)
    require_buyer(user, rfq.buyer_id, "release the priority hold")

    if rfq.status != RFQStatus.PRIORITY_HOLD.value:
        raise BusinessRuleError("RFQ is not in priority hold")

    logger.info(f"Priority hold on RFQ {rfq.id} released by buyer (holder {rfq.priority_holder_id})")
    rfq.status = RFQStatus.BIDDING.value
    rfq.priority_holder_id = None
    rfq.priority_hold_expires_at = None
    db.commit()
    db.refresh(rfq)
    return rfq


def race_status(db: Session, rfq: RFQ) -> Dict:
    """Snapshot of where the race stands, for buyer and provider views."""
    if expire_priority_hold(db, rfq):
        db.commit()

    now = utcnow()
    timing = time_until_race_opens(rfq.race_opens_at, now)
    counts = response_counts(db, rfq.id)

    if rfq.status == RFQStatus.CANCELLED.value:
        status = "cancelled"
    elif rfq.status == RFQStatus.CLOSED.value:
        status = "closed"
    elif rfq.status == RFQStatus.AWARDED.value:
        status = "awarded"
    elif rfq.status == RFQStatus.PRIORITY_HOLD.value:
        status = "priority_hold"
    elif not timing["is_open"]:
        status = "scheduled"
    else:
        status = "open"

    winner = None
    if rfq.awarded_to:
        winning_response = db.query(RFQResponse).filter(
            RFQResponse.rfq_id == rfq.id,
            RFQResponse.provider_id == rfq.awarded_to,
        ).first()
        winner = {
            "provider_id": rfq.awarded_to,
            "quoted_price": winning_response.quoted_price if winning_response else None,
        }

    return {
        "rfq_id": rfq.id,
        "status": status,
        "race_opens_at": rfq.race_opens_at,
        "time_until_open_ms": timing["time_until_open_ms"],
        "formatted_time": timing["formatted_time"],
        "priority_holder_id": rfq.priority_holder_id,
        "priority_hold_expires_at": rfq.priority_hold_expires_at,
        "winner": winner,
        "total_responses": counts["total"],
        "accept_count": counts["accepts"],
    }
