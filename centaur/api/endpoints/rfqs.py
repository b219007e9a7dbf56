"""
RFQ Endpoints

Buyers post RFQs to their foundry; providers from any foundry see them
once broadcast and race to respond.

RBAC:
- Create RFQ: Member role or higher
- Update/cancel/close/award/release: the RFQ's buyer
- Respond: any user with an active provider profile
- Expire holds sweep: Admin only
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from centaur.database import get_db
from centaur.models.rfq import RFQ, RFQBroadcast
from centaur.models.user import User
from centaur.schemas.rfq import (
    AwardRequest,
    HoldSweepResponse,
    QuoteResponse,
    QuoteSubmit,
    QuoteSubmitResult,
    QuoteUpdate,
    RaceStatusResponse,
    RFQCountsResponse,
    RFQCreate,
    RFQCreateResponse,
    RFQDetailResponse,
    RFQListItem,
    RFQListResponse,
    RFQResponse,
    RFQUpdate,
    ResponseCountsResponse,
    SupplierMatch,
    SupplierRFQItem,
    SupplierRFQListResponse,
)
from centaur.api.deps import get_current_user, require_admin, require_member
from centaur.core.exceptions import BusinessRuleError
from centaur.core.permissions import require_buyer
from centaur.services import race, rfqs as rfq_service
from centaur.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/rfqs", tags=["rfqs"])


def _list_item(rfq: RFQ, response_count: int) -> RFQListItem:
    return RFQListItem(**RFQResponse.model_validate(rfq).model_dump(), response_count=response_count)


def _feed_item(rfq: RFQ, broadcast: RFQBroadcast) -> SupplierRFQItem:
    return SupplierRFQItem(
        **RFQResponse.model_validate(rfq).model_dump(),
        scheduled_at=broadcast.scheduled_at,
        viewed_at=broadcast.viewed_at,
    )


@router.post("", response_model=RFQCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_rfq(
    rfq_data: RFQCreate,
    current_user: User = Depends(require_member),
    db: Session = Depends(get_db)
):
    """Create and broadcast. Returns how many providers it was sent to."""
    rfq, broadcast_count = rfq_service.create_rfq(db, current_user, rfq_data.model_dump())
    return RFQCreateResponse(rfq=rfq, broadcast_count=broadcast_count)


@router.get("", response_model=RFQListResponse)
async def list_rfqs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None, pattern="^(Open|Bidding|Awarded|Closed|priority_hold|cancelled)$"),
    rfq_type: Optional[str] = Query(None, pattern="^(commodity|custom|service)$"),
    category: Optional[str] = None,
    urgency: Optional[str] = Query(None, pattern="^(urgent|standard)$"),
    search: Optional[str] = Query(None, max_length=100),
    mine: bool = False,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Buyer view: RFQs in the current foundry with response counts."""
    rows, total = rfq_service.list_buyer_rfqs(
        db,
        current_user,
        status=status,
        rfq_type=rfq_type,
        category=category,
        urgency=urgency,
        search=search,
        mine_only=mine,
        page=page,
        page_size=page_size,
    )
    return RFQListResponse(
        rfqs=[_list_item(rfq, count) for rfq, count in rows],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/feed", response_model=SupplierRFQListResponse)
async def supplier_feed(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Supplier view: RFQs broadcast to my provider profile awaiting my answer."""
    rows, total = rfq_service.list_supplier_rfqs(db, current_user, page=page, page_size=page_size)
    return SupplierRFQListResponse(
        rfqs=[_feed_item(rfq, broadcast) for rfq, broadcast in rows],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/counts", response_model=RFQCountsResponse)
async def my_rfq_counts(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return rfq_service.rfq_counts(db, current_user)


@router.post("/expire-holds", response_model=HoldSweepResponse)
async def expire_holds(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Return lapsed priority holds in this foundry to Bidding."""
    expired = race.expire_priority_holds(db, current_user.foundry_id)
    logger.info(f"Priority hold sweep by {current_user.id}: {expired} expired")
    return HoldSweepResponse(expired=expired)


@router.patch("/responses/{response_id}", response_model=QuoteResponse)
async def update_response(
    response_id: str,
    quote_data: QuoteUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return race.update_response(
        db, current_user, response_id,
        quoted_price=quote_data.quoted_price,
        message=quote_data.message,
    )


@router.delete("/responses/{response_id}", status_code=status.HTTP_204_NO_CONTENT)
async def withdraw_response(
    response_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    race.withdraw_response(db, current_user, response_id)
    return None


@router.get("/{rfq_id}", response_model=RFQDetailResponse)
async def get_rfq(
    rfq_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return rfq_service.get_rfq_detail(db, current_user, rfq_id)


@router.patch("/{rfq_id}", response_model=RFQResponse)
async def update_rfq(
    rfq_id: str,
    rfq_data: RFQUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return rfq_service.update_rfq(db, current_user, rfq_id, rfq_data.model_dump(exclude_unset=True))


@router.post("/{rfq_id}/cancel", response_model=RFQResponse)
async def cancel_rfq(
    rfq_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return rfq_service.cancel_rfq(db, current_user, rfq_id)


@router.post("/{rfq_id}/close", response_model=RFQResponse)
async def close_rfq(
    rfq_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return rfq_service.close_rfq(db, current_user, rfq_id)


@router.post("/{rfq_id}/broadcast")
async def rebroadcast_rfq(
    rfq_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Pick up providers who joined since the RFQ was created."""
    rfq = rfq_service.get_buyer_rfq(db, current_user, rfq_id)
    require_buyer(current_user, rfq.buyer_id, "broadcast this RFQ")
    if not rfq.is_accepting_responses:
        raise BusinessRuleError(f"RFQ is {rfq.status}, cannot broadcast")
    return {"broadcast_count": rfq_service.broadcast_rfq(db, rfq)}


@router.get("/{rfq_id}/matches", response_model=list[SupplierMatch])
async def matched_suppliers(
    rfq_id: str,
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    matches = rfq_service.match_suppliers(db, current_user, rfq_id, limit=limit)
    return [
        SupplierMatch(
            provider_id=m["provider"].id,
            display_name=m["provider"].display_name,
            tier=m["provider"].tier,
            score=m["score"],
        )
        for m in matches
    ]


@router.post("/{rfq_id}/viewed")
async def mark_viewed(
    rfq_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    rfq_service.get_visible_rfq(db, current_user, rfq_id)
    return {"viewed": rfq_service.mark_viewed(db, current_user, rfq_id)}


@router.get("/{rfq_id}/race", response_model=RaceStatusResponse)
async def get_race_status(
    rfq_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    rfq = rfq_service.get_visible_rfq(db, current_user, rfq_id)
    return race.race_status(db, rfq)


@router.post("/{rfq_id}/responses", response_model=QuoteSubmitResult, status_code=status.HTTP_201_CREATED)
async def submit_response(
    rfq_id: str,
    quote_data: QuoteSubmit,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Accept, decline or ask for more information.

    The first accept on a commodity RFQ wins it; on a custom RFQ it
    earns a 2 hour priority hold.
    """
    rfq_service.get_visible_rfq(db, current_user, rfq_id)
    return race.submit_response(
        db,
        current_user,
        rfq_id,
        quote_data.response_type,
        quoted_price=quote_data.quoted_price,
        message=quote_data.message,
    )


@router.get("/{rfq_id}/responses", response_model=list[QuoteResponse])
async def list_responses(
    rfq_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return race.list_responses(db, current_user, rfq_id)


@router.get("/{rfq_id}/responses/counts", response_model=ResponseCountsResponse)
async def response_counts(
    rfq_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    rfq = rfq_service.get_visible_rfq(db, current_user, rfq_id)
    return race.response_counts(db, rfq.id)


@router.get("/{rfq_id}/responses/mine", response_model=Optional[QuoteResponse])
async def my_response(
    rfq_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    rfq_service.get_visible_rfq(db, current_user, rfq_id)
    return race.get_my_response(db, current_user, rfq_id)


@router.post("/{rfq_id}/award", response_model=RFQResponse)
async def award_rfq(
    rfq_id: str,
    award: AwardRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return race.award_rfq(db, current_user, rfq_id, award.provider_id)


@router.post("/{rfq_id}/release-hold", response_model=RFQResponse)
async def release_hold(
    rfq_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return race.release_priority_hold(db, current_user, rfq_id)
