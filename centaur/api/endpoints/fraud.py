"""
Fraud and Velocity Limit Endpoints

Users see their own limits and risk, and can report suspicious
activity. Review and limit management are admin-only and limited to
users of the admin's foundry.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from centaur.database import get_db
from centaur.models.user import User
from centaur.schemas.fraud import (
    FraudReport,
    FraudSignalListResponse,
    FraudSignalResponse,
    HighRiskUser,
    LimitAmounts,
    LimitCheckRequest,
    LimitCheckResponse,
    LimitReset,
    LimitResetResponse,
    LimitsSummaryResponse,
    RiskScoreResponse,
    SignalClear,
    TierUpgrade,
)
from centaur.api.deps import get_current_user, require_admin
from centaur.core.exceptions import UserNotFoundError
from centaur.services import fraud_detection, velocity
from centaur.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)

router = APIRouter(prefix="/fraud", tags=["fraud"])


def _foundry_user(db: Session, admin: User, user_id: str) -> User:
    """CRITICAL: admins only manage users of their own foundry."""
    user = db.query(User).filter(
        User.id == user_id,
        User.foundry_id == admin.foundry_id
    ).first()
    if not user:
        raise UserNotFoundError(user_id)
    return user


@router.get("/limits/me", response_model=LimitsSummaryResponse)
async def my_limits(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return velocity.get_limits_summary(db, current_user.id)


@router.post("/limits/check", response_model=LimitCheckResponse)
async def check_my_limit(
    check: LimitCheckRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Would a payment of ``amount`` fit within my limits right now?"""
    result = velocity.check_limit_availability(db, current_user.id, check.amount)
    return LimitCheckResponse(allowed=result.allowed, reason=result.reason)


@router.get("/risk/me", response_model=RiskScoreResponse)
async def my_risk(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return fraud_detection.calculate_risk_score(db, current_user.id)


@router.post("/reports", response_model=FraudSignalResponse, status_code=status.HTTP_201_CREATED)
async def report_user(
    report: FraudReport,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return fraud_detection.report_suspicious_activity(
        db, current_user, report.user_id, report.reason, report.details
    )


@router.get("/high-risk", response_model=list[HighRiskUser])
async def high_risk_users(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return fraud_detection.high_risk_users(db, current_user.foundry_id, limit=limit)


@router.post("/signals/{signal_id}/clear", response_model=FraudSignalResponse)
async def clear_signal(
    signal_id: str,
    clear: SignalClear,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return fraud_detection.clear_signal(db, current_user, signal_id, clear.reason)


@router.get("/users/{user_id}/signals", response_model=FraudSignalListResponse)
async def user_signals(
    user_id: str,
    severity: Optional[List[str]] = Query(None),
    signal_type: Optional[List[str]] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    _foundry_user(db, current_user, user_id)
    signals, total = fraud_detection.list_signals(
        db, user_id,
        severities=severity,
        signal_types=signal_type,
        limit=limit,
        offset=offset,
    )
    return FraudSignalListResponse(signals=signals, total=total, limit=limit, offset=offset)


@router.get("/users/{user_id}/risk", response_model=RiskScoreResponse)
async def user_risk(
    user_id: str,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    _foundry_user(db, current_user, user_id)
    return fraud_detection.calculate_risk_score(db, user_id)


@router.get("/users/{user_id}/limits", response_model=LimitsSummaryResponse)
async def user_limits(
    user_id: str,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    _foundry_user(db, current_user, user_id)
    return velocity.get_limits_summary(db, user_id)


@router.post("/users/{user_id}/limits/reset", response_model=LimitResetResponse)
async def reset_user_limits(
    user_id: str,
    reset: Optional[LimitReset] = None,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    _foundry_user(db, current_user, user_id)
    count = velocity.reset_limits(db, user_id, reset.limit_type if reset else None)
    log_security_event(
        "limits_reset",
        {"user_id": user_id, "admin_id": current_user.id, "rows": count},
        logger
    )
    return LimitResetResponse(reset=count)


@router.put("/users/{user_id}/tier", response_model=LimitsSummaryResponse)
async def upgrade_user_tier(
    user_id: str,
    upgrade: TierUpgrade,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Overwrites every limit amount with the tier's values."""
    _foundry_user(db, current_user, user_id)
    velocity.increase_limits(db, user_id, upgrade.tier)
    log_security_event(
        "limits_tier_changed",
        {"user_id": user_id, "admin_id": current_user.id, "tier": upgrade.tier},
        logger
    )
    return velocity.get_limits_summary(db, user_id)


@router.put("/users/{user_id}/limits", response_model=LimitsSummaryResponse)
async def set_user_limits(
    user_id: str,
    amounts: LimitAmounts,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    _foundry_user(db, current_user, user_id)
    velocity.set_limit_amounts(db, user_id, amounts.model_dump(exclude_none=True))
    log_security_event(
        "limits_changed",
        {"user_id": user_id, "admin_id": current_user.id},
        logger
    )
    return velocity.get_limits_summary(db, user_id)
