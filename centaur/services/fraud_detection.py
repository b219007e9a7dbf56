"""
Fraud Detection Service

Pattern checks run before a transaction, stored fraud signals, and the
risk score admins review.

SCORING:
- Detection score: sum of weight x severity multiplier over the signals
  found by this check, capped at 100. Block at >= 80 or on any critical
  signal.
- Stored risk score: the same product over the last 90 days of signals,
  discounted by age and capped at 40 per signal type so one noisy check
  can't dominate.

SECURITY: detection results are never returned to the transacting user.
They only see the generic blocked message.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from centaur.core.exceptions import FraudSignalNotFoundError, InvalidInputError, UserNotFoundError
from centaur.core.sanitize import is_valid_uuid
from centaur.models.fraud import FraudSignal
from centaur.models.order import Dispute, EscrowStatus, Order
from centaur.models.user import User
from centaur.services import velocity
from centaur.utils.logging import get_logger, log_security_event
from centaur.utils.timeutils import days_between, utcnow

logger = get_logger(__name__)

SIGNAL_WEIGHTS = {
    "velocity_violation": 25,
    "payment_failure": 20,
    "dispute_frequency": 30,
    "account_age_mismatch": 15,
    "ip_pattern": 20,
    "device_pattern": 20,
    "suspicious_activity": 15,
    "manual_report": 35,
}
DEFAULT_SIGNAL_WEIGHT = 10

SEVERITY_MULTIPLIERS = {
    "low": 0.5,
    "medium": 1,
    "high": 1.5,
    "critical": 2,
}

BLOCK_SCORE = 80
TYPE_SCORE_CAP = 40
RISK_WINDOW_DAYS = 90

BLOCKED_MESSAGE = "Transaction blocked due to suspicious activity. Please contact support."


@dataclass
class DetectedSignal:
    signal_type: str
    severity: str
    details: Dict[str, Any]


@dataclass
class DetectionResult:
    signals: List[DetectedSignal]
    should_block: bool
    risk_score: int


@dataclass
class TransactionCheck:
    allowed: bool
    reason: Optional[str]
    risk_score: int


@dataclass
class RiskScore:
    score: int
    level: str
    factors: List[Dict[str, Any]] = field(default_factory=list)


def signal_weight(signal_type: str) -> int:
    return SIGNAL_WEIGHTS.get(signal_type, DEFAULT_SIGNAL_WEIGHT)


def format_signal_type(signal_type: str) -> str:
    """payment_failure -> Payment Failure"""
    return " ".join(word.capitalize() for word in signal_type.split("_"))


def risk_level(score: int) -> str:
    if score >= 80:
        return "critical"
    if score >= 60:
        return "high"
    if score >= 30:
        return "medium"
    return "low"


def recency_factor(created_at: datetime, now: Optional[datetime] = None) -> float:
    days = days_between(created_at, now or utcnow())
    if days <= 7:
        return 1
    if days <= 30:
        return 0.7
    if days <= 60:
        return 0.4
    return 0.2


def determine_severity(signal_type: str, details: Dict[str, Any]) -> str:
    """Severity for a signal flagged without an explicit one."""
    if signal_type == "velocity_violation":
        return "critical" if details.get("violations_count", 0) >= 5 else "high"
    if signal_type == "payment_failure":
        return "high" if details.get("failure_rate", 0) > 50 else "medium"
    if signal_type == "dispute_frequency":
        return "high" if details.get("dispute_count", 0) >= 5 else "medium"
    if signal_type == "manual_report":
        return "high"
    return "medium"


def score_detected_signals(signals: List[DetectedSignal]) -> int:
    score = sum(
        signal_weight(s.signal_type) * SEVERITY_MULTIPLIERS[s.severity]
        for s in signals
    )
    return min(round(score), 100)


# ---------------------------------------------------------------------------
# Individual checks. Each returns a DetectedSignal or None.
# ---------------------------------------------------------------------------

def check_account_age_mismatch(account_age_days: int, amount: float) -> Optional[DetectedSignal]:
    """Flag amounts above 80% of the single limit for the account's age."""
    single = velocity.TIER_LIMITS[velocity.tier_from_account_age(account_age_days)]["single"]
    if amount <= single * 0.8:
        return None

    return DetectedSignal(
        signal_type="account_age_mismatch",
        severity="high" if amount > single else "medium",
        details={
            "account_age_days": account_age_days,
            "attempted_amount": amount,
            "tier_single_limit": single,
            "message": (
                f"Account is {account_age_days} days old, attempting £{amount:.2f} "
                f"transaction (limit: £{single:.2f})"
            ),
        },
    )


def check_payment_failure_rate(db: Session, user_id: str, now: datetime) -> Optional[DetectedSignal]:
    since = now - timedelta(days=30)
    base = db.query(func.count(Order.id)).filter(
        Order.buyer_id == user_id,
        Order.created_at >= since,
    )
    total = base.scalar() or 0
    if total < 3:
        return None

    failed = base.filter(Order.escrow_status == EscrowStatus.FAILED.value).scalar() or 0
    rate = failed / total
    if rate <= 0.3:
        return None

    percent = round(rate * 100)
    return DetectedSignal(
        signal_type="payment_failure",
        severity="high" if rate > 0.5 else "medium",
        details={
            "total_orders": total,
            "failed_orders": failed,
            "failure_rate": percent,
            "period_days": 30,
            "message": f"{percent}% payment failure rate ({failed}/{total} orders)",
        },
    )


def check_dispute_frequency(db: Session, user_id: str, now: datetime) -> Optional[DetectedSignal]:
    since = now - timedelta(days=90)
    disputes = db.query(func.count(Dispute.id)).filter(
        Dispute.raised_by == user_id,
        Dispute.created_at >= since,
    ).scalar() or 0
    orders = db.query(func.count(Order.id)).filter(
        Order.buyer_id == user_id,
        Order.created_at >= since,
    ).scalar() or 0

    rate = disputes / orders if orders else 0
    if not (disputes >= 3 or (rate > 0.2 and orders >= 5)):
        return None

    percent = round(rate * 100)
    return DetectedSignal(
        signal_type="dispute_frequency",
        severity="high" if disputes >= 5 or rate > 0.4 else "medium",
        details={
            "dispute_count": disputes,
            "order_count": orders,
            "dispute_rate": percent,
            "period_days": 90,
            "message": f"{disputes} disputes in 90 days ({percent}% of orders)",
        },
    )


def check_velocity_violations(db: Session, user_id: str, now: datetime) -> Optional[DetectedSignal]:
    recent = db.query(func.count(FraudSignal.id)).filter(
        FraudSignal.user_id == user_id,
        FraudSignal.signal_type == "velocity_violation",
        FraudSignal.created_at >= now - timedelta(hours=24),
    ).scalar() or 0
    if recent < 2:
        return None

    return DetectedSignal(
        signal_type="velocity_violation",
        severity="critical" if recent >= 5 else "high",
        details={
            "recent_violations": recent,
            "violations_count": recent,
            "period_hours": 24,
            "message": f"{recent} velocity limit violations in last 24 hours",
        },
    )


def check_ip_pattern(db: Session, ip_address: str) -> Optional[DetectedSignal]:
    """
    NOTE: only looks at existing ip_pattern signals for this address.
    Multi-account IP tracking needs its own table.
    """
    existing = db.query(func.count(FraudSignal.id)).filter(
        FraudSignal.signal_type == "ip_pattern",
        FraudSignal.ip_address == ip_address,
    ).scalar() or 0
    if existing == 0:
        return None

    return DetectedSignal(
        signal_type="ip_pattern",
        severity="high" if existing >= 3 else "medium",
        details={
            "ip_address": ip_address,
            "existing_signals": existing,
            "message": f"IP address has {existing} existing fraud signals",
        },
    )


def check_device_pattern(db: Session, device_fingerprint: str) -> Optional[DetectedSignal]:
    existing = db.query(func.count(FraudSignal.id)).filter(
        FraudSignal.signal_type == "device_pattern",
        FraudSignal.device_fingerprint == device_fingerprint,
    ).scalar() or 0
    if existing == 0:
        return None

    return DetectedSignal(
        signal_type="device_pattern",
        severity="high" if existing >= 3 else "medium",
        details={
            "device_fingerprint": device_fingerprint,
            "existing_signals": existing,
            "message": f"Device has {existing} existing fraud signals",
        },
    )


def detect_fraud_signals(
    db: Session,
    user_id: str,
    amount: Optional[float] = None,
    ip_address: Optional[str] = None,
    device_fingerprint: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DetectionResult:
    """Run every check for one user action."""
    now = now or utcnow()
    user = db.query(User).filter(User.id == user_id).first()
    age = days_between(user.created_at, now) if user else 0

    candidates = []
    if amount and amount > 0:
        candidates.append(check_account_age_mismatch(age, amount))
    candidates.append(check_payment_failure_rate(db, user_id, now))
    candidates.append(check_dispute_frequency(db, user_id, now))
    candidates.append(check_velocity_violations(db, user_id, now))
    if ip_address:
        candidates.append(check_ip_pattern(db, ip_address))
    if device_fingerprint:
        candidates.append(check_device_pattern(db, device_fingerprint))

    signals = [s for s in candidates if s is not None]
    score = score_detected_signals(signals)
    should_block = score >= BLOCK_SCORE or any(s.severity == "critical" for s in signals)

    return DetectionResult(signals=signals, should_block=should_block, risk_score=score)


def flag_suspicious_activity(
    db: Session,
    user_id: str,
    signal_type: str,
    details: Dict[str, Any],
    severity: Optional[str] = None,
) -> FraudSignal:
    """Store a fraud signal. Severity is derived from the details when omitted."""
    if severity is not None and severity not in SEVERITY_MULTIPLIERS:
        raise InvalidInputError(f"Invalid severity: {severity}")

    signal = FraudSignal(
        user_id=user_id,
        signal_type=signal_type,
        severity=severity or determine_severity(signal_type, details),
        details=details,
        ip_address=details.get("ip_address"),
        device_fingerprint=details.get("device_fingerprint"),
    )
    db.add(signal)
    db.commit()
    db.refresh(signal)

    logger.info(
        f"Fraud signal {signal.signal_type} ({signal.severity}) for user {user_id}",
        extra={"user_id": user_id, "event_type": "fraud_signal"},
    )
    return signal


def calculate_risk_score(db: Session, user_id: str, now: Optional[datetime] = None) -> RiskScore:
    """Risk over the last 90 days of stored signals."""
    now = now or utcnow()
    signals = db.query(FraudSignal).filter(
        FraudSignal.user_id == user_id,
        FraudSignal.created_at >= now - timedelta(days=RISK_WINDOW_DAYS),
    ).order_by(FraudSignal.created_at.desc()).all()

    if not signals:
        return RiskScore(score=0, level="low", factors=[])

    by_type: Dict[str, List[FraudSignal]] = {}
    for signal in signals:
        by_type.setdefault(signal.signal_type, []).append(signal)

    total = 0.0
    factors = []
    for signal_type, typed in by_type.items():
        weight = signal_weight(signal_type)
        type_score = sum(
            weight * SEVERITY_MULTIPLIERS.get(s.severity, 1) * recency_factor(s.created_at, now)
            for s in typed
        )
        type_score = min(type_score, TYPE_SCORE_CAP)
        total += type_score

        if type_score > 0:
            factors.append({
                "type": signal_type,
                "weight": round(type_score),
                "description": f"{len(typed)} {format_signal_type(signal_type)} signal(s)",
            })

    score = min(round(total), 100)
    factors.sort(key=lambda f: f["weight"], reverse=True)
    return RiskScore(score=score, level=risk_level(score), factors=factors)


def check_transaction(
    db: Session,
    user_id: str,
    action: str,
    amount: Optional[float] = None,
    ip_address: Optional[str] = None,
    device_fingerprint: Optional[str] = None,
) -> TransactionCheck:
    """
    Gate for money-moving actions.

    1. Detect and store signals.
    2. Block on a high detection score or a critical signal.
    3. Otherwise check velocity limits; a refusal is itself flagged.
    """
    result = detect_fraud_signals(db, user_id, amount, ip_address, device_fingerprint)

    for signal in result.signals:
        flag_suspicious_activity(db, user_id, signal.signal_type, signal.details, signal.severity)

    if result.should_block:
        log_security_event(
            "transaction_blocked",
            {"user_id": user_id, "action": action, "risk_score": result.risk_score},
            logger,
        )
        return TransactionCheck(allowed=False, reason=BLOCKED_MESSAGE, risk_score=result.risk_score)

    if amount and amount > 0:
        limit_check = velocity.check_limit_availability(db, user_id, amount)
        if not limit_check.allowed:
            flag_suspicious_activity(db, user_id, "velocity_violation", {
                "amount": amount,
                "reason": limit_check.reason,
            })
            log_security_event(
                "velocity_violation",
                {"user_id": user_id, "action": action, "amount": amount},
                logger,
            )
            return TransactionCheck(allowed=False, reason=limit_check.reason, risk_score=result.risk_score)

    return TransactionCheck(allowed=True, reason=None, risk_score=result.risk_score)


def report_suspicious_activity(
    db: Session,
    reporter: User,
    user_id: str,
    reason: str,
    details: Optional[Dict[str, Any]] = None,
) -> FraudSignal:
    """Any authenticated user may report another user."""
    if not reason or not reason.strip():
        raise InvalidInputError("A reason is required")
    if not is_valid_uuid(user_id):
        raise InvalidInputError("Invalid user id")
    if not db.query(User.id).filter(User.id == user_id).first():
        raise UserNotFoundError(user_id)

    payload = dict(details or {})
    payload.update({"reported_by": reporter.id, "reason": reason.strip()})

    signal = flag_suspicious_activity(db, user_id, "manual_report", payload)
    log_security_event(
        "fraud_report",
        {"user_id": user_id, "reported_by": reporter.id},
        logger,
    )
    return signal


def list_signals(
    db: Session,
    user_id: str,
    severities: Optional[List[str]] = None,
    signal_types: Optional[List[str]] = None,
    limit: int = 20,
    offset: int = 0,
):
    query = db.query(FraudSignal).filter(FraudSignal.user_id == user_id)
    if severities:
        query = query.filter(FraudSignal.severity.in_(severities))
    if signal_types:
        query = query.filter(FraudSignal.signal_type.in_(signal_types))

    total = query.count()
    signals = query.order_by(FraudSignal.created_at.desc()).offset(offset).limit(limit).all()
    return signals, total


def clear_signal(db: Session, admin: User, signal_id: str, reason: str) -> FraudSignal:
    signal = db.query(FraudSignal).join(User, User.id == FraudSignal.user_id).filter(
        FraudSignal.id == signal_id,
        User.foundry_id == admin.foundry_id,
    ).first()
    if not signal:
        raise FraudSignalNotFoundError(signal_id)
    if not reason or not reason.strip():
        raise InvalidInputError("A reason is required")

    signal.action_taken = f"Cleared: {reason.strip()}"
    signal.reviewed_by = admin.id
    signal.reviewed_at = utcnow()
    db.commit()
    db.refresh(signal)

    logger.info(f"Fraud signal {signal.id} cleared by {admin.id}", extra={"user_id": signal.user_id})
    return signal


def high_risk_users(db: Session, foundry_id: str, limit: int = 20) -> List[Dict[str, Any]]:
    """Users in the foundry with the most unresolved signals."""
    rows = db.query(
        FraudSignal.user_id,
        func.count(FraudSignal.id).label("signal_count"),
        func.max(FraudSignal.created_at).label("latest"),
    ).join(User, User.id == FraudSignal.user_id).filter(
        User.foundry_id == foundry_id,
        FraudSignal.reviewed_by.is_(None),
    ).group_by(FraudSignal.user_id).order_by(
        func.count(FraudSignal.id).desc()
    ).limit(limit).all()

    users = {
        u.id: u for u in db.query(User).filter(User.id.in_([r.user_id for r in rows])).all()
    } if rows else {}

    return [
        {
            "user_id": row.user_id,
            "full_name": users[row.user_id].full_name if row.user_id in users else None,
            "email": users[row.user_id].email if row.user_id in users else "Unknown",
            "signal_count": row.signal_count,
            "latest_signal_at": row.latest,
        }
        for row in rows
    ]
