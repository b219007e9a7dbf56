"""
Fraud Models

FraudSignal: a flagged pattern on a user, reviewed by foundry admins.
TransactionLimit: a user's running spend against one limit window.

Limits are keyed by user, not foundry. A user's spending history
follows them regardless of which foundry a transaction happens in.
"""
from sqlalchemy import (
    Column, String, DateTime, Float, ForeignKey, Index, JSON, UniqueConstraint
)
from datetime import datetime
from centaur.database import Base
import uuid


class FraudSignal(Base):
    __tablename__ = "fraud_signals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # velocity_violation, payment_failure, dispute_frequency, account_age_mismatch,
    # ip_pattern, device_pattern, suspicious_activity, manual_report
    signal_type = Column(String(40), nullable=False, index=True)
    severity = Column(String(20), nullable=False)  # low, medium, high, critical

    # NOTE: ip_address / device_fingerprint are copied to columns so
    # pattern checks don't need JSON containment queries
    details = Column(JSON, nullable=False, default=dict)
    ip_address = Column(String(64), nullable=True, index=True)
    device_fingerprint = Column(String(255), nullable=True, index=True)

    action_taken = Column(String(500), nullable=True)
    reviewed_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index('idx_fraud_signal_user_type', 'user_id', 'signal_type', 'created_at'),
    )

    def __repr__(self):
        return f"<FraudSignal {self.signal_type} severity={self.severity} user={self.user_id}>"

    @property
    def is_resolved(self) -> bool:
        return self.reviewed_by is not None


class TransactionLimit(Base):
    __tablename__ = "transaction_limits"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    limit_type = Column(String(20), nullable=False)  # per_transaction, daily, weekly, monthly
    limit_amount = Column(Float, nullable=False)     # 0 = unlimited
    current_amount = Column(Float, default=0, nullable=False)
    reset_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'limit_type', name='uq_transaction_limit_user_type'),
    )

    def __repr__(self):
        return f"<TransactionLimit {self.limit_type} {self.current_amount}/{self.limit_amount}>"
