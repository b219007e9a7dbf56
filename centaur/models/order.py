"""
Order and Dispute Models

An order is a one-off purchase from a provider. Funds move through
escrow held by the external payment processor; this service only
tracks escrow state. Orders and disputes feed fraud detection
(payment failure rate, dispute frequency).
"""
from sqlalchemy import Column, String, Text, DateTime, Float, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from centaur.database import Base
import enum
import uuid


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EscrowStatus(str, enum.Enum):
    PENDING = "pending"
    HELD = "held"
    RELEASED = "released"
    FAILED = "failed"
    REFUNDED = "refunded"


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    foundry_id = Column(
        String(36),
        ForeignKey("foundries.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    buyer_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    provider_id = Column(
        String(36),
        ForeignKey("provider_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    rfq_id = Column(String(36), ForeignKey("rfqs.id", ondelete="SET NULL"), nullable=True)

    description = Column(Text, nullable=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="GBP", nullable=False)

    status = Column(String(20), default=OrderStatus.PENDING.value, nullable=False, index=True)
    escrow_status = Column(String(20), default=EscrowStatus.PENDING.value, nullable=False)
    payment_intent_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    provider = relationship("ProviderProfile")
    disputes = relationship("Dispute", back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_order_buyer_created', 'buyer_id', 'created_at'),
    )

    def __repr__(self):
        return f"<Order {self.id} {self.amount} {self.currency} status={self.status}>"


class Dispute(Base):
    __tablename__ = "disputes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    raised_by = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    reason = Column(Text, nullable=False)
    status = Column(String(20), default="open", nullable=False)  # open, resolved

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    order = relationship("Order", back_populates="disputes")

    def __repr__(self):
        return f"<Dispute order={self.order_id} status={self.status}>"
