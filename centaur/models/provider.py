"""
Provider Profile Model

A user's marketplace identity. At most one per user, visible across
foundries. Responding to RFQs and accepting retainers both require an
active, non-suspended profile.
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime, Float, Integer, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from centaur.database import Base
import enum
import uuid


class SupplierTier(str, enum.Enum):
    """
    VERIFIED_PARTNER: sees broadcasts first
    APPROVED: sees broadcasts after the tier delay
    PENDING: onboarding, still receives broadcasts
    SUSPENDED: excluded from broadcasts and matching
    """
    VERIFIED_PARTNER = "verified_partner"
    APPROVED = "approved"
    PENDING = "pending"
    SUSPENDED = "suspended"


class ProviderProfile(Base):
    __tablename__ = "provider_profiles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )

    # Home foundry of the provider; not an isolation boundary for the marketplace
    foundry_id = Column(
        String(36),
        ForeignKey("foundries.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    display_name = Column(String(255), nullable=False)
    headline = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)

    tier = Column(String(20), default=SupplierTier.PENDING.value, nullable=False, index=True)

    # IANA time zone name, drives the 09:00 local broadcast window
    timezone = Column(String(64), default="UTC", nullable=False)

    hourly_rate = Column(Float, nullable=True)
    day_rate = Column(Float, nullable=True)
    currency = Column(String(3), default="GBP", nullable=False)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Badge inputs, maintained by order and review workflows
    avg_response_time_hours = Column(Float, nullable=True)
    messages_received = Column(Integer, default=0, nullable=False)
    rating = Column(Float, nullable=True)
    review_count = Column(Integer, default=0, nullable=False)
    completed_orders = Column(Integer, default=0, nullable=False)
    on_time_rate = Column(Float, nullable=True)
    completion_rate = Column(Float, nullable=True)

    # Payment processor account, set by the onboarding webhook
    stripe_account_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="provider_profile")

    __table_args__ = (
        Index('idx_provider_active_tier', 'is_active', 'tier'),
    )

    def __repr__(self):
        return f"<ProviderProfile {self.display_name} tier={self.tier}>"

    @property
    def can_respond(self) -> bool:
        return self.is_active and self.tier != SupplierTier.SUSPENDED.value
