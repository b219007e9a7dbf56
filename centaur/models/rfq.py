"""
RFQ Models

RFQ: a buyer's request for quotation, owned by the buyer's foundry.
RFQResponse: one provider's answer (accept, decline, info request).
RFQBroadcast: when a given provider is shown the RFQ.

Status lifecycle:
    Open -> Bidding -> (priority_hold <-> Bidding) -> Awarded
    Open | Bidding -> Closed
    any but Awarded -> cancelled

Enforced by unique constraints:
- one response per (rfq_id, provider_id)
- one broadcast per (rfq_id, provider_id)
"""
from sqlalchemy import (
    Column, String, Text, DateTime, Float, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime
from centaur.database import Base
import enum
import uuid


class RFQType(str, enum.Enum):
    COMMODITY = "commodity"  # first accept wins outright
    CUSTOM = "custom"        # first accept gets a priority hold
    SERVICE = "service"      # buyer always chooses


class RFQStatus(str, enum.Enum):
    OPEN = "Open"
    BIDDING = "Bidding"
    AWARDED = "Awarded"
    CLOSED = "Closed"
    PRIORITY_HOLD = "priority_hold"
    CANCELLED = "cancelled"


class ResponseType(str, enum.Enum):
    ACCEPT = "accept"
    INFO_REQUEST = "info_request"
    DECLINE = "decline"


class Urgency(str, enum.Enum):
    URGENT = "urgent"
    STANDARD = "standard"


RFQ_CATEGORIES = (
    "Raw Materials",
    "Components",
    "Electronics",
    "Packaging",
    "Tools & Equipment",
    "Safety Equipment",
    "Office Supplies",
    "Custom Manufacturing",
    "Prototyping",
    "Assembly Services",
    "Quality Testing",
    "Logistics",
    "Other",
)

ACCEPTING_RESPONSES = (RFQStatus.OPEN.value, RFQStatus.BIDDING.value)


class RFQ(Base):
    __tablename__ = "rfqs"

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

    title = Column(String(255), nullable=False)
    specifications = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    budget_min = Column(Float, nullable=True)
    budget_max = Column(Float, nullable=True)
    deadline = Column(DateTime, nullable=True)

    rfq_type = Column(String(20), default=RFQType.COMMODITY.value, nullable=False)
    urgency = Column(String(20), default=Urgency.STANDARD.value, nullable=False)
    status = Column(String(20), default=RFQStatus.OPEN.value, nullable=False, index=True)

    race_opens_at = Column(DateTime, nullable=True)

    awarded_to = Column(
        String(36),
        ForeignKey("provider_profiles.id", ondelete="SET NULL"),
        nullable=True
    )
    awarded_at = Column(DateTime, nullable=True)

    priority_holder_id = Column(
        String(36),
        ForeignKey("provider_profiles.id", ondelete="SET NULL"),
        nullable=True
    )
    priority_hold_expires_at = Column(DateTime, nullable=True)

    closed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    responses = relationship(
        "RFQResponse",
        back_populates="rfq",
        cascade="all, delete-orphan",
        order_by="RFQResponse.responded_at"
    )
    broadcasts = relationship(
        "RFQBroadcast",
        back_populates="rfq",
        cascade="all, delete-orphan",
        order_by="RFQBroadcast.scheduled_at"
    )

    __table_args__ = (
        Index('idx_rfq_foundry_status', 'foundry_id', 'status'),
        Index('idx_rfq_buyer', 'buyer_id', 'created_at'),
    )

    def __repr__(self):
        return f"<RFQ {self.title} status={self.status} (foundry={self.foundry_id})>"

    @property
    def is_accepting_responses(self) -> bool:
        return self.status in ACCEPTING_RESPONSES


class RFQResponse(Base):
    __tablename__ = "rfq_responses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    rfq_id = Column(
        String(36),
        ForeignKey("rfqs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    provider_id = Column(
        String(36),
        ForeignKey("provider_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    response_type = Column(String(20), nullable=False)
    quoted_price = Column(Float, nullable=True)
    message = Column(Text, nullable=True)

    responded_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    rfq = relationship("RFQ", back_populates="responses")
    provider = relationship("ProviderProfile")

    __table_args__ = (
        # A provider answers an RFQ exactly once
        UniqueConstraint('rfq_id', 'provider_id', name='uq_rfq_response_provider'),
        Index('idx_rfq_response_type', 'rfq_id', 'response_type'),
    )

    def __repr__(self):
        return f"<RFQResponse {self.response_type} rfq={self.rfq_id} provider={self.provider_id}>"


class RFQBroadcast(Base):
    __tablename__ = "rfq_broadcasts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    rfq_id = Column(
        String(36),
        ForeignKey("rfqs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    provider_id = Column(
        String(36),
        ForeignKey("provider_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    scheduled_at = Column(DateTime, nullable=False)
    delivered_at = Column(DateTime, nullable=True)
    viewed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    rfq = relationship("RFQ", back_populates="broadcasts")

    __table_args__ = (
        UniqueConstraint('rfq_id', 'provider_id', name='uq_rfq_broadcast_provider'),
        Index('idx_broadcast_provider_scheduled', 'provider_id', 'scheduled_at'),
    )

    def __repr__(self):
        return f"<RFQBroadcast rfq={self.rfq_id} provider={self.provider_id} at={self.scheduled_at}>"
