"""
Retainer and Timesheet Models

A retainer is a weekly hours commitment between a buyer and a provider.
The provider logs hours on one timesheet per week; the buyer approves
or disputes; an approved week is billed and marked paid.

Retainer status:  pending -> active <-> paused -> cancelled
Timesheet status: draft -> submitted -> approved -> paid
                                     -> disputed
"""
from sqlalchemy import (
    Column, String, Text, Date, DateTime, Float, Integer, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime
from centaur.database import Base
import enum
import uuid


class RetainerStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class TimesheetStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    DISPUTED = "disputed"
    PAID = "paid"


class Retainer(Base):
    __tablename__ = "retainers"

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

    title = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)

    weekly_hours = Column(Integer, nullable=False)  # 10, 20 or 40
    # Rate before and after the commitment discount
    base_hourly_rate = Column(Float, nullable=False)
    hourly_rate = Column(Float, nullable=False)
    currency = Column(String(3), default="GBP", nullable=False)

    status = Column(String(20), default=RetainerStatus.PENDING.value, nullable=False, index=True)

    started_at = Column(DateTime, nullable=True)
    paused_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_effective = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    provider = relationship("ProviderProfile")
    timesheets = relationship(
        "TimesheetEntry",
        back_populates="retainer",
        cascade="all, delete-orphan",
        order_by="TimesheetEntry.week_start.desc()"
    )

    __table_args__ = (
        Index('idx_retainer_buyer_status', 'buyer_id', 'status'),
        Index('idx_retainer_provider_status', 'provider_id', 'status'),
    )

    def __repr__(self):
        return f"<Retainer {self.id} {self.weekly_hours}h/wk status={self.status}>"


class TimesheetEntry(Base):
    __tablename__ = "timesheet_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    retainer_id = Column(
        String(36),
        ForeignKey("retainers.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    week_start = Column(Date, nullable=False)  # always a Monday
    hours_logged = Column(Float, default=0, nullable=False)
    description = Column(Text, nullable=True)

    status = Column(String(20), default=TimesheetStatus.DRAFT.value, nullable=False, index=True)

    submitted_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    disputed_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    payment_intent_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    retainer = relationship("Retainer", back_populates="timesheets")

    __table_args__ = (
        UniqueConstraint('retainer_id', 'week_start', name='uq_timesheet_retainer_week'),
    )

    def __repr__(self):
        return f"<TimesheetEntry {self.week_start} {self.hours_logged}h status={self.status}>"
