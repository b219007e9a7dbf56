"""
Foundry Model

A foundry is the tenant: an organization whose users, objectives,
RFQs and retainers are isolated from every other foundry.

The marketplace is the one deliberate crossing point. Provider profiles
are visible to buyers in any foundry, and providers see RFQs from other
foundries only through broadcast records addressed to them.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from centaur.database import Base
import uuid


class Foundry(Base):
    __tablename__ = "foundries"

    # UUIDs avoid enumeration of foundry ids
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)

    # acme.centaur.app -> subdomain "acme"
    subdomain = Column(String(63), unique=True, nullable=False, index=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    plan = Column(String(20), default="free", nullable=False)  # free, team, enterprise

    # NULL = use the global default
    rate_limit_per_minute = Column(Integer, nullable=True)
    rate_limit_burst = Column(Integer, nullable=True)

    admin_email = Column(String(255), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    users = relationship("User", back_populates="foundry", cascade="all, delete-orphan")
    objectives = relationship("Objective", back_populates="foundry", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_foundry_active_subdomain', 'is_active', 'subdomain'),
    )

    def __repr__(self):
        return f"<Foundry {self.slug}>"
