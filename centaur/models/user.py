"""
User Model

Users belong to exactly one foundry and have a role within it.

IMPORTANT: foundry_id is the isolation key. Every query for users MUST
filter by foundry_id.

created_at doubles as the account age used by velocity limits and
fraud detection.
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from centaur.database import Base
import uuid
import enum


class UserRole(str, enum.Enum):
    """
    ADMIN: manages users, reviews fraud signals, confirms payments
    MEMBER: creates objectives, RFQs, retainers, responses
    VIEWER: read-only access to foundry data
    """
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


ROLE_HIERARCHY = {
    UserRole.VIEWER: 1,
    UserRole.MEMBER: 2,
    UserRole.ADMIN: 3,
}


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    foundry_id = Column(
        String(36),
        ForeignKey("foundries.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    email = Column(String(255), nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)

    role = Column(
        SQLEnum(UserRole),
        default=UserRole.MEMBER,
        nullable=False,
        index=True
    )

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    is_verified = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    foundry = relationship("Foundry", back_populates="users")
    provider_profile = relationship(
        "ProviderProfile", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        # Same email may exist in different foundries
        Index('idx_user_foundry_email', 'foundry_id', 'email', unique=True),
        Index('idx_user_foundry_active', 'foundry_id', 'is_active'),
        Index('idx_user_foundry_role', 'foundry_id', 'role'),
    )

    def __repr__(self):
        return f"<User {self.email} (foundry={self.foundry_id})>"

    @property
    def provider_profile_id(self):
        return self.provider_profile.id if self.provider_profile else None

    def has_permission(self, required_role: UserRole) -> bool:
        """Simple hierarchy: ADMIN > MEMBER > VIEWER."""
        return ROLE_HIERARCHY[self.role] >= ROLE_HIERARCHY[required_role]
