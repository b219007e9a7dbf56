"""
User Schemas

Foundry members. A user who also sells on the marketplace has a
provider profile; its id is surfaced here so clients can tell buyers
and providers apart without a second request.
"""
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime
from centaur.models.user import UserRole


def _clean_name(value):
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError("Full name cannot be blank")
    return value


class UserBase(BaseModel):
    email: EmailStr
    full_name: Optional[str] = Field(None, max_length=255)


class UserCreate(UserBase):
    """Admin-created user. Password is set by the admin and changed on first login."""
    password: str = Field(..., min_length=8, max_length=100)
    role: UserRole = UserRole.MEMBER

    @field_validator("full_name")
    @classmethod
    def check_full_name(cls, v):
        return _clean_name(v)


class UserUpdate(BaseModel):
    """role and is_active are admin-only; see the users endpoint."""
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(None, max_length=255)
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None

    @field_validator("full_name")
    @classmethod
    def check_full_name(cls, v):
        return _clean_name(v)


class UserResponse(UserBase):
    id: str
    foundry_id: str
    role: UserRole
    is_active: bool
    is_verified: bool
    provider_profile_id: Optional[str] = None
    created_at: datetime
    last_login_at: Optional[datetime]

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    users: list[UserResponse]
    total: int
    page: int
    page_size: int
