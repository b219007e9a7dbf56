"""
Authentication Schemas

Request/response models for authentication endpoints.
"""
from pydantic import BaseModel, EmailStr, Field


class Token(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    """
    Login request body.

    Login is scoped to a foundry so the same email can exist in
    several foundries.
    """
    email: EmailStr
    password: str = Field(..., min_length=1)
    foundry_slug: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    """User registration request."""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    full_name: str = Field(..., min_length=1, max_length=255)
    foundry_slug: str = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "email": "maker@example.com",
                "password": "securepassword123",
                "full_name": "Ada Maker",
                "foundry_slug": "acme-works"
            }
        }
