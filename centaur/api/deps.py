"""
API Dependencies

Reusable FastAPI dependencies for authentication and authorization.
Every foundry-scoped endpoint goes through get_current_user, so the
token/foundry check below is enforced in one place.
"""
from typing import Optional
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from centaur.database import get_db
from centaur.middleware.foundry import FoundryContext
from centaur.models.user import User, UserRole
from centaur.core.security import decode_access_token, verify_token_foundry
from centaur.core.exceptions import AuthenticationError, FoundryIsolationError
from centaur.utils.logging import get_logger

logger = get_logger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer()


def get_current_foundry(request: Request) -> FoundryContext:
    """
    Get current foundry from request state.

    Set by FoundryMiddleware for every non-excluded path.

    CRITICAL: This is a key part of foundry isolation.
    """
    foundry = getattr(request.state, "foundry", None)
    if not foundry:
        logger.error("No foundry in request state - middleware may have failed")
        raise FoundryIsolationError("Foundry context not available")
    return foundry


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
    foundry: FoundryContext = Depends(get_current_foundry)
) -> User:
    """
    Get current authenticated user.

    1. Validates JWT token
    2. Verifies the token was issued for the request's foundry (CRITICAL)
    3. Loads the user from that foundry
    4. Checks user is active

    SECURITY: a valid token from one foundry is useless against another.
    """
    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise AuthenticationError("Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    if not verify_token_foundry(payload, foundry.id):
        logger.error(
            f"Foundry mismatch: token={payload.get('foundry_id')}, request={foundry.id}",
            extra={"user_id": user_id, "foundry_id": foundry.id}
        )
        raise FoundryIsolationError("Token foundry mismatch")

    user = db.query(User).filter(
        User.id == user_id,
        User.foundry_id == foundry.id
    ).first()

    if not user:
        logger.warning(f"User not found: {user_id} in foundry {foundry.id}")
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is inactive")

    return user


async def require_admin(
    current_user: User = Depends(get_current_user)
) -> User:
    """Use this dependency for admin-only endpoints."""
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return current_user


async def require_member(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Require member role or higher.

    Members and admins can access, viewers cannot.
    """
    if not current_user.has_permission(UserRole.MEMBER):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Member privileges required"
        )
    return current_user


def client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop, falling back to the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None
