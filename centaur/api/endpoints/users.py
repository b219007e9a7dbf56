"""
User Management Endpoints

CRUD operations for users within a foundry.
All operations are scoped to the current foundry.

RBAC:
- List users: All authenticated users
- Get user: All authenticated users (own foundry only)
- Create user: Admin only
- Update user: Admin or self; role and is_active are admin-only
- Delete user: Admin only
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from centaur.database import get_db
from centaur.middleware.foundry import FoundryContext
from centaur.models.user import User, UserRole
from centaur.schemas.user import (
    UserResponse,
    UserCreate,
    UserUpdate,
    UserListResponse
)
from centaur.api.deps import (
    get_current_user,
    get_current_foundry,
    require_admin
)
from centaur.core.security import get_password_hash
from centaur.core.permissions import can_modify_user
from centaur.core.exceptions import ConflictError, UserNotFoundError
from centaur.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def _load_user(db: Session, foundry_id: str, user_id: str) -> User:
    user = db.query(User).filter(
        User.id == user_id,
        User.foundry_id == foundry_id  # CRITICAL: foundry isolation
    ).first()
    if not user:
        raise UserNotFoundError(user_id)
    return user


@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    role: UserRole = Query(None),
    is_active: bool = Query(None),
    current_user: User = Depends(get_current_user),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    """List users in the current foundry, filterable by role and status."""
    query = db.query(User).filter(User.foundry_id == foundry.id)

    if role:
        query = query.filter(User.role == role)
    if is_active is not None:
        query = query.filter(User.is_active == is_active)

    total = query.count()
    offset = (page - 1) * page_size
    users = query.order_by(User.created_at.asc()).offset(offset).limit(page_size).all()

    return UserListResponse(
        users=users,
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    current_user: User = Depends(get_current_user),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    return _load_user(db, foundry.id, user_id)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    current_user: User = Depends(require_admin),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    existing_user = db.query(User).filter(
        User.foundry_id == foundry.id,
        User.email == user_data.email
    ).first()

    if existing_user:
        raise ConflictError("User with this email already exists")

    new_user = User(
        foundry_id=foundry.id,
        email=user_data.email,
        hashed_password=get_password_hash(user_data.password),
        full_name=user_data.full_name,
        role=user_data.role,
        is_active=True
    )

    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    logger.info(f"User created: {new_user.id} by {current_user.id}")

    return new_user


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    user_data: UserUpdate,
    current_user: User = Depends(get_current_user),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    """
    Update user information.

    SECURITY: role and is_active changes require admin privileges, and
    admins cannot demote or deactivate themselves.
    """
    user = _load_user(db, foundry.id, user_id)

    if not can_modify_user(current_user, user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to modify this user"
        )

    update_data = user_data.model_dump(exclude_unset=True)

    privileged = {
        field for field in ("role", "is_active")
        if field in update_data and update_data[field] != getattr(user, field)
    }
    if privileged:
        if current_user.role != UserRole.ADMIN:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only admins can change user roles or status"
            )
        if user.id == current_user.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot change your own role or status"
            )

    if "email" in update_data and update_data["email"] != user.email:
        taken = db.query(User.id).filter(
            User.foundry_id == foundry.id,
            User.email == update_data["email"]
        ).first()
        if taken:
            raise ConflictError("User with this email already exists")

    for field, value in update_data.items():
        setattr(user, field, value)

    db.commit()
    db.refresh(user)

    if privileged:
        log_security_event(
            "user_privileges_changed",
            {"user_id": user.id, "changed_by": current_user.id, "fields": sorted(privileged)},
            logger
        )
    logger.info(f"User updated: {user.id} by {current_user.id}")

    return user


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    current_user: User = Depends(require_admin),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    """
    Hard delete. The last remaining admin cannot be removed.
    """
    user = _load_user(db, foundry.id, user_id)

    if user.id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete your own account"
        )

    if user.role == UserRole.ADMIN:
        admins = db.query(User).filter(
            User.foundry_id == foundry.id,
            User.role == UserRole.ADMIN
        ).count()
        if admins <= 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete the last admin"
            )

    db.delete(user)
    db.commit()

    logger.info(f"User deleted: {user_id} by {current_user.id}")

    return None
