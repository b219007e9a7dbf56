"""
Permission System (RBAC)

Role hierarchy ADMIN > MEMBER > VIEWER, plus the ownership rules the
marketplace needs: buyers act on their RFQs and retainers, providers
act on their own responses and timesheets.

Row ownership checks live here so endpoints and services share one
definition of "who may touch this row".
"""
from typing import Optional
from centaur.core.exceptions import PermissionDenied
from centaur.models.user import User, UserRole


def require_role(user: User, required_role: UserRole) -> None:
    """Raise PermissionDenied unless ``user`` has at least ``required_role``."""
    if not user.has_permission(required_role):
        raise PermissionDenied(
            detail=f"This action requires {required_role.value} role or higher"
        )


def require_admin(user: User) -> None:
    require_role(user, UserRole.ADMIN)


def require_member(user: User) -> None:
    require_role(user, UserRole.MEMBER)


def can_modify_user(current_user: User, target_user: User) -> bool:
    """Admins can modify anyone in their foundry; users can modify themselves."""
    if current_user.role == UserRole.ADMIN:
        return True
    return current_user.id == target_user.id


def can_delete_objective(current_user: User, owner_id: Optional[str]) -> bool:
    """Admins delete anything, members delete their own, viewers nothing."""
    if current_user.role == UserRole.ADMIN:
        return True
    if current_user.role == UserRole.VIEWER:
        return False
    return current_user.id == owner_id


def can_modify_objective(current_user: User, owner_id: Optional[str]) -> bool:
    """
    Members may edit any objective in the foundry (collaborative
    planning). Viewers are read-only.
    """
    return current_user.role != UserRole.VIEWER


def require_buyer(user: User, buyer_id: str, action: str = "perform this action") -> None:
    if user.id != buyer_id:
        raise PermissionDenied(f"Only the buyer can {action}")


def require_provider_owner(user: User, provider_user_id: str, action: str = "perform this action") -> None:
    if user.id != provider_user_id:
        raise PermissionDenied(f"Only the provider can {action}")


def require_party(user: User, buyer_id: str, provider_user_id: str) -> None:
    """Buyer or provider of a retainer or order."""
    if user.id not in (buyer_id, provider_user_id):
        raise PermissionDenied("Not authorized")
