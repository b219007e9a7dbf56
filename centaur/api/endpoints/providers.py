"""
Provider Profile Endpoints

A user's marketplace identity. Profiles are visible across foundries;
tier changes are made by an admin of the provider's home foundry.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from centaur.database import get_db
from centaur.models.user import User
from centaur.schemas.provider import (
    BadgeEligibilityResponse,
    ProviderProfileCreate,
    ProviderProfileResponse,
    ProviderProfileUpdate,
    ProviderTierUpdate,
)
from centaur.api.deps import get_current_user, require_admin
from centaur.services import providers as provider_service

router = APIRouter(prefix="/providers", tags=["providers"])


@router.post("/me", response_model=ProviderProfileResponse, status_code=status.HTTP_201_CREATED)
async def create_my_profile(
    profile_data: ProviderProfileCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Starts in the pending tier until an admin approves it."""
    return provider_service.create_profile(db, current_user, profile_data.model_dump(exclude_unset=True))


@router.get("/me", response_model=ProviderProfileResponse)
async def get_my_profile(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return provider_service.get_my_profile(db, current_user)


@router.patch("/me", response_model=ProviderProfileResponse)
async def update_my_profile(
    profile_data: ProviderProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return provider_service.update_my_profile(db, current_user, profile_data.model_dump(exclude_unset=True))


@router.get("/me/badges", response_model=list[BadgeEligibilityResponse])
async def get_my_badges(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    profile = provider_service.get_my_profile(db, current_user)
    return provider_service.evaluate_badges(profile)


@router.get("/{provider_id}", response_model=ProviderProfileResponse)
async def get_provider(
    provider_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return provider_service.get_profile(db, provider_id)


@router.get("/{provider_id}/badges", response_model=list[BadgeEligibilityResponse])
async def get_provider_badges(
    provider_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    profile = provider_service.get_profile(db, provider_id)
    return provider_service.evaluate_badges(profile)


@router.put("/{provider_id}/tier", response_model=ProviderProfileResponse)
async def set_provider_tier(
    provider_id: str,
    tier_data: ProviderTierUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return provider_service.set_tier(db, current_user, provider_id, tier_data.tier)
