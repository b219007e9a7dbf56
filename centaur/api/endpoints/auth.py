"""
Marketplace Sign-in

Buyers and providers both sign in through their home foundry; the
foundry slug in the body picks which account an email refers to. New
accounts join a foundry as members and can open a provider profile
afterwards.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from datetime import timedelta
from typing import Optional

from centaur.database import get_db
from centaur.models.user import User, UserRole
from centaur.models.foundry import Foundry
from centaur.schemas.auth import LoginRequest, Token, RegisterRequest
from centaur.schemas.user import UserResponse
from centaur.core.security import (
    verify_password,
    get_password_hash,
    create_access_token
)
from centaur.core.exceptions import (
    AuthenticationError,
    ConflictError,
    FoundryNotFoundError,
    InvalidInputError,
)
from centaur.config import get_settings
from centaur.utils.logging import log_security_event, get_logger
from centaur.utils.timeutils import utcnow

logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/auth", tags=["authentication"])

GENERIC_LOGIN_FAILURE = "Invalid credentials"


def _foundry_by_slug(db: Session, slug: str) -> Optional[Foundry]:
    return db.query(Foundry).filter(Foundry.slug == slug).first()


def _account_in(db: Session, foundry_id: str, email: str) -> Optional[User]:
    return db.query(User).filter(
        User.foundry_id == foundry_id,
        User.email == email
    ).first()


def _refuse_sign_in(reason: str, detail: str, **context) -> AuthenticationError:
    log_security_event("failed_login", {"reason": reason, **context}, logger)
    return AuthenticationError(detail)


@router.post("/login", response_model=Token)
async def login(
    credentials: LoginRequest,
    db: Session = Depends(get_db)
):
    """
    Exchange marketplace credentials for a bearer token.

    The token carries the account id and its home foundry; every
    foundry-scoped route compares that foundry with the request's.

    SECURITY: unknown foundries, unknown emails and bad passwords all
    answer "Invalid credentials".
    """
    foundry = _foundry_by_slug(db, credentials.foundry_slug)
    if foundry is None:
        raise _refuse_sign_in("foundry_not_found", GENERIC_LOGIN_FAILURE, foundry_slug=credentials.foundry_slug)
    if not foundry.is_active:
        raise _refuse_sign_in("foundry_inactive", "Foundry account is inactive", foundry_id=foundry.id)

    account = _account_in(db, foundry.id, credentials.email)
    if account is None:
        raise _refuse_sign_in(
            "user_not_found", GENERIC_LOGIN_FAILURE, email=credentials.email, foundry_id=foundry.id
        )
    if not verify_password(credentials.password, account.hashed_password):
        raise _refuse_sign_in("invalid_password", GENERIC_LOGIN_FAILURE, user_id=account.id, foundry_id=foundry.id)
    # Checked after the password so a suspended account is not revealed to guessers
    if not account.is_active:
        raise _refuse_sign_in("user_inactive", "User account is inactive", user_id=account.id)

    access_token = create_access_token(
        {"sub": account.id, "foundry_id": foundry.id, "email": account.email},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )

    # Fraud velocity tiers read account age, not sign-in history
    account.last_login_at = utcnow()
    db.commit()

    logger.info(
        f"Marketplace sign-in: account={account.id} foundry={foundry.slug}",
        extra={"foundry_id": foundry.id}
    )
    return Token(access_token=access_token, token_type="bearer")


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    registration: RegisterRequest,
    db: Session = Depends(get_db)
):
    """
    Open a buyer account in a foundry.

    Everyone starts as an unverified member. Selling on the marketplace
    takes a provider profile, created separately once signed in.
    """
    foundry = _foundry_by_slug(db, registration.foundry_slug)
    if foundry is None:
        raise FoundryNotFoundError()
    if not foundry.is_active:
        raise InvalidInputError("Foundry is not accepting new registrations")

    if _account_in(db, foundry.id, registration.email) is not None:
        raise ConflictError("User with this email already exists in this foundry")

    account = User(
        foundry_id=foundry.id,
        email=registration.email,
        hashed_password=get_password_hash(registration.password),
        full_name=registration.full_name,
        role=UserRole.MEMBER,
        is_active=True,
        is_verified=False
    )
    db.add(account)
    db.commit()
    db.refresh(account)

    logger.info(
        f"Buyer account opened: {account.id} in foundry {foundry.slug}",
        extra={"foundry_id": foundry.id}
    )
    return account
