"""
Shared fixtures.

Settings are cached on first import, so the environment is pinned
before anything from centaur is imported.
"""
import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="centaur-tests-")

os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["ENVIRONMENT"] = "testing"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import centaur.models  # noqa: E402,F401
from centaur.database import Base, SessionLocal, engine  # noqa: E402
from centaur.core.security import create_access_token, get_password_hash  # noqa: E402
from centaur.middleware.foundry import foundry_cache  # noqa: E402
from centaur.models.foundry import Foundry  # noqa: E402
from centaur.models.provider import ProviderProfile, SupplierTier  # noqa: E402
from centaur.models.rfq import RFQ, RFQStatus, RFQType, Urgency  # noqa: E402
from centaur.models.user import User, UserRole  # noqa: E402
from centaur.utils.timeutils import utcnow  # noqa: E402

PASSWORD = "correct-horse-battery"

# One hash for every fixture user; bcrypt is slow on purpose
_PASSWORD_HASH = get_password_hash(PASSWORD)


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    foundry_cache.clear()
    yield
    foundry_cache.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def make_foundry(db, slug: str, **kwargs) -> Foundry:
    foundry = Foundry(
        name=kwargs.pop("name", slug.title()),
        slug=slug,
        subdomain=kwargs.pop("subdomain", slug),
        admin_email=kwargs.pop("admin_email", f"admin@{slug}.com"),
        **kwargs
    )
    db.add(foundry)
    db.commit()
    db.refresh(foundry)
    return foundry


def make_user(db, foundry: Foundry, email: str, role: UserRole = UserRole.MEMBER, **kwargs) -> User:
    user = User(
        foundry_id=foundry.id,
        email=email,
        hashed_password=_PASSWORD_HASH,
        full_name=kwargs.pop("full_name", email.split("@")[0].title()),
        role=role,
        **kwargs
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_provider(db, user: User, tier: str = SupplierTier.VERIFIED_PARTNER.value, **kwargs) -> ProviderProfile:
    profile = ProviderProfile(
        user_id=user.id,
        foundry_id=user.foundry_id,
        display_name=kwargs.pop("display_name", user.full_name),
        tier=tier,
        timezone=kwargs.pop("timezone", "UTC"),
        hourly_rate=kwargs.pop("hourly_rate", 50.0),
        **kwargs
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def make_rfq(db, buyer: User, rfq_type: str = RFQType.COMMODITY.value, **kwargs) -> RFQ:
    """An RFQ already in Bidding with the race open."""
    rfq = RFQ(
        foundry_id=buyer.foundry_id,
        buyer_id=buyer.id,
        title=kwargs.pop("title", "100 brass fittings"),
        rfq_type=rfq_type,
        urgency=kwargs.pop("urgency", Urgency.URGENT.value),
        status=kwargs.pop("status", RFQStatus.BIDDING.value),
        race_opens_at=kwargs.pop("race_opens_at", utcnow() - timedelta(minutes=1)),
        **kwargs
    )
    db.add(rfq)
    db.commit()
    db.refresh(rfq)
    return rfq


def token_for(user: User) -> str:
    return create_access_token({"sub": user.id, "foundry_id": user.foundry_id, "email": user.email})


def auth_headers(user: User, foundry: Foundry) -> dict:
    return {
        "Authorization": f"Bearer {token_for(user)}",
        "X-Foundry-Slug": foundry.slug,
    }


@pytest.fixture
def foundry(db):
    return make_foundry(db, "acme")


@pytest.fixture
def other_foundry(db):
    return make_foundry(db, "globex")


@pytest.fixture
def admin(db, foundry):
    return make_user(db, foundry, "admin@acme.com", UserRole.ADMIN)


@pytest.fixture
def member(db, foundry):
    return make_user(db, foundry, "buyer@acme.com", UserRole.MEMBER)


@pytest.fixture
def viewer(db, foundry):
    return make_user(db, foundry, "viewer@acme.com", UserRole.VIEWER)


@pytest.fixture
def supplier(db, other_foundry):
    """A provider whose home foundry is not the buyer's."""
    return make_user(db, other_foundry, "maker@globex.com", UserRole.MEMBER)


@pytest.fixture
def supplier_profile(db, supplier):
    return make_provider(db, supplier)


@pytest.fixture
def rival(db, other_foundry):
    return make_user(db, other_foundry, "rival@globex.com", UserRole.MEMBER)


@pytest.fixture
def rival_profile(db, rival):
    return make_provider(db, rival)


@pytest.fixture
def client():
    from centaur.main import app
    return TestClient(app)
