from datetime import timedelta

import pytest

from centaur.core.exceptions import ConflictError, InvalidInputError, ProviderNotFoundError
from centaur.models.provider import ProviderProfile, SupplierTier
from centaur.services import providers
from centaur.utils.timeutils import utcnow


def profile(**stats):
    defaults = {
        "messages_received": 0,
        "review_count": 0,
        "completed_orders": 0,
        "created_at": utcnow(),
    }
    defaults.update(stats)
    return ProviderProfile(display_name="Test", **defaults)


class TestBadges:
    def test_fast_responder(self):
        badge = providers.check_fast_responder(profile(avg_response_time_hours=1.5, messages_received=12))
        assert badge.eligible is True
        assert badge.progress == 100

        slow = providers.check_fast_responder(profile(avg_response_time_hours=4, messages_received=12))
        assert slow.eligible is False
        assert slow.progress == 50

        few = providers.check_fast_responder(profile(avg_response_time_hours=1, messages_received=5))
        assert few.eligible is False
        assert few.description == "5/10 messages"

    def test_fast_responder_without_data(self):
        badge = providers.check_fast_responder(profile())
        assert badge.eligible is False
        assert badge.progress == 0

    def test_top_rated(self):
        assert providers.check_top_rated(profile(rating=4.9, review_count=12)).eligible
        low = providers.check_top_rated(profile(rating=4.2, review_count=20))
        assert not low.eligible
        assert low.description == "Rating 4.2/4.8"

    def test_reliable(self):
        assert providers.check_reliable(profile(on_time_rate=0.97, completed_orders=10)).eligible
        assert providers.check_reliable(profile(on_time_rate=0.9, completed_orders=50)).description == \
            "On-time rate: 90% (need 95%)"

    def test_rising_star(self):
        star = providers.check_rising_star(profile(rating=4.7, completed_orders=4, completion_rate=0.95))
        assert star.eligible is True
        assert star.description == "Eligible!"

        veteran = providers.check_rising_star(profile(
            rating=5, completed_orders=40, completion_rate=1,
            created_at=utcnow() - timedelta(days=200),
        ))
        assert veteran.eligible is False
        assert veteran.progress == 0

    def test_evaluate_returns_all_four(self):
        badges = providers.evaluate_badges(profile())
        assert [b.badge_type for b in badges] == ["fast_responder", "top_rated", "reliable", "rising_star"]


class TestProfiles:
    def test_create_once(self, db, member):
        created = providers.create_profile(db, member, {"display_name": "Acme Machining", "timezone": "Europe/London"})
        assert created.tier == SupplierTier.PENDING.value

        with pytest.raises(ConflictError):
            providers.create_profile(db, member, {})

    def test_unknown_timezone(self, db, member):
        with pytest.raises(InvalidInputError, match="Unknown time zone"):
            providers.create_profile(db, member, {"timezone": "Atlantis/Capital"})

    def test_tier_change_limited_to_home_foundry(self, db, admin, supplier_profile):
        with pytest.raises(ProviderNotFoundError):
            providers.set_tier(db, admin, supplier_profile.id, SupplierTier.SUSPENDED.value)

    def test_admin_sets_tier(self, db, admin, member):
        created = providers.create_profile(db, member, {})
        updated = providers.set_tier(db, admin, created.id, SupplierTier.APPROVED.value)
        assert updated.tier == SupplierTier.APPROVED.value
