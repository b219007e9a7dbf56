import pytest

from centaur.core.exceptions import (
    BusinessRuleError,
    InvalidInputError,
    OrderNotFoundError,
    PermissionDenied,
    TransactionBlockedError,
)
from centaur.models.fraud import TransactionLimit
from centaur.models.order import EscrowStatus, OrderStatus
from centaur.services import orders

from conftest import make_user


@pytest.fixture
def order(db, member, supplier_profile):
    return orders.create_order(db, member, {
        "provider_id": supplier_profile.id,
        "amount": 250.0,
        "description": "Prototype run",
    })


class TestCreate:
    def test_create_records_usage(self, db, order, member):
        assert order.status == OrderStatus.PENDING.value
        assert order.escrow_status == EscrowStatus.PENDING.value
        assert order.currency == "GBP"

        daily = db.query(TransactionLimit).filter(
            TransactionLimit.user_id == member.id,
            TransactionLimit.limit_type == "daily",
        ).one()
        assert daily.current_amount == 250.0

    def test_over_limit_is_blocked(self, db, member, supplier_profile):
        with pytest.raises(TransactionBlockedError) as exc:
            orders.create_order(db, member, {"provider_id": supplier_profile.id, "amount": 5000.0})
        assert exc.value.status_code == 403
        assert "single transaction limit" in exc.value.detail

    def test_amount_must_be_positive(self, db, member, supplier_profile):
        with pytest.raises(InvalidInputError):
            orders.create_order(db, member, {"provider_id": supplier_profile.id, "amount": 0})

    def test_cannot_order_from_yourself(self, db, supplier, supplier_profile):
        with pytest.raises(BusinessRuleError):
            orders.create_order(db, supplier, {"provider_id": supplier_profile.id, "amount": 10.0})


class TestStatusMachine:
    def test_happy_path(self, db, order, member, supplier):
        assert orders.update_status(db, supplier, order.id, "accepted").status == "accepted"
        assert orders.update_status(db, supplier, order.id, "in_progress").status == "in_progress"
        assert orders.update_status(db, member, order.id, "completed").status == "completed"

    def test_wrong_actor(self, db, order, member):
        with pytest.raises(PermissionDenied):
            orders.update_status(db, member, order.id, "accepted")

    def test_no_skipping_states(self, db, order, member):
        with pytest.raises(BusinessRuleError, match="Cannot move order from pending to completed"):
            orders.update_status(db, member, order.id, "completed")

    def test_dispute_then_resolve(self, db, order, member, supplier):
        orders.update_status(db, supplier, order.id, "accepted")

        with pytest.raises(BusinessRuleError, match="in progress"):
            orders.raise_dispute(db, member, order.id, "Late")

        orders.update_status(db, supplier, order.id, "in_progress")
        dispute = orders.raise_dispute(db, member, order.id, " Parts out of tolerance ")
        assert dispute.reason == "Parts out of tolerance"
        assert order.status == OrderStatus.DISPUTED.value

        orders.update_status(db, member, order.id, "completed")
        db.refresh(dispute)
        assert dispute.status == "resolved"

    def test_outsider_gets_404(self, db, order, foundry):
        outsider = make_user(db, foundry, "other@acme.com")
        with pytest.raises(OrderNotFoundError):
            orders.get_order(db, outsider, order.id)


class TestEscrow:
    def test_transitions(self):
        assert orders.can_transition_escrow("pending", "held")
        assert orders.can_transition_escrow("failed", "held")
        assert not orders.can_transition_escrow("released", "refunded")

    def test_release_needs_completed_order(self, db, order, member, supplier):
        orders.update_escrow(db, member, order.id, "held", payment_intent_id="pi_9")
        with pytest.raises(BusinessRuleError, match="completed"):
            orders.update_escrow(db, member, order.id, "released")

        orders.update_status(db, supplier, order.id, "accepted")
        orders.update_status(db, supplier, order.id, "in_progress")
        orders.update_status(db, member, order.id, "completed")

        released = orders.update_escrow(db, member, order.id, "released")
        assert released.escrow_status == "released"
        assert released.payment_intent_id == "pi_9"

    def test_provider_cannot_touch_escrow(self, db, order, supplier):
        with pytest.raises(PermissionDenied):
            orders.update_escrow(db, supplier, order.id, "held")
