from datetime import date, timedelta

import pytest

from centaur.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    InvalidInputError,
    PermissionDenied,
    RetainerNotFoundError,
    TimesheetNotFoundError,
)
from centaur.models.retainer import RetainerStatus, TimesheetStatus
from centaur.services import billing, retainers, timesheets
from centaur.utils.timeutils import start_of_week, utcnow

from conftest import make_user

MONDAY = date(2024, 3, 4)


@pytest.fixture
def retainer(db, member, supplier_profile):
    return retainers.create_retainer(db, member, {
        "provider_id": supplier_profile.id,
        "weekly_hours": 10,
        "title": "CAD support",
    })


@pytest.fixture
def active_retainer(db, retainer, supplier):
    return retainers.accept_retainer(db, supplier, retainer.id)


class TestPricing:
    @pytest.mark.parametrize("hours, discount, rate", [
        (10, 0.0, 100.0),
        (20, 5.0, 95.0),
        (40, 10.0, 90.0),
    ])
    def test_commitment_discounts(self, hours, discount, rate):
        pricing = retainers.calculate_pricing(hours, 100.0)
        assert pricing.discount_percent == discount
        assert pricing.discounted_rate == pytest.approx(rate)
        assert pricing.weekly_total == pytest.approx(rate * hours)
        assert pricing.monthly_estimate == pytest.approx(rate * hours * 4.33)

    def test_other_hours_rejected(self):
        with pytest.raises(InvalidInputError, match="10, 20, 40"):
            retainers.calculate_pricing(15, 100.0)

    def test_rate_must_be_positive(self):
        with pytest.raises(InvalidInputError):
            retainers.calculate_pricing(10, 0)


class TestLifecycle:
    def test_create_uses_profile_rate(self, retainer, supplier_profile):
        assert retainer.status == RetainerStatus.PENDING.value
        assert retainer.base_hourly_rate == 50.0
        assert retainer.hourly_rate == pytest.approx(50.0)
        assert retainer.provider_id == supplier_profile.id

    def test_cannot_retain_yourself(self, db, supplier, supplier_profile):
        with pytest.raises(BusinessRuleError):
            retainers.create_retainer(db, supplier, {"provider_id": supplier_profile.id, "weekly_hours": 10})

    def test_only_provider_accepts(self, db, retainer, member):
        with pytest.raises(PermissionDenied):
            retainers.accept_retainer(db, member, retainer.id)

    def test_accept_pause_resume(self, db, active_retainer, member):
        assert active_retainer.status == RetainerStatus.ACTIVE.value
        assert active_retainer.started_at is not None

        paused = retainers.pause_retainer(db, member, active_retainer.id)
        assert paused.status == RetainerStatus.PAUSED.value

        with pytest.raises(BusinessRuleError, match="Only active"):
            retainers.pause_retainer(db, member, active_retainer.id)

        resumed = retainers.resume_retainer(db, member, active_retainer.id)
        assert resumed.status == RetainerStatus.ACTIVE.value
        assert resumed.paused_at is None

    def test_decline(self, db, retainer, supplier):
        declined = retainers.decline_retainer(db, supplier, retainer.id, reason="Fully booked")
        assert declined.status == RetainerStatus.CANCELLED.value
        assert declined.cancellation_reason == "Fully booked"

    def test_cancel_enforces_notice_period(self, db, active_retainer, member):
        result = retainers.cancel_retainer(db, member, active_retainer.id, effective_date=utcnow())

        assert result["notice_period_days"] == 14
        assert result["effective_date"] - result["requested_at"] == timedelta(days=14)
        assert result["remaining_timesheets"] == 2
        assert result["pending_amount"] == pytest.approx(2 * 10 * 50.0)
        assert active_retainer.status == RetainerStatus.CANCELLED.value

        with pytest.raises(BusinessRuleError):
            retainers.cancel_retainer(db, member, active_retainer.id)

    def test_update_reprices(self, db, retainer, member):
        updated = retainers.update_retainer(db, member, retainer.id, {"weekly_hours": 40})
        assert updated.hourly_rate == pytest.approx(45.0)

        updated = retainers.update_retainer(db, member, retainer.id, {"hourly_rate": 80.0})
        assert updated.base_hourly_rate == 80.0
        assert updated.hourly_rate == pytest.approx(72.0)

    def test_outsider_gets_404(self, db, retainer, foundry):
        outsider = make_user(db, foundry, "someone@acme.com")
        with pytest.raises(RetainerNotFoundError):
            retainers.get_retainer(db, outsider, retainer.id)

    def test_list_by_role(self, db, retainer, member, supplier):
        mine, total = retainers.list_retainers(db, member, role="buyer")
        assert total == 1 and mine[0].id == retainer.id

        as_provider, total = retainers.list_retainers(db, supplier, role="provider")
        assert total == 1

        _, total = retainers.list_retainers(db, member, role="provider")
        assert total == 0


class TestTimesheets:
    def test_week_start_must_be_monday(self, db, active_retainer, supplier):
        with pytest.raises(InvalidInputError, match="Monday"):
            timesheets.create_timesheet(db, supplier, active_retainer.id, MONDAY + timedelta(days=1))

    def test_one_timesheet_per_week(self, db, active_retainer, supplier):
        timesheets.create_timesheet(db, supplier, active_retainer.id, MONDAY)
        with pytest.raises(ConflictError):
            timesheets.create_timesheet(db, supplier, active_retainer.id, MONDAY)

    def test_pending_retainer_has_no_timesheets(self, db, retainer, supplier):
        with pytest.raises(BusinessRuleError, match="not active"):
            timesheets.create_timesheet(db, supplier, retainer.id, MONDAY)

    def test_hours_cap_is_150_percent(self, db, active_retainer, supplier):
        sheet = timesheets.create_timesheet(db, supplier, active_retainer.id, MONDAY)
        timesheets.log_hours(db, supplier, sheet.id, 10)
        timesheets.log_hours(db, supplier, sheet.id, 5)
        assert sheet.hours_logged == 15

        with pytest.raises(BusinessRuleError, match="exceed 15 hours limit"):
            timesheets.log_hours(db, supplier, sheet.id, 0.5)

        with pytest.raises(BusinessRuleError, match="cannot exceed 15"):
            timesheets.update_hours(db, supplier, sheet.id, 16)

    def test_submit_approve_pay(self, db, active_retainer, supplier, member, admin, foundry):
        sheet = timesheets.create_timesheet(db, supplier, active_retainer.id, MONDAY)

        with pytest.raises(BusinessRuleError, match="0 hours"):
            timesheets.submit_timesheet(db, supplier, sheet.id)

        timesheets.log_hours(db, supplier, sheet.id, 8)
        timesheets.submit_timesheet(db, supplier, sheet.id)

        with pytest.raises(PermissionDenied):
            timesheets.approve_timesheet(db, supplier, sheet.id)

        with pytest.raises(BusinessRuleError, match="approved"):
            timesheets.mark_paid(db, foundry.id, sheet.id, "pi_123")

        approved = timesheets.approve_timesheet(db, member, sheet.id)
        assert approved.status == TimesheetStatus.APPROVED.value

        paid = timesheets.mark_paid(db, foundry.id, sheet.id, "pi_123")
        assert paid.status == TimesheetStatus.PAID.value
        assert paid.payment_intent_id == "pi_123"

    def test_mark_paid_is_foundry_scoped(self, db, active_retainer, supplier, other_foundry):
        sheet = timesheets.create_timesheet(db, supplier, active_retainer.id, MONDAY)
        with pytest.raises(TimesheetNotFoundError):
            timesheets.mark_paid(db, other_foundry.id, sheet.id, "pi_123")

    def test_amending_submitted_week_returns_to_draft(self, db, active_retainer, supplier):
        sheet = timesheets.create_timesheet(db, supplier, active_retainer.id, MONDAY)
        timesheets.log_hours(db, supplier, sheet.id, 4)
        timesheets.submit_timesheet(db, supplier, sheet.id)

        timesheets.log_hours(db, supplier, sheet.id, 2)
        assert sheet.status == TimesheetStatus.DRAFT.value
        assert sheet.hours_logged == 6

    def test_dispute(self, db, active_retainer, supplier, member):
        sheet = timesheets.create_timesheet(db, supplier, active_retainer.id, MONDAY, description="Drawings")
        timesheets.log_hours(db, supplier, sheet.id, 4)
        timesheets.submit_timesheet(db, supplier, sheet.id)

        with pytest.raises(InvalidInputError):
            timesheets.dispute_timesheet(db, member, sheet.id, "  ")

        disputed = timesheets.dispute_timesheet(db, member, sheet.id, "Hours not agreed")
        assert disputed.status == TimesheetStatus.DISPUTED.value
        assert disputed.description == "Drawings\n\n[DISPUTE: Hours not agreed]"

    def test_current_week_is_created_once(self, db, active_retainer, supplier):
        first = timesheets.get_or_create_current_timesheet(db, supplier, active_retainer.id)
        second = timesheets.get_or_create_current_timesheet(db, supplier, active_retainer.id)
        assert first.id == second.id
        assert first.week_start == start_of_week(utcnow().date())


class TestBilling:
    def test_price_week(self):
        amounts = billing.price_week(10, 50.0)
        assert amounts["subtotal"] == pytest.approx(500.0)
        assert amounts["platform_fee"] == pytest.approx(40.0)
        assert amounts["vat_amount"] == pytest.approx(108.0)
        assert amounts["total"] == pytest.approx(648.0)
        assert billing.to_minor_units(amounts["total"]) == 64800

    def test_weekly_billing(self, db, active_retainer, supplier, member):
        sheet = timesheets.create_timesheet(db, supplier, active_retainer.id, MONDAY)
        timesheets.log_hours(db, supplier, sheet.id, 10)

        bill = billing.weekly_billing(db, member, sheet.id)

        assert bill.week_end == date(2024, 3, 8)
        assert bill.total == pytest.approx(648.0)
        assert [item.type for item in bill.items] == ["hours", "fee", "tax", "total"]
        assert bill.items[0].label == "10 hours @ GBP 50.00/hour"

    def test_pending_and_history(self, db, active_retainer, supplier, member, foundry):
        sheet = timesheets.create_timesheet(db, supplier, active_retainer.id, MONDAY)
        timesheets.log_hours(db, supplier, sheet.id, 5)
        timesheets.submit_timesheet(db, supplier, sheet.id)
        timesheets.approve_timesheet(db, member, sheet.id)

        assert len(billing.pending_billing(db, member, active_retainer.id)) == 1
        assert billing.billing_history(db, member, active_retainer.id) == []

        timesheets.mark_paid(db, foundry.id, sheet.id, "pi_1")
        assert billing.pending_billing(db, member, active_retainer.id) == []
        assert len(billing.billing_history(db, member, active_retainer.id)) == 1

    def test_invoice_for_missing_week(self, db, active_retainer, member):
        with pytest.raises(TimesheetNotFoundError):
            billing.weekly_invoice(db, member, active_retainer.id, MONDAY)


class TestStats:
    def test_stats_count_billed_weeks(self, db, active_retainer, supplier, member):
        this_week = start_of_week(utcnow().date())
        sheet = timesheets.create_timesheet(db, supplier, active_retainer.id, this_week)
        timesheets.log_hours(db, supplier, sheet.id, 6)
        timesheets.submit_timesheet(db, supplier, sheet.id)
        timesheets.approve_timesheet(db, member, sheet.id)

        stats = retainers.retainer_stats(db, member, active_retainer.id)

        assert stats["total_hours_this_week"] == 6
        assert stats["hours_remaining"] == 4
        assert stats["total_amount"] == pytest.approx(300.0)
        assert stats["approval_rate"] == 100.0
        assert stats["weeks_active"] == 1
