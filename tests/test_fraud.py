from datetime import datetime, timedelta

import pytest

from centaur.core.exceptions import FraudSignalNotFoundError, InvalidInputError
from centaur.models.fraud import FraudSignal, TransactionLimit
from centaur.services import fraud_detection, velocity
from centaur.utils.timeutils import utcnow

from conftest import make_user


def age_user(db, user, days):
    user.created_at = utcnow() - timedelta(days=days)
    db.commit()


class TestTiers:
    @pytest.mark.parametrize("days, tier", [
        (0, "new"),
        (6, "new"),
        (7, "starter"),
        (30, "established"),
        (89, "established"),
        (90, "trusted"),
    ])
    def test_tier_from_account_age(self, days, tier):
        assert velocity.tier_from_account_age(days) == tier

    def test_reset_times(self):
        wednesday = datetime(2024, 3, 6, 15, 0)
        assert velocity.calculate_reset_time("daily", wednesday) == datetime(2024, 3, 7)
        assert velocity.calculate_reset_time("weekly", wednesday) == datetime(2024, 3, 11)
        assert velocity.calculate_reset_time("monthly", wednesday) == datetime(2024, 4, 1)
        assert velocity.calculate_reset_time("monthly", datetime(2024, 12, 31, 23)) == datetime(2025, 1, 1)

    def test_weekly_reset_never_today(self):
        monday = datetime(2024, 3, 4, 0, 30)
        assert velocity.calculate_reset_time("weekly", monday) == datetime(2024, 3, 11)

    def test_format_amount(self):
        assert velocity.format_amount(1500) == "£1,500"
        assert velocity.format_amount(1500.5) == "£1,500.5"


class TestLimits:
    def test_new_account_defaults(self, db, member):
        limits = velocity.get_transaction_limits(db, member.id)
        assert limits.tier == "new"
        assert limits.single.limit == 1000
        assert limits.daily.remaining == 2000

    def test_single_transaction_cap(self, db, member):
        check = velocity.check_limit_availability(db, member.id, 1500)
        assert check.allowed is False
        assert check.reason == "Amount £1,500 exceeds single transaction limit of £1,000"

    def test_daily_cap_after_usage(self, db, member):
        velocity.consume_limit(db, member.id, 900)
        velocity.consume_limit(db, member.id, 900)
        db.commit()

        check = velocity.check_limit_availability(db, member.id, 500)
        assert check.allowed is False
        assert check.reason == "Amount £500 exceeds daily remaining limit of £200"

    def test_expired_window_reads_as_zero(self, db, member):
        velocity.consume_limit(db, member.id, 900)
        db.commit()
        for row in db.query(TransactionLimit).filter(TransactionLimit.user_id == member.id):
            row.reset_at = utcnow() - timedelta(seconds=1)
        db.commit()

        limits = velocity.get_transaction_limits(db, member.id)
        assert limits.daily.used == 0
        assert limits.daily.remaining == 2000

    def test_trusted_monthly_is_unlimited(self, db, member):
        age_user(db, member, 120)
        limits = velocity.get_transaction_limits(db, member.id)
        assert limits.tier == "trusted"
        assert limits.monthly.remaining is None
        assert velocity.check_limit_availability(db, member.id, 40000).allowed

    def test_admin_overrides(self, db, member):
        velocity.set_limit_amounts(db, member.id, {"per_transaction": 3000, "daily": 4000})
        limits = velocity.get_transaction_limits(db, member.id)
        assert limits.single.limit == 3000
        assert limits.daily.limit == 4000

        with pytest.raises(InvalidInputError):
            velocity.set_limit_amounts(db, member.id, {"hourly": 10})
        with pytest.raises(InvalidInputError):
            velocity.set_limit_amounts(db, member.id, {"daily": -1})

    def test_tier_upgrade_and_reset(self, db, member):
        velocity.increase_limits(db, member.id, "established")
        velocity.consume_limit(db, member.id, 5000)
        db.commit()

        limits = velocity.get_transaction_limits(db, member.id)
        assert limits.single.limit == 10000
        assert limits.daily.used == 5000

        assert velocity.reset_limits(db, member.id, "daily") == 1
        assert velocity.get_transaction_limits(db, member.id).daily.used == 0

        with pytest.raises(InvalidInputError):
            velocity.reset_limits(db, member.id, "yearly")

    def test_summary(self, db, member):
        age_user(db, member, 10)
        summary = velocity.get_limits_summary(db, member.id)
        assert summary["tier"] == "starter"
        assert summary["tier_name"] == "Starter"
        assert summary["next_tier"] == "established"
        assert summary["days_until_next_tier"] == 20


class TestScoring:
    def test_risk_levels(self):
        assert fraud_detection.risk_level(0) == "low"
        assert fraud_detection.risk_level(30) == "medium"
        assert fraud_detection.risk_level(60) == "high"
        assert fraud_detection.risk_level(80) == "critical"

    def test_detection_score_is_capped(self):
        signals = [
            fraud_detection.DetectedSignal("manual_report", "critical", {}),
            fraud_detection.DetectedSignal("dispute_frequency", "high", {}),
        ]
        assert fraud_detection.score_detected_signals(signals) == 100

    def test_account_age_mismatch(self):
        assert fraud_detection.check_account_age_mismatch(0, 800) is None
        medium = fraud_detection.check_account_age_mismatch(0, 900)
        assert medium.severity == "medium"
        assert fraud_detection.check_account_age_mismatch(0, 1200).severity == "high"

    def test_severity_from_details(self):
        assert fraud_detection.determine_severity("velocity_violation", {"violations_count": 5}) == "critical"
        assert fraud_detection.determine_severity("payment_failure", {"failure_rate": 60}) == "high"
        assert fraud_detection.determine_severity("manual_report", {}) == "high"
        assert fraud_detection.determine_severity("something_else", {}) == "medium"

    def test_recency_and_type_cap(self, db, member):
        now = utcnow()
        for _ in range(3):
            db.add(FraudSignal(user_id=member.id, signal_type="manual_report", severity="high", details={}))
        db.add(FraudSignal(
            user_id=member.id, signal_type="ip_pattern", severity="medium", details={},
            created_at=now - timedelta(days=45),
        ))
        db.commit()

        score = fraud_detection.calculate_risk_score(db, member.id)

        # manual_report: 3 x 35 x 1.5 capped at 40; ip_pattern: 20 x 1 x 0.4
        assert score.score == 48
        assert score.level == "medium"
        assert [f["type"] for f in score.factors] == ["manual_report", "ip_pattern"]
        assert score.factors[0]["description"] == "3 Manual Report signal(s)"

    def test_old_signals_ignored(self, db, member):
        db.add(FraudSignal(
            user_id=member.id, signal_type="manual_report", severity="critical", details={},
            created_at=utcnow() - timedelta(days=91),
        ))
        db.commit()
        assert fraud_detection.calculate_risk_score(db, member.id).score == 0


class TestTransactionGate:
    def test_clean_transaction_allowed(self, db, member):
        check = fraud_detection.check_transaction(db, member.id, "order_create", amount=100)
        assert check.allowed is True
        assert check.risk_score == 0

    def test_velocity_refusal_is_flagged(self, db, member):
        check = fraud_detection.check_transaction(db, member.id, "order_create", amount=1500)

        assert check.allowed is False
        assert "single transaction limit" in check.reason
        types = {s.signal_type for s in db.query(FraudSignal).filter(FraudSignal.user_id == member.id)}
        assert types == {"account_age_mismatch", "velocity_violation"}

    def test_critical_signal_blocks_with_generic_message(self, db, member):
        for _ in range(5):
            db.add(FraudSignal(user_id=member.id, signal_type="velocity_violation", severity="high", details={}))
        db.commit()

        check = fraud_detection.check_transaction(db, member.id, "order_create", amount=50)

        assert check.allowed is False
        assert check.reason == fraud_detection.BLOCKED_MESSAGE

    def test_repeat_device_is_flagged(self, db, member):
        db.add(FraudSignal(
            user_id=member.id, signal_type="device_pattern", severity="medium",
            details={}, device_fingerprint="dev-1",
        ))
        db.commit()

        result = fraud_detection.detect_fraud_signals(db, member.id, device_fingerprint="dev-1")
        assert [s.signal_type for s in result.signals] == ["device_pattern"]
        assert result.should_block is False


class TestReports:
    def test_report_and_clear(self, db, member, admin):
        signal = fraud_detection.report_suspicious_activity(db, admin, member.id, " Fake invoices ")

        assert signal.signal_type == "manual_report"
        assert signal.severity == "high"
        assert signal.details["reported_by"] == admin.id
        assert signal.details["reason"] == "Fake invoices"

        cleared = fraud_detection.clear_signal(db, admin, signal.id, "Verified with customer")
        assert cleared.action_taken == "Cleared: Verified with customer"
        assert cleared.reviewed_by == admin.id

    def test_clear_is_foundry_scoped(self, db, member, other_foundry):
        other_admin = make_user(db, other_foundry, "admin@globex.com")
        signal = fraud_detection.flag_suspicious_activity(db, member.id, "suspicious_activity", {})

        with pytest.raises(FraudSignalNotFoundError):
            fraud_detection.clear_signal(db, other_admin, signal.id, "Not ours")

    def test_high_risk_users(self, db, foundry, member, admin):
        for _ in range(2):
            fraud_detection.flag_suspicious_activity(db, member.id, "suspicious_activity", {})
        fraud_detection.flag_suspicious_activity(db, admin.id, "suspicious_activity", {})

        rows = fraud_detection.high_risk_users(db, foundry.id)
        assert [r["user_id"] for r in rows] == [member.id, admin.id]
        assert rows[0]["signal_count"] == 2
