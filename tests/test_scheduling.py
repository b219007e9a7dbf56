from datetime import date, datetime, timedelta

from centaur.services.scheduling import (
    MIN_RACE_DELAY,
    ProviderSlot,
    broadcast_window,
    calculate_broadcast_schedule,
    compute_race_opens_at,
    format_duration,
    is_race_open,
    is_within_business_hours,
    time_until_race_opens,
)
from centaur.utils.timeutils import days_between, is_monday, start_of_week, to_naive_utc, week_end

# Wednesday
NOW = datetime(2024, 3, 6, 14, 30)


class TestRaceOpening:
    def test_urgent_opens_after_minimum_delay(self):
        assert compute_race_opens_at("urgent", NOW) == NOW + MIN_RACE_DELAY

    def test_standard_opens_next_morning(self):
        assert compute_race_opens_at("standard", NOW) == datetime(2024, 3, 7, 9, 0)

    def test_no_schedule_means_open(self):
        assert is_race_open(None, NOW)
        assert is_race_open(NOW - timedelta(seconds=1), NOW)
        assert not is_race_open(NOW + timedelta(seconds=1), NOW)

    def test_countdown(self):
        info = time_until_race_opens(NOW + timedelta(hours=2, minutes=5), NOW)
        assert info["is_open"] is False
        assert info["time_until_open_ms"] == (2 * 3600 + 5 * 60) * 1000
        assert info["formatted_time"] == "2h 5m"

        assert time_until_race_opens(NOW - timedelta(minutes=1), NOW)["is_open"] is True


class TestBroadcastWindow:
    def test_before_nine_same_day(self):
        assert broadcast_window("UTC", datetime(2024, 3, 6, 7, 0)) == datetime(2024, 3, 6, 9, 0)

    def test_after_nine_next_day(self):
        assert broadcast_window("UTC", NOW) == datetime(2024, 3, 7, 9, 0)

    def test_weekend_rolls_to_monday(self):
        friday_evening = datetime(2024, 3, 8, 18, 0)
        assert broadcast_window("UTC", friday_evening) == datetime(2024, 3, 11, 9, 0)

    def test_local_time_zone(self):
        # 09:00 in New York during EST is 14:00 UTC
        assert broadcast_window("America/New_York", datetime(2024, 3, 6, 12, 0)) == datetime(2024, 3, 6, 14, 0)

    def test_unknown_zone_falls_back_to_utc_next_day(self):
        assert broadcast_window("Mars/Olympus", NOW) == datetime(2024, 3, 7, 9, 0)


class TestSchedule:
    def test_verified_partners_go_first(self):
        slots = [
            ProviderSlot("p-approved", "UTC", "approved"),
            ProviderSlot("p-verified", "UTC", "verified_partner"),
        ]
        schedule = calculate_broadcast_schedule(NOW, "urgent", slots)

        assert [s.provider_id for s in schedule] == ["p-verified", "p-approved"]
        assert schedule[0].scheduled_at == NOW
        assert schedule[0].delay_seconds == 0
        assert schedule[1].scheduled_at == NOW + timedelta(seconds=30)
        assert schedule[1].delay_seconds == 30

    def test_standard_uses_each_providers_morning(self):
        slots = [
            ProviderSlot("p-ny", "America/New_York", "verified_partner"),
            ProviderSlot("p-london", "Europe/London", "verified_partner"),
        ]
        schedule = calculate_broadcast_schedule(datetime(2024, 3, 7, 9, 0), "standard", slots)

        by_id = {s.provider_id: s for s in schedule}
        assert by_id["p-london"].scheduled_at == datetime(2024, 3, 8, 9, 0)
        assert by_id["p-ny"].scheduled_at == datetime(2024, 3, 7, 14, 0)
        assert schedule[0].provider_id == "p-ny"


class TestFormatting:
    def test_durations(self):
        assert format_duration(-5) == "0s"
        assert format_duration(8_000) == "8s"
        assert format_duration(6 * 60_000 + 7_000) == "6m 7s"
        assert format_duration(2 * 86_400_000 + 3 * 3_600_000) == "2d 3h"

    def test_business_hours(self):
        assert is_within_business_hours(datetime(2024, 3, 6, 10, 0), "UTC")
        assert not is_within_business_hours(datetime(2024, 3, 6, 18, 0), "UTC")
        assert is_within_business_hours(datetime(2024, 3, 6, 3, 0), "Not/AZone")


class TestTimeHelpers:
    def test_weeks(self):
        assert start_of_week(date(2024, 3, 6)) == date(2024, 3, 4)
        assert week_end(date(2024, 3, 4)) == date(2024, 3, 8)
        assert is_monday(date(2024, 3, 4))
        assert not is_monday(date(2024, 3, 5))

    def test_days_between_and_naive_utc(self):
        assert days_between(datetime(2024, 1, 1), datetime(2024, 1, 31, 23)) == 30
        aware = datetime.fromisoformat("2024-03-06T10:00:00+02:00")
        assert to_naive_utc(aware) == datetime(2024, 3, 6, 8, 0)
        assert to_naive_utc(NOW) == NOW
