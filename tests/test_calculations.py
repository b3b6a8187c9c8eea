"""
Unit tests for distance, duration and monthly statistics.
"""

import pytest
from datetime import date

from calculations import (
    MonthlyStats,
    Period,
    ValidationError,
    calculate_distance,
    calculate_duration_minutes,
    calculate_monthly_stats,
    format_distance,
    format_duration,
    minutes_to_hours,
    parse_time,
    round_half_up,
)
from models import DailyReport


def report(day, is_worked=True, **fields):
    return DailyReport(date=date.fromisoformat(day), is_worked=is_worked, **fields)


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  1. DISTANCE                                                            ║
# ╚═══════════════════════════════════════════════════════════════════════════╝


class TestDistance:
    @pytest.mark.parametrize("start,end", [(0, 0), (100, 150), (12345.6, 12400.1), (5, 5.5)])
    def test_end_after_start_is_plain_difference(self, start, end):
        assert calculate_distance(start, end) == end - start

    def test_missing_start_is_not_computable(self):
        assert calculate_distance(None, 1000) is None

    def test_missing_end_is_not_computable(self):
        assert calculate_distance(1000, None) is None

    def test_zero_reading_is_not_missing(self):
        assert calculate_distance(0, 42) == 42

    def test_lower_end_without_rollover_is_not_computable(self):
        """A backwards meter is never passed through as a negative distance."""
        assert calculate_distance(500, 400) is None

    def test_rollover_wraps_past_maximum(self):
        assert calculate_distance(999990, 10, rollover_max=999999) == 19

    def test_rollover_ignored_when_meter_moves_forward(self):
        assert calculate_distance(100, 250, rollover_max=999999) == 150

    @pytest.mark.parametrize("start,end", [(0, 5), (10, 3), (999999, 0), (7, 7)])
    def test_result_is_never_negative(self, start, end):
        result = calculate_distance(start, end, rollover_max=999999)
        assert result is not None and result >= 0

    def test_format_distance_rounds_to_one_decimal(self):
        assert format_distance(12400.1 - 12345.6) == "54.5"
        assert format_distance(10) == "10.0"
        assert format_distance(None) == ""


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  2. DURATION                                                            ║
# ╚═══════════════════════════════════════════════════════════════════════════╝


class TestDuration:
    def test_regular_shift(self):
        assert calculate_duration_minutes("09:00", "17:30") == 510

    def test_shift_crossing_midnight(self):
        assert calculate_duration_minutes("23:00", "01:00") == 120

    def test_same_start_and_end(self):
        assert calculate_duration_minutes("09:00", "09:00") == 0

    @pytest.mark.parametrize("start,end", [(None, "17:00"), ("09:00", None), ("", "17:00"), (None, None)])
    def test_missing_time_is_not_computable(self, start, end):
        assert calculate_duration_minutes(start, end) is None

    def test_malformed_time_raises(self):
        with pytest.raises(ValidationError):
            calculate_duration_minutes("9", "17:30")

    @pytest.mark.parametrize("value", ["24:00", "12:60", "ab:cd", "12:3x", "1230", "-1:00", "12:00:00", "1²:00", "１２:００"])
    def test_parse_time_rejects_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_time(value)

    def test_parse_time_accepts_single_digit_hour(self):
        assert parse_time("9:05") == 545

    def test_validation_error_is_a_value_error(self):
        assert issubclass(ValidationError, ValueError)

    def test_format_duration_long_and_short(self):
        assert format_duration(510) == "8時間30分"
        assert format_duration(480) == "8時間0分"
        assert format_duration(480, short=True) == "8時間"
        assert format_duration(None) == ""

    def test_minutes_to_hours(self):
        assert minutes_to_hours(510) == "8.5"
        assert minutes_to_hours(0) == "0.0"
        assert minutes_to_hours(None) == "0.0"
        assert minutes_to_hours(20) == "0.3"


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  3. PERIOD                                                              ║
# ╚═══════════════════════════════════════════════════════════════════════════╝


class TestPeriod:
    def test_month_boundaries(self):
        p = Period.for_month(2024, 2)
        assert p.start == date(2024, 2, 1)
        assert p.end == date(2024, 2, 29)

    def test_contains_is_inclusive(self):
        p = Period.for_month(2025, 3)
        assert p.contains(date(2025, 3, 1))
        assert p.contains(date(2025, 3, 31))
        assert not p.contains(date(2025, 4, 1))
        assert not p.contains(date(2025, 2, 28))

    def test_invalid_month(self):
        with pytest.raises(ValidationError):
            Period.for_month(2025, 13)

    def test_end_before_start(self):
        with pytest.raises(ValidationError):
            Period(date(2025, 3, 2), date(2025, 3, 1))

    def test_labels(self):
        assert Period.for_month(2025, 3).label() == "2025年3月"
        assert Period.for_year(2025).label() == "2025年"
        assert Period(date(2025, 3, 1), date(2025, 3, 15)).label() == "2025/3/1 - 2025/3/15"

    def test_slug_pads_month(self):
        assert Period.for_month(2025, 3).slug() == "2025年03月"


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  4. MONTHLY STATISTICS                                                  ║
# ╚═══════════════════════════════════════════════════════════════════════════╝


class TestMonthlyStats:
    def test_empty_list(self):
        stats = calculate_monthly_stats([], Period.for_month(2025, 3))
        assert stats == MonthlyStats()
        assert stats.working_days == 0
        assert stats.average_distance_km == 0
        assert stats.average_work_hours == 0

    def test_all_days_off(self):
        reports = [
            report(f"2025-03-0{d}", is_worked=False, start_odometer=0, end_odometer=100,
                   deliveries=5, highway_fee=800, start_time="09:00", end_time="17:00")
            for d in range(1, 6)
        ]
        stats = calculate_monthly_stats(reports, Period.for_month(2025, 3))
        assert stats.working_days == 0
        assert stats.total_distance_km == 0
        assert stats.total_deliveries == 0
        assert stats.total_highway_fee == 0
        assert stats.total_work_hours == 0

    def test_distance_totals_and_average(self):
        reports = [
            report("2025-03-03", start_odometer=1000, end_odometer=1010),
            report("2025-03-04", start_odometer=1010, end_odometer=1030),
            report("2025-03-05", start_odometer=1030, end_odometer=1060),
        ]
        stats = calculate_monthly_stats(reports, Period.for_month(2025, 3))
        assert stats.total_distance_km == 60
        assert stats.average_distance_km == 20.0

    def test_work_hours_totals_and_average(self):
        reports = [
            report("2025-03-03", start_time="08:00", end_time="16:00"),
            report("2025-03-04", start_time="09:00", end_time="16:30"),
            report("2025-03-05", start_time="22:00", end_time="06:30"),
        ]
        stats = calculate_monthly_stats(reports)
        assert stats.total_work_hours == 24
        assert stats.average_work_hours == 8.0

    def test_days_off_do_not_count(self):
        reports = [
            report("2025-03-03", deliveries=10, highway_fee=500),
            report("2025-03-04", is_worked=False, deliveries=99, highway_fee=9999),
            report("2025-03-05", deliveries=20, highway_fee=700),
        ]
        stats = calculate_monthly_stats(reports)
        assert stats.working_days == 2
        assert stats.total_deliveries == 30
        assert stats.total_highway_fee == 1200
        assert stats.average_deliveries == 15.0

    def test_missing_odometer_still_counts_as_working_day(self):
        reports = [
            report("2025-03-03", start_odometer=100, end_odometer=130),
            report("2025-03-04", start_odometer=130),
        ]
        stats = calculate_monthly_stats(reports)
        assert stats.working_days == 2
        assert stats.total_distance_km == 30
        assert stats.average_distance_km == 15.0

    def test_reports_outside_period_are_ignored(self):
        reports = [
            report("2025-02-28", deliveries=100),
            report("2025-03-01", deliveries=3),
            report("2025-03-31", deliveries=4),
            report("2025-04-01", deliveries=100),
        ]
        stats = calculate_monthly_stats(reports, Period.for_month(2025, 3))
        assert stats.working_days == 2
        assert stats.total_deliveries == 7

    def test_cached_distance_is_not_trusted(self):
        r = report("2025-03-03", start_odometer=100, end_odometer=150)
        r.distance_km = 9999
        assert calculate_monthly_stats([r]).total_distance_km == 50

    def test_rollover_applied_when_configured(self):
        r = report("2025-03-03", start_odometer=999990, end_odometer=10)
        assert calculate_monthly_stats([r]).total_distance_km == 0
        assert calculate_monthly_stats([r], rollover_max=999999).total_distance_km == 19

    def test_averages_round_half_up(self):
        reports = [
            report("2025-03-03", deliveries=1),
            report("2025-03-04", deliveries=0),
            report("2025-03-05", deliveries=0),
            report("2025-03-06", deliveries=0),
        ]
        assert calculate_monthly_stats(reports).average_deliveries == 0.3
        assert round_half_up(0.25) == 0.3

    def test_is_deterministic(self):
        reports = [report("2025-03-03", start_time="09:00", end_time="17:00", deliveries=4)]
        assert calculate_monthly_stats(reports) == calculate_monthly_stats(list(reports))
