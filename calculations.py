"""
Driver Logbook – distance, duration and monthly statistics.

Everything in this module is a pure function over report objects that expose
the DailyReport attributes (``date``, ``is_worked``, ``start_time``, ...).
``None`` is the "not computable" result: callers must render it as a blank or
dash, never as zero.
"""

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

MINUTES_PER_DAY = 24 * 60


class ValidationError(ValueError):
    """Raised for malformed input such as a bad ``HH:MM`` string."""


# ---------------------------------------------------------------------------
# Distance
# ---------------------------------------------------------------------------
def calculate_distance(start_odometer, end_odometer, rollover_max=None):
    """
    Return the distance travelled between two odometer readings.

    Parameters
    ----------
    start_odometer, end_odometer : int | float | None
        Meter readings in km.
    rollover_max : int | float | None
        Maximum value the meter can show before wrapping to zero. When the
        end reading is below the start reading the meter is assumed to have
        wrapped; without this value the distance is not computable.

    Returns
    -------
    int | float | None
        Non-negative distance in km, or None when it cannot be computed.
    """
    if start_odometer is None or end_odometer is None:
        return None
    if end_odometer >= start_odometer:
        return end_odometer - start_odometer
    if rollover_max is None:
        return None
    return (rollover_max - start_odometer) + end_odometer


def report_distance(report, rollover_max=None):
    """Distance for a report, recomputed from its odometer fields."""
    return calculate_distance(
        report.start_odometer, report.end_odometer, rollover_max=rollover_max
    )


# ---------------------------------------------------------------------------
# Duration
# ---------------------------------------------------------------------------
def parse_time(value):
    """Convert ``HH:MM`` into minutes since midnight."""
    parts = value.strip().split(":") if isinstance(value, str) else []
    if len(parts) != 2 or not all(p.isascii() and p.isdigit() for p in parts):
        raise ValidationError(f"Invalid time '{value}': expected HH:MM.")
    hour, minute = int(parts[0]), int(parts[1])
    if not 0 <= hour <= 23:
        raise ValidationError(f"Invalid time '{value}': hour must be 0-23.")
    if not 0 <= minute <= 59:
        raise ValidationError(f"Invalid time '{value}': minute must be 0-59.")
    return hour * 60 + minute


def calculate_duration_minutes(start_time, end_time):
    """
    Return the minutes worked between two ``HH:MM`` times, or None.

    An end time earlier than the start time is a shift that crossed
    midnight, so 23:00 -> 01:00 is 120 minutes.
    """
    if not start_time or not end_time:
        return None
    diff = parse_time(end_time) - parse_time(start_time)
    if diff < 0:
        diff += MINUTES_PER_DAY
    return diff


def report_duration_minutes(report):
    return calculate_duration_minutes(report.start_time, report.end_time)


def minutes_to_hours(minutes):
    """Decimal hours with one decimal place, e.g. 510 -> "8.5"."""
    if minutes is None:
        return "0.0"
    return f"{round_half_up(minutes / 60):.1f}"


def format_duration(minutes, short=False):
    """
    Render minutes as ``H時間M分``.

    With ``short=True`` whole hours drop the minute part (``8時間``), which is
    how the printed report shows durations.
    """
    if minutes is None:
        return ""
    hours, mins = divmod(minutes, 60)
    if short and mins == 0:
        return f"{hours}時間"
    return f"{hours}時間{mins}分"


def format_distance(distance):
    if distance is None:
        return ""
    return f"{round_half_up(distance):.1f}"


def round_half_up(value, places=1):
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Period
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Period:
    """An inclusive date range."""

    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValidationError("Period end must not be before its start.")

    @classmethod
    def for_month(cls, year, month):
        if not 1 <= month <= 12:
            raise ValidationError(f"Invalid month: {month}")
        last_day = calendar.monthrange(year, month)[1]
        return cls(date(year, month, 1), date(year, month, last_day))

    @classmethod
    def for_year(cls, year):
        return cls(date(year, 1, 1), date(year, 12, 31))

    def contains(self, day):
        return self.start <= day <= self.end

    @property
    def is_month(self):
        return self == Period.for_month(self.start.year, self.start.month)

    @property
    def is_year(self):
        return self == Period.for_year(self.start.year)

    def label(self):
        """Human readable period: ``2025年3月``, ``2025年`` or a range."""
        if self.is_month:
            return f"{self.start.year}年{self.start.month}月"
        if self.is_year:
            return f"{self.start.year}年"
        return (
            f"{self.start.year}/{self.start.month}/{self.start.day} - "
            f"{self.end.year}/{self.end.month}/{self.end.day}"
        )

    def slug(self):
        """Period as used in export file names: ``2025年03月``."""
        if self.is_month:
            return f"{self.start.year}年{self.start.month:02d}月"
        if self.is_year:
            return f"{self.start.year}年"
        return f"{self.start.isoformat()}_{self.end.isoformat()}"


# ---------------------------------------------------------------------------
# Monthly statistics
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class MonthlyStats:
    working_days: int = 0
    total_distance_km: float = 0
    total_deliveries: int = 0
    total_highway_fee: int = 0
    total_work_hours: float = 0
    average_distance_km: float = 0
    average_deliveries: float = 0
    average_work_hours: float = 0


def _average(total, days):
    if days == 0:
        return 0
    return round_half_up(total / days)


def calculate_monthly_stats(reports, period=None, rollover_max=None):
    """
    Fold reports into a :class:`MonthlyStats`.

    Reports outside *period* (when given) and days off are ignored. A worked
    day with missing odometer or time data still counts towards
    ``working_days``; it only adds nothing to the distance or hour totals.
    """
    worked = [
        r for r in reports
        if r.is_worked and (period is None or period.contains(r.date))
    ]
    days = len(worked)

    total_distance = 0
    total_deliveries = 0
    total_fee = 0
    total_hours = 0
    for r in worked:
        total_distance += report_distance(r, rollover_max) or 0
        total_deliveries += r.deliveries or 0
        total_fee += r.highway_fee or 0
        total_hours += (report_duration_minutes(r) or 0) / 60

    return MonthlyStats(
        working_days=days,
        total_distance_km=total_distance,
        total_deliveries=total_deliveries,
        total_highway_fee=total_fee,
        total_work_hours=total_hours,
        average_distance_km=_average(total_distance, days),
        average_deliveries=_average(total_deliveries, days),
        average_work_hours=_average(total_hours, days),
    )


def sort_by_date(reports):
    """Oldest first; exports must read chronologically."""
    return sorted(reports, key=lambda r: r.date)
