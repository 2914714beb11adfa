"""Time interval primitives and calendar bucketing"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Tuple

from ...shared.validators import validate_interval


def intervals_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """Half-open overlap test: touching intervals do not overlap"""
    return start_a < end_b and start_b < end_a


@dataclass(frozen=True)
class TimeInterval:
    start: datetime
    end: datetime

    def __post_init__(self):
        validate_interval(self.start, self.end)

    @classmethod
    def of(cls, item) -> "TimeInterval":
        """Build from anything exposing start_at / end_at (bookings, proposals)"""
        return cls(item.start_at, item.end_at)

    def overlaps(self, other: "TimeInterval") -> bool:
        return intervals_overlap(self.start, self.end, other.start, other.end)

    def contains(self, other: "TimeInterval") -> bool:
        return self.start <= other.start and self.end >= other.end

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60

    def __str__(self) -> str:
        return f"{self.start.strftime('%Y-%m-%d %H:%M')} - {self.end.strftime('%H:%M')}"


def minutes_between(earlier: datetime, later: datetime) -> float:
    """Signed gap in minutes; negative when the intervals overlap"""
    return (later - earlier).total_seconds() / 60


def day_of_week(moment: datetime) -> int:
    """Day index used by availability windows: 0 = Sunday ... 6 = Saturday"""
    return (moment.weekday() + 1) % 7


def iso_week_key(moment: datetime) -> str:
    """Calendar bucket for weekly caps, e.g. '2026-W42'"""
    iso_year, iso_week, _ = moment.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """First and last instant of a calendar day"""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1) - timedelta(microseconds=1)


def format_span(start: datetime, end: datetime) -> str:
    return f"{start.strftime('%H:%M')} - {end.strftime('%H:%M')}"
