"""
Scheduling conflict detection.

Runs a battery of independent rule checks over an agent's bookings and
returns the violations as Conflict values. Nothing here writes to the
store: every method is a read-only decision over the collaborators'
current data, so one detector per worker thread can run in parallel.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ...config import SchedulingRules
from ...shared.validators import validate_interval
from ..interfaces import AvailabilityReader, BookingReader
from .availability_service import AvailabilityService
from .geo import TravelTimeEstimator
from .schemas import (
    Conflict,
    ConflictReport,
    ConflictSummary,
    ConflictType,
    ProposedBooking,
    RejectedBooking,
    ResolutionSuggestion,
    ScheduleValidation,
    Severity,
)
from .time_calculator import (
    TimeInterval,
    day_bounds,
    day_of_week,
    format_span,
    iso_week_key,
    minutes_between,
)

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]

# Hook for policy-specific checks on agents acting as replacements
ReplacementConflictCheck = Callable[[object, Sequence[object]], List[Conflict]]

RESOLUTIONS: Dict[ConflictType, Tuple[Tuple[str, str], ...]] = {
    ConflictType.BOOKING_OVERLAP: (
        ("reschedule", "Move one of the overlapping bookings"),
        ("cancel", "Cancel one of the overlapping bookings"),
        ("assign_replacement", "Assign a replacement agent to one of the bookings"),
    ),
    ConflictType.AVAILABILITY_MISSING: (
        ("add_availability", "Add an availability window covering this time"),
        ("reschedule", "Move the booking into an available window"),
    ),
    ConflictType.DOUBLE_BOOKING: (
        ("cancel_one", "Choose which booking to keep"),
        ("assign_replacement", "Assign a replacement agent to one of the bookings"),
    ),
    ConflictType.TRAVEL_TIME: (
        ("adjust_time", "Shift the start time to leave room for travel"),
        ("optimize_route", "Reorder the day's bookings to shorten travel"),
    ),
    ConflictType.MAX_HOURS_EXCEEDED: (
        ("reschedule", "Move some bookings to another day"),
        ("assign_replacement", "Hand some bookings to another agent"),
    ),
    ConflictType.BREAK_MISSING: (
        ("add_break", "Insert a break between bookings"),
        ("adjust_schedule", "Rearrange the day to include breaks"),
    ),
    ConflictType.REPLACEMENT_CONFLICT: (
        ("find_another_replacement", "Look for a different replacement agent"),
        ("reschedule", "Move the booking to a time the replacement is free"),
    ),
}


@dataclass(frozen=True)
class _Candidate:
    """A not-yet-committed booking, shaped like a stored one"""

    start_at: datetime
    end_at: datetime
    address: Optional[str] = None
    id: Optional[int] = None


def _duration(item) -> float:
    return TimeInterval.of(item).duration_minutes


def _sort_key(conflict: Conflict):
    return (conflict.date, conflict.severity.rank)


class ConflictDetector:
    def __init__(
        self,
        booking_reader: BookingReader,
        availability_reader: AvailabilityReader,
        travel_estimator: TravelTimeEstimator,
        rules: Optional[SchedulingRules] = None,
        replacement_check: Optional[ReplacementConflictCheck] = None,
    ):
        self.rules = rules or SchedulingRules()
        self.booking_reader = booking_reader
        self.availability = AvailabilityService(availability_reader, booking_reader)
        self.travel_estimator = travel_estimator
        self.replacement_check = replacement_check

    @property
    def max_daily_minutes(self) -> float:
        return self.rules.max_daily_hours * 60

    @property
    def max_weekly_minutes(self) -> float:
        return self.rules.max_weekly_hours * 60

    # ============ PUBLIC API ============

    def detect_all_conflicts(
        self, agent, start_date: DateLike, end_date: DateLike
    ) -> List[Conflict]:
        """
        Detect every rule violation in an agent's bookings over a period.

        Dates widen to whole days. Daily caps and breaks are evaluated over
        whole days, weekly caps over whole ISO weeks touching the period.
        Result is ordered by (date, severity).
        """
        start, end = self._normalize_period(start_date, end_date)
        bookings = self.booking_reader.find_by_agent_and_period(agent.id, start, end)

        week_start = datetime.combine(start.date() - timedelta(days=start.weekday()), datetime.min.time())
        week_end = day_bounds(end.date() + timedelta(days=6 - end.weekday()))[1]
        calendar_bookings = self.booking_reader.find_by_agent_and_period(agent.id, week_start, week_end)
        in_period_days = [
            b for b in calendar_bookings if start.date() <= b.start_at.date() <= end.date()
        ]

        conflicts: List[Conflict] = []
        conflicts.extend(self._detect_booking_overlaps(bookings))
        conflicts.extend(self._detect_bookings_outside_availability(agent, bookings))
        conflicts.extend(self._detect_travel_time_conflicts(bookings))
        conflicts.extend(self._detect_daily_max_hours(in_period_days))
        conflicts.extend(self._detect_weekly_max_hours(calendar_bookings, start, end))
        conflicts.extend(self._detect_missing_breaks(in_period_days))
        conflicts.extend(self._detect_replacement_conflicts(agent, bookings))

        conflicts.sort(key=_sort_key)

        logger.info(
            f"📊 Conflicts detected for agent {agent.id} "
            f"({start:%Y-%m-%d} to {end:%Y-%m-%d}): {len(conflicts)}"
        )
        return conflicts

    def would_create_conflict(
        self,
        agent,
        start: datetime,
        end: datetime,
        address: Optional[str] = None,
        exclude_booking_id: Optional[int] = None,
    ) -> List[Conflict]:
        """Check a single new or rescheduled booking before it is committed"""
        validate_interval(start, end)
        candidate = _Candidate(start_at=start, end_at=end, address=address, id=exclude_booking_id)
        return self._check_candidate(agent, candidate, [])

    def is_available(
        self, agent, start: datetime, end: datetime, exclude_booking_id: Optional[int] = None
    ) -> bool:
        """Covered by an availability window and free of overlapping bookings"""
        if not self.availability.covers(agent.id, start, end):
            return False
        return not self.booking_reader.find_overlapping(agent.id, start, end, exclude_booking_id)

    def suggest_conflict_resolutions(self, conflict: Conflict) -> List[ResolutionSuggestion]:
        return [
            ResolutionSuggestion(action=action, description=description, priority=priority)
            for priority, (action, description) in enumerate(RESOLUTIONS[conflict.type], start=1)
        ]

    def validate_schedule(
        self, agent, proposed_bookings: Iterable[Union[ProposedBooking, dict]]
    ) -> ScheduleValidation:
        """
        Validate a batch of proposed bookings in chronological order.

        Each proposal is checked against committed bookings plus the earlier
        proposals of the batch that passed. Rejected proposals do not count
        against later ones.
        """
        proposals = [
            p if isinstance(p, ProposedBooking) else ProposedBooking(**p) for p in proposed_bookings
        ]
        order = sorted(range(len(proposals)), key=lambda i: (proposals[i].start_at, i))

        accepted: List[_Candidate] = []
        errors: List[RejectedBooking] = []
        for index in order:
            proposal = proposals[index]
            candidate = _Candidate(
                start_at=proposal.start_at,
                end_at=proposal.end_at,
                address=proposal.address,
                id=proposal.id,
            )
            conflicts = self._check_candidate(agent, candidate, accepted)
            if conflicts:
                errors.append(
                    RejectedBooking(booking_index=index, booking=proposal, conflicts=conflicts)
                )
            else:
                accepted.append(candidate)

        return ScheduleValidation(
            valid=not errors,
            errors=errors,
            total_bookings=len(proposals),
            valid_count=len(proposals) - len(errors),
        )

    def generate_conflict_report(
        self, agent, start_date: DateLike, end_date: DateLike
    ) -> ConflictReport:
        conflicts = self.detect_all_conflicts(agent, start_date, end_date)
        start, end = self._normalize_period(start_date, end_date)

        conflicts_by_type: Dict[str, List[Conflict]] = OrderedDict()
        summary = ConflictSummary(total_conflicts=len(conflicts))
        for conflict in conflicts:
            conflicts_by_type.setdefault(conflict.type.value, []).append(conflict)
            setattr(summary, conflict.severity.value, getattr(summary, conflict.severity.value) + 1)

        return ConflictReport(
            agent_id=agent.id,
            period_start=start.date(),
            period_end=end.date(),
            summary=summary,
            by_type={t: len(items) for t, items in conflicts_by_type.items()},
            conflicts=conflicts,
            conflicts_by_type=conflicts_by_type,
            generated_at=datetime.utcnow(),
        )

    def calculate_minimum_time_between(
        self, first, second, include_travel_time: bool = True
    ) -> float:
        """Minutes that must separate two bookings: travel plus a fixed buffer"""
        minimum = 0.0
        if include_travel_time:
            minimum += self.travel_estimator.estimate(first.address, second.address)
        return minimum + self.rules.min_travel_minutes

    # ============ DETECTION OVER A PERIOD ============

    def _detect_booking_overlaps(self, bookings) -> List[Conflict]:
        conflicts = []
        ordered = sorted(bookings, key=lambda b: (b.start_at, b.id))

        for i, first in enumerate(ordered):
            first_interval = TimeInterval.of(first)
            for second in ordered[i + 1:]:
                if second.start_at >= first.end_at:
                    break
                if first_interval.overlaps(TimeInterval.of(second)):
                    conflicts.append(
                        Conflict(
                            type=ConflictType.BOOKING_OVERLAP,
                            severity=Severity.CRITICAL,
                            date=first.start_at,
                            message="Two bookings overlap",
                            details={
                                "booking1_id": first.id,
                                "booking1_time": format_span(first.start_at, first.end_at),
                                "booking2_id": second.id,
                                "booking2_time": format_span(second.start_at, second.end_at),
                            },
                        )
                    )
        return conflicts

    def _detect_bookings_outside_availability(self, agent, bookings) -> List[Conflict]:
        conflicts = []
        for booking in bookings:
            if self.availability.covers(agent.id, booking.start_at, booking.end_at):
                continue
            conflicts.append(
                Conflict(
                    type=ConflictType.AVAILABILITY_MISSING,
                    severity=Severity.HIGH,
                    date=booking.start_at,
                    message="Booking falls outside the agent's availability",
                    details={
                        "booking_id": booking.id,
                        "scheduled_time": booking.start_at.strftime("%Y-%m-%d %H:%M"),
                        "duration_minutes": round(_duration(booking)),
                        "day_of_week": day_of_week(booking.start_at),
                    },
                )
            )
        return conflicts

    def _detect_travel_time_conflicts(self, bookings) -> List[Conflict]:
        conflicts = []
        for day_bookings in self._group_by_day(bookings).values():
            for current, following in zip(day_bookings, day_bookings[1:]):
                available = minutes_between(current.end_at, following.start_at)
                required = self.travel_estimator.estimate(current.address, following.address)
                if available >= required:
                    continue
                conflicts.append(
                    Conflict(
                        type=ConflictType.TRAVEL_TIME,
                        severity=Severity.MEDIUM,
                        date=current.start_at,
                        message="Not enough travel time between two bookings",
                        details={
                            "from_booking_id": current.id,
                            "to_booking_id": following.id,
                            "available_time": round(available, 1),
                            "required_time": round(required, 1),
                            "missing_time": round(required - available, 1),
                        },
                    )
                )
        return conflicts

    def _detect_daily_max_hours(self, bookings) -> List[Conflict]:
        conflicts = []
        for day, day_bookings in self._group_by_day(bookings).items():
            total_minutes = sum(_duration(b) for b in day_bookings)
            if total_minutes <= self.max_daily_minutes:
                continue
            conflicts.append(
                Conflict(
                    type=ConflictType.MAX_HOURS_EXCEEDED,
                    severity=Severity.HIGH,
                    date=day_bounds(day)[0],
                    message="Maximum daily working hours exceeded",
                    details={
                        "scope": "daily",
                        "date": day.isoformat(),
                        "total_hours": round(total_minutes / 60, 2),
                        "max_hours": self.rules.max_daily_hours,
                        "excess_hours": round((total_minutes - self.max_daily_minutes) / 60, 2),
                        "booking_count": len(day_bookings),
                    },
                )
            )
        return conflicts

    def _detect_weekly_max_hours(self, bookings, start: datetime, end: datetime) -> List[Conflict]:
        by_week: Dict[str, list] = OrderedDict()
        for booking in sorted(bookings, key=lambda b: (b.start_at, b.id)):
            by_week.setdefault(iso_week_key(booking.start_at), []).append(booking)

        conflicts = []
        for week, week_bookings in by_week.items():
            total_minutes = sum(_duration(b) for b in week_bookings)
            if total_minutes <= self.max_weekly_minutes:
                continue
            anchor = next(
                (b.start_at for b in week_bookings if start <= b.start_at <= end),
                week_bookings[0].start_at,
            )
            conflicts.append(
                Conflict(
                    type=ConflictType.MAX_HOURS_EXCEEDED,
                    severity=Severity.HIGH,
                    date=anchor,
                    message="Maximum weekly working hours exceeded",
                    details={
                        "scope": "weekly",
                        "week": week,
                        "total_hours": round(total_minutes / 60, 2),
                        "max_hours": self.rules.max_weekly_hours,
                        "excess_hours": round((total_minutes - self.max_weekly_minutes) / 60, 2),
                        "booking_count": len(week_bookings),
                    },
                )
            )
        return conflicts

    def _detect_missing_breaks(self, bookings) -> List[Conflict]:
        conflicts = []
        for day, day_bookings in self._group_by_day(bookings).items():
            for run, worked, trigger in self._work_runs(day_bookings):
                if trigger is None:
                    continue
                conflicts.append(self._break_conflict(day, run, worked, trigger))
        return conflicts

    def _detect_replacement_conflicts(self, agent, bookings) -> List[Conflict]:
        if self.replacement_check is None:
            return []
        return list(self.replacement_check(agent, bookings))

    # ============ SINGLE BOOKING CHECKS ============

    def _check_candidate(self, agent, candidate: _Candidate, accepted: List[_Candidate]) -> List[Conflict]:
        interval = TimeInterval.of(candidate)
        conflicts = []

        overlap = self._check_booking_overlap(agent, candidate, interval, accepted)
        if overlap:
            conflicts.append(overlap)

        if not self.availability.covers(agent.id, interval.start, interval.end):
            conflicts.append(
                Conflict(
                    type=ConflictType.AVAILABILITY_MISSING,
                    severity=Severity.HIGH,
                    date=interval.start,
                    message="No availability configured for this time",
                    details={
                        "requested_time": str(interval),
                        "day_of_week": day_of_week(interval.start),
                    },
                )
            )

        if candidate.address:
            travel = self._check_travel_time_from_previous(agent, candidate, accepted)
            if travel:
                conflicts.append(travel)

        day_items = self._day_items(agent, candidate, accepted)

        max_hours = self._check_daily_max_hours(candidate, day_items)
        if max_hours:
            conflicts.append(max_hours)

        missing_break = self._check_break_requirement(candidate, day_items)
        if missing_break:
            conflicts.append(missing_break)

        return conflicts

    def _check_booking_overlap(self, agent, candidate, interval, accepted) -> Optional[Conflict]:
        overlapping = list(
            self.booking_reader.find_overlapping(agent.id, interval.start, interval.end, candidate.id)
        )
        overlapping.extend(a for a in accepted if TimeInterval.of(a).overlaps(interval))
        if not overlapping:
            return None

        return Conflict(
            type=ConflictType.DOUBLE_BOOKING,
            severity=Severity.CRITICAL,
            date=interval.start,
            message="Another booking already occupies this time",
            details={
                "conflicting_bookings": [
                    {"id": b.id, "time": format_span(b.start_at, b.end_at)} for b in overlapping
                ]
            },
        )

    def _check_travel_time_from_previous(self, agent, candidate, accepted) -> Optional[Conflict]:
        previous_items = [a for a in accepted if a.start_at < candidate.start_at]
        stored = self.booking_reader.find_previous_booking(agent.id, candidate.start_at, candidate.id)
        if stored is not None:
            previous_items.append(stored)
        if not previous_items:
            return None

        previous = max(previous_items, key=lambda b: b.start_at)
        available = minutes_between(previous.end_at, candidate.start_at)
        required = self.travel_estimator.estimate(previous.address, candidate.address)
        if available >= required:
            return None

        return Conflict(
            type=ConflictType.TRAVEL_TIME,
            severity=Severity.MEDIUM,
            date=candidate.start_at,
            message="Not enough travel time from the previous booking",
            details={
                "previous_booking_id": previous.id,
                "available_time": round(available, 1),
                "required_time": round(required, 1),
                "missing_time": round(required - available, 1),
            },
        )

    def _check_daily_max_hours(self, candidate, day_items) -> Optional[Conflict]:
        new_minutes = _duration(candidate)
        current_minutes = sum(_duration(item) for item in day_items if item is not candidate)
        total_minutes = current_minutes + new_minutes
        if total_minutes <= self.max_daily_minutes:
            return None

        return Conflict(
            type=ConflictType.MAX_HOURS_EXCEEDED,
            severity=Severity.HIGH,
            date=candidate.start_at,
            message="This booking would exceed the maximum daily working hours",
            details={
                "scope": "daily",
                "current_hours": round(current_minutes / 60, 2),
                "new_booking_hours": round(new_minutes / 60, 2),
                "total_hours": round(total_minutes / 60, 2),
                "max_hours": self.rules.max_daily_hours,
                "excess_hours": round((total_minutes - self.max_daily_minutes) / 60, 2),
            },
        )

    def _check_break_requirement(self, candidate, day_items) -> Optional[Conflict]:
        for run, worked, trigger in self._work_runs(day_items):
            if trigger is not None and any(item is candidate for item in run):
                return self._break_conflict(candidate.start_at.date(), run, worked, trigger)
        return None

    # ============ HELPERS ============

    def _day_items(self, agent, candidate, accepted) -> list:
        """Committed bookings of the candidate's day, earlier accepted proposals and the candidate"""
        day = candidate.start_at.date()
        day_start, day_end = day_bounds(day)
        items = [
            b
            for b in self.booking_reader.find_by_agent_and_period(agent.id, day_start, day_end)
            if candidate.id is None or b.id != candidate.id
        ]
        items.extend(a for a in accepted if a.start_at.date() == day)
        items.append(candidate)
        return sorted(items, key=lambda item: item.start_at)

    def _work_runs(self, day_items):
        """
        Split a day into runs of work separated by breaks of at least
        min_break_minutes. Yields (run, worked_minutes, trigger) where trigger
        is the item that pushed the run past the consecutive-work threshold.
        """
        run, worked, trigger, last_end = [], 0.0, None, None

        for item in day_items:
            if last_end is not None and minutes_between(last_end, item.start_at) >= self.rules.min_break_minutes:
                yield run, worked, trigger
                run, worked, trigger, last_end = [], 0.0, None, None

            run.append(item)
            worked += _duration(item)
            if trigger is None and worked > self.rules.max_consecutive_work_minutes:
                trigger = item
            last_end = item.end_at if last_end is None else max(last_end, item.end_at)

        if run:
            yield run, worked, trigger

    def _break_conflict(self, day: date, run, worked: float, trigger) -> Conflict:
        return Conflict(
            type=ConflictType.BREAK_MISSING,
            severity=Severity.MEDIUM,
            date=day_bounds(day)[0],
            message=(
                f"Mandatory {self.rules.min_break_minutes}-minute break missing after "
                f"{self.rules.max_consecutive_work_minutes // 60} hours of work"
            ),
            details={
                "date": day.isoformat(),
                "consecutive_minutes": round(worked),
                "max_consecutive_minutes": self.rules.max_consecutive_work_minutes,
                "booking_id": trigger.id,
                "run_start": run[0].start_at.strftime("%H:%M"),
                "run_end": max(item.end_at for item in run).strftime("%H:%M"),
            },
        )

    @staticmethod
    def _group_by_day(bookings) -> Dict[date, list]:
        by_day: Dict[date, list] = OrderedDict()
        for booking in sorted(bookings, key=lambda b: (b.start_at, b.id)):
            by_day.setdefault(booking.start_at.date(), []).append(booking)
        return by_day

    @staticmethod
    def _normalize_period(start_date: DateLike, end_date: DateLike) -> Tuple[datetime, datetime]:
        start = start_date if isinstance(start_date, datetime) else day_bounds(start_date)[0]
        end = end_date if isinstance(end_date, datetime) else day_bounds(end_date)[1]
        validate_interval(start, end)
        return start, end
