"""
Availability oracle.

Answers whether an agent's recurring weekly windows cover a concrete time
range, and expands those windows into bookable slots for a date range.
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from ..interfaces import AvailabilityReader, BookingReader
from .schemas import AvailableSlot
from .time_calculator import TimeInterval, day_bounds, day_of_week, minutes_between

logger = logging.getLogger(__name__)

NEXT_SLOT_SEARCH_DAYS = 30


class AvailabilityService:
    def __init__(self, availability_reader: AvailabilityReader, booking_reader: BookingReader):
        self.availability_reader = availability_reader
        self.booking_reader = booking_reader

    def covers(self, agent_id: int, start: datetime, end: datetime) -> bool:
        """True when one recurring window fully covers [start, end]"""
        interval = TimeInterval(start, end)
        windows = self.availability_reader.find_for_day_and_time(
            agent_id, day_of_week(interval.start), interval.start, interval.end
        )
        return bool(windows)

    def get_available_slots(
        self, agent_id: int, start_date: date, end_date: date, slot_minutes: int = 60
    ) -> List[AvailableSlot]:
        """
        Expand recurring windows into fixed-length slots between two dates
        (inclusive), dropping slots that collide with an existing booking.
        """
        if slot_minutes <= 0:
            raise ValueError("slot_minutes must be positive")
        if end_date < start_date:
            raise ValueError("end_date must not be before start_date")

        slot_length = timedelta(minutes=slot_minutes)
        slots: List[AvailableSlot] = []
        current = start_date

        while current <= end_date:
            day_start, day_end = day_bounds(current)
            booked = [
                TimeInterval.of(b)
                for b in self.booking_reader.find_overlapping(agent_id, day_start, day_end)
            ]

            for window in self.availability_reader.find_for_day(agent_id, day_of_week(day_start)):
                slot_start = datetime.combine(current, window.start_time)
                window_end = datetime.combine(current, window.end_time)

                while slot_start + slot_length <= window_end:
                    slot = TimeInterval(slot_start, slot_start + slot_length)
                    if not any(slot.overlaps(b) for b in booked):
                        slots.append(AvailableSlot(start_at=slot.start, end_at=slot.end))
                    slot_start += slot_length

            current += timedelta(days=1)

        logger.debug(f"📊 {len(slots)} free slots for agent {agent_id} ({start_date} - {end_date})")
        return slots

    def find_next_available_slot(
        self,
        agent_id: int,
        duration_minutes: int,
        after: Optional[datetime] = None,
        search_days: int = NEXT_SLOT_SEARCH_DAYS,
    ) -> Optional[AvailableSlot]:
        """First free slot of the given length starting at or after `after`, or None"""
        after = after or datetime.utcnow()
        slots = self.get_available_slots(
            agent_id, after.date(), after.date() + timedelta(days=search_days), duration_minutes
        )
        for slot in slots:
            if slot.start_at >= after:
                return slot

        logger.info(f"⚠️ No {duration_minutes} min slot for agent {agent_id} within {search_days} days")
        return None

    def calculate_occupancy_rate(self, agent_id: int, start_date: date, end_date: date) -> float:
        """
        Booked hours as a percentage of available hours between two dates
        (inclusive). Returns 0 when the agent has no availability in the range.
        """
        if end_date < start_date:
            raise ValueError("end_date must not be before start_date")

        available_minutes = 0.0
        current = start_date
        while current <= end_date:
            day_start, _ = day_bounds(current)
            for window in self.availability_reader.find_for_day(agent_id, day_of_week(day_start)):
                available_minutes += minutes_between(
                    datetime.combine(current, window.start_time),
                    datetime.combine(current, window.end_time),
                )
            current += timedelta(days=1)

        if not available_minutes:
            return 0.0

        period_start, _ = day_bounds(start_date)
        _, period_end = day_bounds(end_date)
        booked_minutes = sum(
            TimeInterval.of(b).duration_minutes
            for b in self.booking_reader.find_by_agent_and_period(agent_id, period_start, period_end)
        )
        return round(booked_minutes / available_minutes * 100, 2)
