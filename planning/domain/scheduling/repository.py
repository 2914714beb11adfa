"""Booking, availability and agent repositories - Database reads for scheduling decisions"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from ...models import Agent, AvailabilityWindow, Booking, BookingStatus, agent_service_categories


class BookingRepository:
    """Repository for booking queries. Cancelled bookings are never returned."""

    def __init__(self, db: Session):
        self.db = db

    def _live_bookings(self, agent_id: int):
        return self.db.query(Booking).filter(
            Booking.agent_id == agent_id,
            Booking.status != BookingStatus.CANCELLED.value,
        )

    def get(self, booking_id: int) -> Optional[Booking]:
        return self.db.query(Booking).filter(Booking.id == booking_id).first()

    def find_by_agent_and_period(
        self, agent_id: int, start: datetime, end: datetime
    ) -> List[Booking]:
        """Bookings starting within [start, end], ordered by start time"""
        return (
            self._live_bookings(agent_id)
            .filter(Booking.start_at >= start, Booking.start_at <= end)
            .order_by(Booking.start_at, Booking.id)
            .all()
        )

    def find_overlapping(
        self, agent_id: int, start: datetime, end: datetime, exclude_id: Optional[int] = None
    ) -> List[Booking]:
        query = self._live_bookings(agent_id).filter(
            Booking.start_at < end, Booking.end_at > start
        )
        if exclude_id is not None:
            query = query.filter(Booking.id != exclude_id)
        return query.order_by(Booking.start_at, Booking.id).all()

    def find_previous_booking(
        self, agent_id: int, before: datetime, exclude_id: Optional[int] = None
    ) -> Optional[Booking]:
        """Latest booking starting before the given instant"""
        query = self._live_bookings(agent_id).filter(Booking.start_at < before)
        if exclude_id is not None:
            query = query.filter(Booking.id != exclude_id)
        return query.order_by(Booking.start_at.desc(), Booking.id.desc()).first()

    def reassign_agent(
        self, booking_id: int, new_agent_id: int, is_replacement: bool, reason: Optional[str]
    ) -> Booking:
        """
        Move a booking to another agent and tag it as a replacement.
        Flushes only: the caller's unit of work commits.
        """
        booking = self.get(booking_id)
        if not booking:
            raise ValueError("Booking not found")

        booking.agent_id = new_agent_id
        booking.is_replacement = is_replacement
        booking.replacement_reason = reason
        self.db.flush()
        return booking


class AvailabilityRepository:
    """Repository for recurring availability windows"""

    def __init__(self, db: Session):
        self.db = db

    def find_for_day(self, agent_id: int, day_of_week: int) -> List[AvailabilityWindow]:
        return (
            self.db.query(AvailabilityWindow)
            .filter(
                AvailabilityWindow.agent_id == agent_id,
                AvailabilityWindow.day_of_week == day_of_week,
                AvailabilityWindow.is_active.is_(True),
            )
            .order_by(AvailabilityWindow.start_time)
            .all()
        )

    def find_for_day_and_time(
        self, agent_id: int, day_of_week: int, start: datetime, end: datetime
    ) -> List[AvailabilityWindow]:
        """Windows on the given weekday that fully cover [start, end]"""
        if start.date() != end.date():
            # Recurring windows live within a single day
            return []

        return (
            self.db.query(AvailabilityWindow)
            .filter(
                AvailabilityWindow.agent_id == agent_id,
                AvailabilityWindow.day_of_week == day_of_week,
                AvailabilityWindow.is_active.is_(True),
                AvailabilityWindow.start_time <= start.time(),
                AvailabilityWindow.end_time >= end.time(),
            )
            .order_by(AvailabilityWindow.start_time)
            .all()
        )


class AgentRepository:
    """Repository for agent lookups"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, agent_id: int) -> Optional[Agent]:
        return self.db.query(Agent).filter(Agent.id == agent_id).first()

    def find_by_service_category(self, category_id: int) -> List[Agent]:
        """Agents offering a service category, ordered by id for deterministic ranking"""
        return (
            self.db.query(Agent)
            .join(agent_service_categories, agent_service_categories.c.agent_id == Agent.id)
            .filter(agent_service_categories.c.category_id == category_id)
            .order_by(Agent.id)
            .all()
        )
