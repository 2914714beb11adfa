"""
Read/write seams to the collaborators that own bookings, availabilities,
agents and replacement requests. The SQLAlchemy repositories satisfy these;
any other store can be plugged in behind the same methods.
"""

from datetime import datetime
from typing import List, Optional, Protocol, Set

from ..models import Agent, AvailabilityWindow, Booking, ReplacementRequest, ReplacementStatus


class BookingReader(Protocol):
    def find_by_agent_and_period(
        self, agent_id: int, start: datetime, end: datetime
    ) -> List[Booking]:
        ...

    def find_overlapping(
        self, agent_id: int, start: datetime, end: datetime, exclude_id: Optional[int] = None
    ) -> List[Booking]:
        ...

    def find_previous_booking(
        self, agent_id: int, before: datetime, exclude_id: Optional[int] = None
    ) -> Optional[Booking]:
        ...


class BookingWriter(Protocol):
    def reassign_agent(
        self, booking_id: int, new_agent_id: int, is_replacement: bool, reason: Optional[str]
    ) -> Booking:
        ...


class AvailabilityReader(Protocol):
    def find_for_day_and_time(
        self, agent_id: int, day_of_week: int, start: datetime, end: datetime
    ) -> List[AvailabilityWindow]:
        ...

    def find_for_day(self, agent_id: int, day_of_week: int) -> List[AvailabilityWindow]:
        ...


class AgentReader(Protocol):
    def find_by_service_category(self, category_id: int) -> List[Agent]:
        ...

    def get(self, agent_id: int) -> Optional[Agent]:
        ...


class ReplacementStore(Protocol):
    def create(self, request: ReplacementRequest) -> ReplacementRequest:
        ...

    def find(self, request_id: int) -> Optional[ReplacementRequest]:
        ...

    def find_active_for_booking(self, booking_id: int) -> Optional[ReplacementRequest]:
        ...

    def update(self, request: ReplacementRequest) -> ReplacementRequest:
        ...

    def find_pending_for_agent(self, agent_id: int) -> List[ReplacementRequest]:
        ...

    def find_history(self, agent_id: int, role: str = "all") -> List[ReplacementRequest]:
        ...

    def count(
        self,
        original_agent_id: Optional[int] = None,
        replacement_agent_id: Optional[int] = None,
        status: Optional[ReplacementStatus] = None,
    ) -> int:
        ...

    def find_declined_agent_ids(self, booking_id: int) -> Set[int]:
        ...
