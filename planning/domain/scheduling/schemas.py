"""Scheduling domain schemas - Pydantic models for conflict detection results"""

import enum
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class ConflictType(str, enum.Enum):
    BOOKING_OVERLAP = "booking_overlap"
    AVAILABILITY_MISSING = "availability_missing"
    DOUBLE_BOOKING = "double_booking"
    TRAVEL_TIME = "travel_time"
    MAX_HOURS_EXCEEDED = "max_hours_exceeded"
    BREAK_MISSING = "break_missing"
    REPLACEMENT_CONFLICT = "replacement_conflict"


class Severity(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class Conflict(BaseModel):
    """A detected violation of scheduling or labour rules"""

    type: ConflictType
    severity: Severity
    date: datetime
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_blocking(self) -> bool:
        return self.severity in (Severity.CRITICAL, Severity.HIGH)


class ResolutionSuggestion(BaseModel):
    action: str
    description: str
    priority: int


class ProposedBooking(BaseModel):
    """A booking not yet committed, checked by schedule validation"""

    start_at: datetime
    end_at: datetime
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    id: Optional[int] = None

    @model_validator(mode="after")
    def validate_times(self):
        if self.start_at >= self.end_at:
            raise ValueError("start_at must be before end_at")
        return self


class RejectedBooking(BaseModel):
    booking_index: int  # position in the caller's input list
    booking: ProposedBooking
    conflicts: List[Conflict]


class ScheduleValidation(BaseModel):
    valid: bool
    errors: List[RejectedBooking]
    total_bookings: int
    valid_count: int


class ConflictSummary(BaseModel):
    total_conflicts: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class ConflictReport(BaseModel):
    agent_id: int
    period_start: date
    period_end: date
    summary: ConflictSummary
    by_type: Dict[str, int]
    conflicts: List[Conflict]
    conflicts_by_type: Dict[str, List[Conflict]]
    generated_at: datetime


class AvailableSlot(BaseModel):
    start_at: datetime
    end_at: datetime
