"""Replacement domain schemas - Pydantic models for candidate search and eligibility"""

from typing import Any, List, Optional

from pydantic import BaseModel


class CandidateScore(BaseModel):
    """A ranked replacement candidate"""

    agent: Any
    score: float
    distance_km: float
    rating: float
    completed_bookings: int

    class Config:
        arbitrary_types_allowed = True

    @property
    def agent_id(self) -> int:
        return self.agent.id


class ReplaceabilityCheck(BaseModel):
    """Outcome of checking one agent against one booking, listing every failing rule"""

    can_replace: bool
    reasons: List[str]
    distance_km: Optional[float] = None


class ReplacementStats(BaseModel):
    requested: int
    performed: int
    declined: int
    acceptance_rate: float  # accepted / (accepted + declined) as a percentage
