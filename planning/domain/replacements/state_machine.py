"""
Replacement request lifecycle.

    pending --propose--> pending
    pending --accept---> accepted
    pending --decline--> declined
    pending --cancel---> cancelled
    accepted --cancel--> cancelled

declined and cancelled are terminal. The plan_* functions are pure: they
validate the request's current state and return the Transition to apply,
leaving persistence and notification to the caller.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional

from ...exceptions import InvalidCandidateError, InvalidTransitionError, MissingCandidateError
from ...models import ReplacementStatus
from ...services.notification_service import (
    REPLACEMENT_ACCEPTED,
    REPLACEMENT_CANCELLED,
    REPLACEMENT_DECLINED,
    REPLACEMENT_PROPOSED,
)

ALLOWED_TRANSITIONS: Dict[ReplacementStatus, FrozenSet[ReplacementStatus]] = {
    ReplacementStatus.PENDING: frozenset(
        {
            ReplacementStatus.PENDING,
            ReplacementStatus.ACCEPTED,
            ReplacementStatus.DECLINED,
            ReplacementStatus.CANCELLED,
        }
    ),
    ReplacementStatus.ACCEPTED: frozenset({ReplacementStatus.CANCELLED}),
    ReplacementStatus.DECLINED: frozenset(),
    ReplacementStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class BookingReassignment:
    booking_id: int
    agent_id: int
    is_replacement: bool
    reason: Optional[str]


@dataclass(frozen=True)
class Transition:
    status: ReplacementStatus
    event: str
    changes: Dict[str, Any] = field(default_factory=dict)
    reassignment: Optional[BookingReassignment] = None


def can_transition(current, target: ReplacementStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[ReplacementStatus(current)]


def _ensure_allowed(request, target: ReplacementStatus, action: str) -> None:
    current = ReplacementStatus(request.status)
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot {action} replacement request {request.id}: status is {current.value}"
        )


def plan_proposal(request, candidate, now: datetime) -> Transition:
    """Propose (or re-propose) a candidate on a pending request"""
    _ensure_allowed(request, ReplacementStatus.PENDING, "propose a candidate for")
    if candidate.id == request.original_agent_id:
        raise InvalidCandidateError("The original agent cannot replace themselves")

    return Transition(
        status=ReplacementStatus.PENDING,
        event=REPLACEMENT_PROPOSED,
        changes={"replacement_agent_id": candidate.id, "proposed_at": now},
    )


def plan_acceptance(request, now: datetime) -> Transition:
    _ensure_allowed(request, ReplacementStatus.ACCEPTED, "accept")
    if request.replacement_agent_id is None:
        raise MissingCandidateError(f"No replacement agent proposed for request {request.id}")

    return Transition(
        status=ReplacementStatus.ACCEPTED,
        event=REPLACEMENT_ACCEPTED,
        changes={"accepted_at": now},
        reassignment=BookingReassignment(
            booking_id=request.booking_id,
            agent_id=request.replacement_agent_id,
            is_replacement=True,
            reason=request.reason,
        ),
    )


def plan_decline(request, reason: Optional[str], now: datetime) -> Transition:
    _ensure_allowed(request, ReplacementStatus.DECLINED, "decline")
    return Transition(
        status=ReplacementStatus.DECLINED,
        event=REPLACEMENT_DECLINED,
        changes={"declined_at": now, "decline_reason": reason},
    )


def plan_cancellation(request, now: datetime) -> Transition:
    """Cancel a request; an accepted one hands the booking back to the original agent"""
    _ensure_allowed(request, ReplacementStatus.CANCELLED, "cancel")

    reassignment = None
    if ReplacementStatus(request.status) == ReplacementStatus.ACCEPTED:
        reassignment = BookingReassignment(
            booking_id=request.booking_id,
            agent_id=request.original_agent_id,
            is_replacement=False,
            reason=None,
        )

    return Transition(
        status=ReplacementStatus.CANCELLED,
        event=REPLACEMENT_CANCELLED,
        changes={"cancelled_at": now},
        reassignment=reassignment,
    )
