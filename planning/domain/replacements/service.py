"""
Replacement Service
Finds, ranks and assigns substitute agents when an agent cannot honour a booking
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from ...config import REPLACEMENT_NOTIFY_MAX, REPLACEMENT_SEARCH_MAX_RESULTS, SchedulingRules
from ...exceptions import (
    DuplicateReplacementError,
    InvalidCoordinatesError,
    InvalidTransitionError,
    ReplacementNotFoundError,
)
from ...models import ReplacementRequest, ReplacementStatus
from ...services.notification_service import (
    REPLACEMENT_OPPORTUNITY,
    REPLACEMENT_REQUESTED,
    LoggingNotificationSink,
    NotificationSink,
    send_notification,
)
from ..interfaces import AgentReader, BookingWriter, ReplacementStore
from ..scheduling.conflict_detector import ConflictDetector
from ..scheduling.geo import distance_to_booking
from .schemas import CandidateScore, ReplaceabilityCheck, ReplacementStats
from .state_machine import (
    Transition,
    plan_acceptance,
    plan_cancellation,
    plan_decline,
    plan_proposal,
)

logger = logging.getLogger(__name__)


class ReplacementService:
    """Service for the replacement request workflow"""

    def __init__(
        self,
        store: ReplacementStore,
        booking_writer: BookingWriter,
        agent_reader: AgentReader,
        conflict_detector: ConflictDetector,
        notification_sink: Optional[NotificationSink] = None,
        rules: Optional[SchedulingRules] = None,
    ):
        self.store = store
        self.booking_writer = booking_writer
        self.agent_reader = agent_reader
        self.conflict_detector = conflict_detector
        self.notification_sink = notification_sink or LoggingNotificationSink()
        self.rules = rules or conflict_detector.rules

    # ============ REQUEST LIFECYCLE ============

    def get_request(self, request_id: int) -> ReplacementRequest:
        request = self.store.find(request_id)
        if not request:
            raise ReplacementNotFoundError(f"Replacement request {request_id} not found")
        return request

    def request_replacement(self, booking, original_agent, reason: str) -> ReplacementRequest:
        """Open a pending replacement request; at most one active request per booking"""
        if self.store.find_active_for_booking(booking.id):
            raise DuplicateReplacementError(
                f"An active replacement request already exists for booking {booking.id}"
            )

        request = ReplacementRequest(
            booking_id=booking.id,
            original_agent_id=original_agent.id,
            reason=reason,
            status=ReplacementStatus.PENDING,
            requested_at=datetime.utcnow(),
        )
        request = self.store.create(request)

        logger.info(
            f"✅ Replacement {request.id} requested for booking {booking.id} "
            f"by agent {original_agent.id}: {reason}"
        )
        self._notify(REPLACEMENT_REQUESTED, request, recipients=[("client", booking.client_id)])
        return request

    def propose_replacement(self, request: ReplacementRequest, candidate) -> ReplacementRequest:
        transition = plan_proposal(request, candidate, datetime.utcnow())
        request = self._apply(request, transition)

        logger.info(f"✅ Replacement {request.id} proposed to agent {candidate.id}")
        self._notify(transition.event, request, recipients=[("agent", candidate.id)])
        return request

    def accept_replacement(self, request: ReplacementRequest) -> ReplacementRequest:
        transition = plan_acceptance(request, datetime.utcnow())
        request = self._apply(request, transition)

        logger.info(
            f"✅ Replacement {request.id} accepted: booking {request.booking_id} "
            f"now assigned to agent {request.replacement_agent_id}"
        )
        self._notify(
            transition.event,
            request,
            recipients=[("client", request.booking.client_id), ("agent", request.original_agent_id)],
        )
        return request

    def decline_replacement(
        self, request: ReplacementRequest, reason: Optional[str] = None
    ) -> ReplacementRequest:
        """Decline is terminal for the request; use retry_after_decline to search again"""
        transition = plan_decline(request, reason, datetime.utcnow())
        request = self._apply(request, transition)

        logger.info(f"⚠️ Replacement {request.id} declined: {reason or 'no reason given'}")
        self._notify(transition.event, request, recipients=[("agent", request.original_agent_id)])
        return request

    def cancel_replacement(self, request: ReplacementRequest) -> ReplacementRequest:
        transition = plan_cancellation(request, datetime.utcnow())
        request = self._apply(request, transition)

        if transition.reassignment:
            logger.info(
                f"✅ Replacement {request.id} cancelled: booking {request.booking_id} "
                f"returned to agent {request.original_agent_id}"
            )
        else:
            logger.info(f"✅ Replacement {request.id} cancelled")

        recipients = [("client", request.booking.client_id), ("agent", request.original_agent_id)]
        if request.replacement_agent_id:
            recipients.append(("agent", request.replacement_agent_id))
        self._notify(transition.event, request, recipients=recipients)
        return request

    def retry_after_decline(
        self, request: ReplacementRequest, max_results: int = REPLACEMENT_SEARCH_MAX_RESULTS
    ) -> Tuple[ReplacementRequest, List[CandidateScore]]:
        """
        Open a fresh request for the booking of a declined request and propose
        it to the best candidate who has not already declined this booking.
        """
        if ReplacementStatus(request.status) != ReplacementStatus.DECLINED:
            raise InvalidTransitionError(
                f"Replacement request {request.id} is {ReplacementStatus(request.status).value}, not declined"
            )

        declined_agent_ids = self.store.find_declined_agent_ids(request.booking_id)
        new_request = self.request_replacement(request.booking, request.original_agent, request.reason)
        candidates = self.find_and_propose_replacement(
            new_request, max_results, exclude_agent_ids=declined_agent_ids
        )
        return new_request, candidates

    # ============ CANDIDATE SEARCH ============

    def find_available_replacements(
        self,
        booking,
        max_distance_km: Optional[float] = None,
        exclude_agent_ids: Iterable[int] = (),
    ) -> List[CandidateScore]:
        """
        Rank agents able to take over a booking.

        Candidates offer the booking's service category, are approved and
        active, are not the booking's agent, lie within max_distance_km when
        given and are free for the booking's exact window. Ties keep agent id
        order.
        """
        if booking.service_category_id is None:
            logger.warning(f"⚠️ Booking {booking.id} has no service category, no candidates")
            return []

        excluded = set(exclude_agent_ids)
        agents = sorted(
            self.agent_reader.find_by_service_category(booking.service_category_id),
            key=lambda agent: agent.id,
        )

        candidates = []
        for agent in agents:
            if agent.id == booking.agent_id or agent.id in excluded:
                continue
            if not agent.is_approved or not agent.is_active:
                continue

            try:
                distance = distance_to_booking(agent, booking)
            except InvalidCoordinatesError as e:
                logger.warning(f"⚠️ Skipping agent {agent.id} for booking {booking.id}: {e}")
                continue

            if max_distance_km is not None and distance > max_distance_km:
                continue

            if not self.conflict_detector.is_available(
                agent, booking.start_at, booking.end_at, exclude_booking_id=booking.id
            ):
                continue

            candidates.append(self._score(agent, distance))

        ranked = sorted(candidates, key=lambda candidate: candidate.score, reverse=True)
        logger.info(f"📊 {len(ranked)} replacement candidates for booking {booking.id}")
        return ranked

    def find_and_propose_replacement(
        self,
        request: ReplacementRequest,
        max_results: int = REPLACEMENT_SEARCH_MAX_RESULTS,
        exclude_agent_ids: Iterable[int] = (),
    ) -> List[CandidateScore]:
        """Search within the original agent's service radius and propose to the best candidate"""
        candidates = self.find_available_replacements(
            request.booking, request.original_agent.service_radius_km, exclude_agent_ids
        )
        if not candidates:
            logger.warning(
                f"⚠️ No available replacements for request {request.id} (booking {request.booking_id})"
            )
            return []

        shortlist = candidates[:max_results]
        self.propose_replacement(request, shortlist[0].agent)
        return shortlist

    def notify_available_agents(
        self, request: ReplacementRequest, max_notifications: int = REPLACEMENT_NOTIFY_MAX
    ) -> int:
        """Tell the best-ranked candidates about an open replacement; returns how many were reached"""
        candidates = self.find_available_replacements(
            request.booking, request.original_agent.service_radius_km
        )

        notified = 0
        for candidate in candidates[:max_notifications]:
            result = self._notify(
                REPLACEMENT_OPPORTUNITY, request, recipients=[("agent", candidate.agent.id)]
            )
            if result["sent"]:
                notified += 1

        logger.info(f"📊 Replacement {request.id} opportunity sent to {notified} agents")
        return notified

    def can_replace(self, agent, booking) -> ReplaceabilityCheck:
        """Check one agent against one booking, collecting every failing rule"""
        reasons = []

        if agent.id == booking.agent_id:
            reasons.append("Agent is the original agent of this booking")
        if not agent.is_approved:
            reasons.append("Agent account is not approved")
        if not agent.is_active:
            reasons.append("Agent account is inactive")
        if booking.service_category_id is None or not agent.offers_category(booking.service_category_id):
            reasons.append("Agent does not offer this service category")
        if not self.conflict_detector.is_available(
            agent, booking.start_at, booking.end_at, exclude_booking_id=booking.id
        ):
            reasons.append("Agent is not available at this date and time")

        distance = None
        try:
            distance = distance_to_booking(agent, booking)
        except InvalidCoordinatesError as e:
            reasons.append(f"Location unknown, distance cannot be checked ({e})")

        if distance is not None and distance > agent.service_radius_km:
            reasons.append(f"Booking is outside the agent's service area ({distance:.1f} km)")

        return ReplaceabilityCheck(
            can_replace=not reasons,
            reasons=reasons,
            distance_km=round(distance, 2) if distance is not None else None,
        )

    # ============ HISTORY & STATS ============

    def get_pending_replacements_for_agent(self, agent) -> List[ReplacementRequest]:
        return self.store.find_pending_for_agent(agent.id)

    def get_replacement_history(self, agent, role: str = "all") -> List[ReplacementRequest]:
        """role: 'original', 'replacement' or 'all'"""
        return self.store.find_history(agent.id, role)

    def get_replacement_stats(self, agent) -> ReplacementStats:
        requested = self.store.count(original_agent_id=agent.id)
        performed = self.store.count(
            replacement_agent_id=agent.id, status=ReplacementStatus.ACCEPTED
        )
        declined = self.store.count(
            replacement_agent_id=agent.id, status=ReplacementStatus.DECLINED
        )

        answered = performed + declined
        acceptance_rate = performed / answered * 100 if answered else 0.0

        return ReplacementStats(
            requested=requested,
            performed=performed,
            declined=declined,
            acceptance_rate=round(acceptance_rate, 2),
        )

    # ============ HELPERS ============

    def _score(self, agent, distance: float) -> CandidateScore:
        rating = agent.average_rating or 0.0
        completed = agent.completed_bookings_count or 0
        experience = min(completed / self.rules.experience_cap_bookings, 1)

        score = (
            self.rules.distance_weight * (1 / (distance + 1))
            + self.rules.rating_weight * rating
            + self.rules.experience_weight * experience
        )
        return CandidateScore(
            agent=agent,
            score=score,
            distance_km=round(distance, 2),
            rating=rating,
            completed_bookings=completed,
        )

    def _apply(self, request: ReplacementRequest, transition: Transition) -> ReplacementRequest:
        """Persist a planned transition; the booking and the request commit together"""
        if transition.reassignment:
            reassignment = transition.reassignment
            self.booking_writer.reassign_agent(
                reassignment.booking_id,
                reassignment.agent_id,
                reassignment.is_replacement,
                reassignment.reason,
            )

        request.status = transition.status
        for key, value in transition.changes.items():
            setattr(request, key, value)
        return self.store.update(request)

    def _notify(self, event: str, request: ReplacementRequest, recipients=()) -> dict:
        payload = {
            "replacement_id": request.id,
            "booking_id": request.booking_id,
            "status": ReplacementStatus(request.status).value,
            "original_agent_id": request.original_agent_id,
            "replacement_agent_id": request.replacement_agent_id,
            "recipients": [{"type": kind, "id": recipient_id} for kind, recipient_id in recipients],
        }
        return send_notification(self.notification_sink, event, payload)
