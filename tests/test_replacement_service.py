from datetime import datetime

import pytest

from conftest import PARIS, FailingSink, RecordingSink, at, build_replacement_service
from planning.domain.replacements.repository import ReplacementRepository
from planning.exceptions import (
    DuplicateReplacementError,
    InvalidCandidateError,
    InvalidTransitionError,
    MissingCandidateError,
    ReplacementNotFoundError,
    StaleReplacementError,
)
from planning.models import ReplacementRequest, ReplacementStatus

KM_PER_DEGREE = 111.195


def north_of_paris(km):
    return PARIS[0] + km / KM_PER_DEGREE


@pytest.fixture
def original(make_agent):
    return make_agent(name="Original", radius=20)


@pytest.fixture
def booking(original, make_booking):
    return make_booking(original, at(10), at(12))


@pytest.fixture
def ranked_agents(make_agent):
    """Three candidates whose composite scores rank A > B > C"""
    agent_a = make_agent(name="A", latitude=north_of_paris(2), rating=4.8)
    agent_b = make_agent(name="B", latitude=north_of_paris(10), rating=4.9)
    agent_c = make_agent(name="C", latitude=north_of_paris(1), rating=3.0)
    return agent_a, agent_b, agent_c


@pytest.fixture
def pending(replacement_service, booking, original):
    return replacement_service.request_replacement(booking, original, "sick")


class TestRequestReplacement:
    def test_creates_pending_request(self, replacement_service, booking, original, sink):
        request = replacement_service.request_replacement(booking, original, "sick")

        assert request.id is not None
        assert request.status == ReplacementStatus.PENDING
        assert replacement_service.store.find_active_for_booking(booking.id).id == request.id
        assert request.booking_id == booking.id
        assert request.original_agent_id == original.id
        assert request.requested_at is not None
        assert sink.names() == ["replacement.requested"]
        assert sink.events[0][1]["recipients"] == [{"type": "client", "id": booking.client_id}]

    def test_one_active_request_per_booking(self, replacement_service, booking, original, pending):
        with pytest.raises(DuplicateReplacementError):
            replacement_service.request_replacement(booking, original, "again")

    def test_unique_index_guards_concurrent_creation(self, db, booking, original, pending):
        store = ReplacementRepository(db)
        duplicate = ReplacementRequest(
            booking_id=booking.id,
            original_agent_id=original.id,
            reason="race",
            status=ReplacementStatus.PENDING,
            requested_at=datetime.utcnow(),
        )

        with pytest.raises(DuplicateReplacementError):
            store.create(duplicate)

        assert store.find_active_for_booking(booking.id).id == pending.id

    def test_new_request_allowed_after_cancellation(
        self, replacement_service, booking, original, pending
    ):
        replacement_service.cancel_replacement(pending)

        request = replacement_service.request_replacement(booking, original, "still sick")

        assert request.id != pending.id
        assert request.status == ReplacementStatus.PENDING

    def test_get_request(self, replacement_service, pending):
        assert replacement_service.get_request(pending.id).id == pending.id
        with pytest.raises(ReplacementNotFoundError):
            replacement_service.get_request(9999)


class TestTransitions:
    def test_propose_and_repropose(self, replacement_service, pending, make_agent, sink):
        first = make_agent(name="First")
        second = make_agent(name="Second")

        replacement_service.propose_replacement(pending, first)
        assert pending.replacement_agent_id == first.id
        assert pending.proposed_at is not None

        replacement_service.propose_replacement(pending, second)
        assert pending.replacement_agent_id == second.id
        assert pending.status == ReplacementStatus.PENDING
        assert sink.names().count("replacement.proposed") == 2

    def test_original_agent_cannot_be_proposed(self, replacement_service, pending, original):
        with pytest.raises(InvalidCandidateError):
            replacement_service.propose_replacement(pending, original)

    def test_accept_without_candidate(self, replacement_service, pending):
        with pytest.raises(MissingCandidateError):
            replacement_service.accept_replacement(pending)

    def test_accept_reassigns_booking(self, replacement_service, pending, booking, make_agent, sink):
        candidate = make_agent(name="Candidate")
        replacement_service.propose_replacement(pending, candidate)

        request = replacement_service.accept_replacement(pending)

        assert request.status == ReplacementStatus.ACCEPTED
        assert request.accepted_at is not None
        assert booking.agent_id == candidate.id
        assert booking.is_replacement is True
        assert booking.replacement_reason == "sick"
        assert sink.names() == [
            "replacement.requested",
            "replacement.proposed",
            "replacement.accepted",
        ]

    def test_accept_then_cancel_restores_original_agent(
        self, replacement_service, pending, booking, original, make_agent
    ):
        candidate = make_agent(name="Candidate")
        replacement_service.propose_replacement(pending, candidate)
        replacement_service.accept_replacement(pending)

        request = replacement_service.cancel_replacement(pending)

        assert request.status == ReplacementStatus.CANCELLED
        assert replacement_service.store.find_active_for_booking(booking.id) is None
        assert request.cancelled_at is not None
        assert booking.agent_id == original.id
        assert booking.is_replacement is False
        assert booking.replacement_reason is None

    def test_cancel_pending_leaves_booking_alone(
        self, replacement_service, pending, booking, original
    ):
        replacement_service.cancel_replacement(pending)

        assert booking.agent_id == original.id
        assert booking.is_replacement is False

    def test_decline_is_terminal(self, replacement_service, pending, make_agent):
        candidate = make_agent(name="Candidate")
        replacement_service.propose_replacement(pending, candidate)

        request = replacement_service.decline_replacement(pending, "busy that day")

        assert request.status == ReplacementStatus.DECLINED
        assert request.decline_reason == "busy that day"
        assert request.declined_at is not None
        with pytest.raises(InvalidTransitionError):
            replacement_service.accept_replacement(request)
        with pytest.raises(InvalidTransitionError):
            replacement_service.propose_replacement(request, candidate)
        with pytest.raises(InvalidTransitionError):
            replacement_service.cancel_replacement(request)

    def test_accepted_request_cannot_be_declined(self, replacement_service, pending, make_agent):
        replacement_service.propose_replacement(pending, make_agent(name="Candidate"))
        replacement_service.accept_replacement(pending)

        with pytest.raises(InvalidTransitionError):
            replacement_service.decline_replacement(pending)

    def test_notification_failure_does_not_abort(self, db, rules, booking, original, make_agent):
        service = build_replacement_service(db, rules, FailingSink())
        request = service.request_replacement(booking, original, "sick")
        candidate = make_agent(name="Candidate")

        service.propose_replacement(request, candidate)
        service.accept_replacement(request)

        assert request.status == ReplacementStatus.ACCEPTED
        assert booking.agent_id == candidate.id

    def test_concurrent_writer_loses(
        self, db, session_factory, rules, replacement_service, pending, make_agent
    ):
        candidate = make_agent(name="Candidate")
        replacement_service.propose_replacement(pending, candidate)

        first_db = session_factory()
        second_db = session_factory()
        try:
            first = build_replacement_service(first_db, rules, RecordingSink())
            second = build_replacement_service(second_db, rules, RecordingSink())
            first_copy = first.get_request(pending.id)
            second_copy = second.get_request(pending.id)

            first.accept_replacement(first_copy)
            with pytest.raises(StaleReplacementError):
                second.decline_replacement(second_copy, "too late")
        finally:
            first_db.close()
            second_db.close()

        db.expire_all()
        assert ReplacementRepository(db).find(pending.id).status == ReplacementStatus.ACCEPTED


class TestCandidateSearch:
    def test_ranking_by_composite_score(self, replacement_service, booking, ranked_agents):
        agent_a, agent_b, agent_c = ranked_agents

        candidates = replacement_service.find_available_replacements(booking)

        assert [c.agent_id for c in candidates] == [agent_a.id, agent_b.id, agent_c.id]
        assert candidates[0].distance_km == pytest.approx(2, abs=0.01)
        assert candidates[0].score == pytest.approx(0.4 / 3 + 0.4 * 4.8, abs=0.001)
        assert candidates[0].score > candidates[1].score > candidates[2].score

    def test_ranking_is_deterministic(self, replacement_service, booking, make_agent):
        twins = [make_agent(name=f"Twin {i}", latitude=north_of_paris(3)) for i in range(3)]

        first = [c.agent_id for c in replacement_service.find_available_replacements(booking)]
        second = [c.agent_id for c in replacement_service.find_available_replacements(booking)]

        assert first == second == [agent.id for agent in twins]

    def test_experience_is_capped(self, replacement_service, booking, make_agent):
        veteran = make_agent(name="Veteran", completed=500)
        regular = make_agent(name="Regular", completed=100)

        candidates = replacement_service.find_available_replacements(booking)

        scores = {c.agent_id: c.score for c in candidates}
        assert scores[veteran.id] == pytest.approx(scores[regular.id])

    def test_missing_rating_counts_as_zero(self, db, replacement_service, booking, make_agent):
        unrated = make_agent(name="Unrated", rating=0.0)

        candidates = replacement_service.find_available_replacements(booking)

        assert candidates[0].agent_id == unrated.id
        assert candidates[0].rating == 0

    def test_filters(
        self, db, replacement_service, booking, make_agent, make_booking, other_category
    ):
        eligible = make_agent(name="Eligible")
        make_agent(name="Unapproved", approved=False)
        make_agent(name="Inactive", active=False)
        make_agent(name="Gardener", categories=[other_category])
        make_agent(name="Unavailable", windows=False)
        make_agent(name="Far away", latitude=north_of_paris(55))
        make_agent(name="Half located", longitude=None)
        busy = make_agent(name="Busy")
        make_booking(busy, at(11), at(13))

        candidates = replacement_service.find_available_replacements(booking, max_distance_km=20)

        assert [c.agent_id for c in candidates] == [eligible.id]

    def test_excluded_agents(self, replacement_service, booking, ranked_agents):
        agent_a, agent_b, agent_c = ranked_agents

        candidates = replacement_service.find_available_replacements(
            booking, exclude_agent_ids={agent_a.id}
        )

        assert [c.agent_id for c in candidates] == [agent_b.id, agent_c.id]

    def test_empty_result_is_valid(self, replacement_service, booking):
        assert replacement_service.find_available_replacements(booking) == []

    def test_find_and_propose(self, replacement_service, pending, ranked_agents, make_agent, sink):
        agent_a, agent_b, _ = ranked_agents
        make_agent(name="Outside radius", latitude=north_of_paris(30), rating=5.0)

        shortlist = replacement_service.find_and_propose_replacement(pending, max_results=2)

        assert [c.agent_id for c in shortlist] == [agent_a.id, agent_b.id]
        assert pending.replacement_agent_id == agent_a.id
        assert sink.names()[-1] == "replacement.proposed"

    def test_find_and_propose_without_candidates(self, replacement_service, pending):
        assert replacement_service.find_and_propose_replacement(pending) == []
        assert pending.replacement_agent_id is None

    def test_retry_after_decline_skips_declining_agents(
        self, replacement_service, pending, ranked_agents
    ):
        agent_a, agent_b, agent_c = ranked_agents
        replacement_service.find_and_propose_replacement(pending)
        replacement_service.decline_replacement(pending, "not available")

        new_request, candidates = replacement_service.retry_after_decline(pending)

        assert new_request.id != pending.id
        assert new_request.status == ReplacementStatus.PENDING
        assert new_request.replacement_agent_id == agent_b.id
        assert [c.agent_id for c in candidates] == [agent_b.id, agent_c.id]

    def test_retry_requires_declined_request(self, replacement_service, pending):
        with pytest.raises(InvalidTransitionError):
            replacement_service.retry_after_decline(pending)

    def test_notify_available_agents(self, replacement_service, pending, ranked_agents, sink):
        notified = replacement_service.notify_available_agents(pending, max_notifications=2)

        assert notified == 2
        assert sink.names().count("replacement.opportunity") == 2

    def test_notify_counts_only_delivered(self, db, rules, booking, original, ranked_agents):
        service = build_replacement_service(db, rules, FailingSink())
        request = service.request_replacement(booking, original, "sick")

        assert service.notify_available_agents(request) == 0


class TestCanReplace:
    def test_eligible_agent(self, replacement_service, booking, make_agent):
        agent = make_agent(name="Eligible")

        check = replacement_service.can_replace(agent, booking)

        assert check.can_replace
        assert check.reasons == []
        assert check.distance_km == 0

    def test_original_agent(self, replacement_service, booking, original):
        check = replacement_service.can_replace(original, booking)

        assert not check.can_replace
        assert any("original agent" in reason for reason in check.reasons)

    def test_lists_every_failing_rule(self, replacement_service, booking, make_agent, other_category):
        agent = make_agent(
            name="Unfit",
            latitude=north_of_paris(55),
            radius=5,
            approved=False,
            active=False,
            categories=[other_category],
            windows=False,
        )

        check = replacement_service.can_replace(agent, booking)

        assert not check.can_replace
        assert len(check.reasons) == 5
        assert check.distance_km == pytest.approx(55, abs=0.1)

    def test_unknown_location(self, replacement_service, booking, make_agent):
        agent = make_agent(name="Nowhere", latitude=None, longitude=None)

        check = replacement_service.can_replace(agent, booking)

        assert not check.can_replace
        assert check.distance_km is None
        assert any("Location unknown" in reason for reason in check.reasons)


class TestHistoryAndStats:
    def test_history_pending_and_stats(
        self, replacement_service, pending, original, ranked_agents
    ):
        agent_a, agent_b, _ = ranked_agents
        replacement_service.find_and_propose_replacement(pending)
        replacement_service.decline_replacement(pending)
        retried, _ = replacement_service.retry_after_decline(pending)

        assert [r.id for r in replacement_service.get_pending_replacements_for_agent(agent_b)] == [
            retried.id
        ]

        replacement_service.accept_replacement(retried)

        history = replacement_service.get_replacement_history(original, role="original")
        assert [r.id for r in history] == [retried.id, pending.id]
        assert [r.id for r in replacement_service.get_replacement_history(agent_a)] == [pending.id]
        assert replacement_service.get_replacement_history(agent_b, "replacement")[0].id == retried.id

        assert replacement_service.get_replacement_stats(original).requested == 2
        stats_a = replacement_service.get_replacement_stats(agent_a)
        assert (stats_a.performed, stats_a.declined, stats_a.acceptance_rate) == (0, 1, 0)
        stats_b = replacement_service.get_replacement_stats(agent_b)
        assert (stats_b.performed, stats_b.declined, stats_b.acceptance_rate) == (1, 0, 100)

    def test_history_rejects_unknown_role(self, replacement_service, original):
        with pytest.raises(ValueError):
            replacement_service.get_replacement_history(original, role="client")
