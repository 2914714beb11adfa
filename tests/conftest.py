from datetime import datetime, time

import pytest
from sqlalchemy.orm import sessionmaker

from planning.config import SchedulingRules
from planning.database import build_engine, init_db
from planning.domain.replacements.repository import ReplacementRepository
from planning.domain.replacements.service import ReplacementService
from planning.domain.scheduling.conflict_detector import ConflictDetector
from planning.domain.scheduling.geo import FixedTravelTimeEstimator
from planning.domain.scheduling.repository import (
    AgentRepository,
    AvailabilityRepository,
    BookingRepository,
)
from planning.models import Agent, AvailabilityWindow, Booking, ServiceCategory

# Monday 2 March 2026
MONDAY = datetime(2026, 3, 2)

PARIS = (48.8566, 2.3522)


def at(hour, minute=0, day=0):
    """Datetime on MONDAY + day at hour:minute"""
    return MONDAY.replace(day=MONDAY.day + day, hour=hour, minute=minute)


class RecordingSink:
    def __init__(self):
        self.events = []

    def notify(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [event for event, _ in self.events]


class FailingSink:
    def notify(self, event, payload):
        raise RuntimeError("sink down")


class StubTravelEstimator:
    def __init__(self, minutes):
        self.minutes = minutes
        self.calls = []

    def estimate(self, address_a, address_b):
        self.calls.append((address_a, address_b))
        return self.minutes


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'planning.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def rules():
    return SchedulingRules()


@pytest.fixture
def category(db):
    category = ServiceCategory(name="Cleaning", slug="cleaning")
    db.add(category)
    db.commit()
    return category


@pytest.fixture
def other_category(db):
    category = ServiceCategory(name="Gardening", slug="gardening")
    db.add(category)
    db.commit()
    return category


@pytest.fixture
def make_agent(db, category):
    def _make_agent(
        name="Agent",
        latitude=PARIS[0],
        longitude=PARIS[1],
        rating=4.0,
        completed=0,
        radius=20.0,
        approved=True,
        active=True,
        categories=None,
        windows=True,
    ):
        agent = Agent(
            full_name=name,
            latitude=latitude,
            longitude=longitude,
            average_rating=rating,
            completed_bookings_count=completed,
            service_radius_km=radius,
            is_approved=approved,
            is_active=active,
        )
        agent.service_categories = [category] if categories is None else categories
        db.add(agent)
        db.flush()
        if windows:
            for day in range(7):
                db.add(
                    AvailabilityWindow(
                        agent_id=agent.id, day_of_week=day, start_time=time(6), end_time=time(22)
                    )
                )
        db.commit()
        return agent

    return _make_agent


@pytest.fixture
def make_booking(db, category):
    def _make_booking(
        agent,
        start,
        end,
        address="10 Rue de Rivoli, Paris",
        latitude=PARIS[0],
        longitude=PARIS[1],
        status="scheduled",
        client_id=1,
    ):
        booking = Booking(
            agent_id=agent.id,
            client_id=client_id,
            service_category_id=category.id,
            start_at=start,
            end_at=end,
            address=address,
            latitude=latitude,
            longitude=longitude,
            status=status,
        )
        db.add(booking)
        db.commit()
        return booking

    return _make_booking


def build_detector(db, rules, travel_estimator=None, replacement_check=None):
    return ConflictDetector(
        BookingRepository(db),
        AvailabilityRepository(db),
        travel_estimator or FixedTravelTimeEstimator(rules.min_travel_minutes),
        rules=rules,
        replacement_check=replacement_check,
    )


def build_replacement_service(db, rules, sink):
    return ReplacementService(
        ReplacementRepository(db),
        BookingRepository(db),
        AgentRepository(db),
        build_detector(db, rules),
        notification_sink=sink,
        rules=rules,
    )


@pytest.fixture
def detector(db, rules):
    return build_detector(db, rules)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def replacement_service(db, rules, sink):
    return build_replacement_service(db, rules, sink)
