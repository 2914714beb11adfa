import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Time,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class BookingStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReplacementStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"


ACTIVE_REPLACEMENT_STATUSES = (ReplacementStatus.PENDING, ReplacementStatus.ACCEPTED)


agent_service_categories = Table(
    "agent_service_categories",
    Base.metadata,
    Column("agent_id", Integer, ForeignKey("agents.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "category_id",
        Integer,
        ForeignKey("service_categories.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class ServiceCategory(Base):
    __tablename__ = "service_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)


class Agent(Base):
    """Service provider fulfilling bookings"""

    __tablename__ = "agents"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)

    # Home base used for distance checks
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    service_radius_km = Column(Float, default=20.0, nullable=False)

    is_approved = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    completed_bookings_count = Column(Integer, default=0, nullable=False)
    average_rating = Column(Float, default=0.0, nullable=False)  # 0-5 scale

    created_at = Column(DateTime, server_default=func.now())

    service_categories = relationship(
        "ServiceCategory", secondary=agent_service_categories, lazy="selectin"
    )
    availability_windows = relationship(
        "AvailabilityWindow", back_populates="agent", cascade="all, delete-orphan"
    )

    def offers_category(self, category_id: int) -> bool:
        return any(category.id == category_id for category in self.service_categories)


class AvailabilityWindow(Base):
    """Recurring weekly window during which an agent accepts work"""

    __tablename__ = "availabilities"

    id = Column(Integer, primary_key=True, index=True)
    agent_id = Column(Integer, ForeignKey("agents.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday ... 6 = Saturday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    agent = relationship("Agent", back_populates="availability_windows")


class Booking(Base):
    """Scheduled, location-bound service engagement between a client and an agent"""

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )
    agent_id = Column(Integer, ForeignKey("agents.id"), nullable=False, index=True)
    client_id = Column(Integer, nullable=False, index=True)
    service_category_id = Column(Integer, ForeignKey("service_categories.id"), nullable=True)

    start_at = Column(DateTime, nullable=False, index=True)
    end_at = Column(DateTime, nullable=False)

    address = Column(Text, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Status workflow: scheduled → confirmed → in_progress → completed (or cancelled)
    status = Column(String(50), default=BookingStatus.SCHEDULED.value, nullable=False, index=True)

    # Set only when a replacement agent took over the booking
    is_replacement = Column(Boolean, default=False, nullable=False)
    replacement_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    agent = relationship("Agent")
    service_category = relationship("ServiceCategory")


class ReplacementRequest(Base):
    """Search for, and negotiation of, a substitute agent for one booking"""

    __tablename__ = "replacement_requests"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    original_agent_id = Column(Integer, ForeignKey("agents.id"), nullable=False, index=True)
    replacement_agent_id = Column(Integer, ForeignKey("agents.id"), nullable=True, index=True)

    reason = Column(String(255), nullable=False)
    status = Column(
        Enum(
            ReplacementStatus,
            name="replacement_status",
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        default=ReplacementStatus.PENDING,
        nullable=False,
        index=True,
    )

    requested_at = Column(DateTime, nullable=False)
    proposed_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    declined_at = Column(DateTime, nullable=True)
    decline_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # Optimistic locking: concurrent writers on the same request lose with StaleDataError
    version_id = Column(Integer, nullable=False)

    booking = relationship("Booking")
    original_agent = relationship("Agent", foreign_keys=[original_agent_id])
    replacement_agent = relationship("Agent", foreign_keys=[replacement_agent_id])

    __table_args__ = (
        # At most one active request per booking
        Index(
            "uq_replacement_requests_active_booking",
            "booking_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'accepted')"),
            sqlite_where=text("status IN ('pending', 'accepted')"),
        ),
    )
    __mapper_args__ = {"version_id_col": version_id}
