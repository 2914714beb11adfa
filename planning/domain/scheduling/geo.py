"""
Geographic primitives and travel-time estimation.

Travel time is an estimate behind the TravelTimeEstimator protocol so that
deployments can plug in whatever model they trust. Two estimators ship here:

- FixedTravelTimeEstimator: 0 minutes for the same address, otherwise a
  fixed floor (the default)
- HaversineTravelTimeEstimator: straight-line distance between geocoded
  addresses at an average speed, never below the floor
"""

import logging
import math
from typing import Optional, Protocol, Tuple

from ...config import AVERAGE_TRAVEL_SPEED_KMH, MIN_TRAVEL_MINUTES
from ...shared.validators import has_coordinates, normalize_address, validate_coordinates

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres"""
    validate_coordinates(lat1, lon1)
    validate_coordinates(lat2, lon2)

    lat_from = math.radians(lat1)
    lat_to = math.radians(lat2)
    lat_delta = lat_to - lat_from
    lon_delta = math.radians(lon2) - math.radians(lon1)

    a = (
        math.sin(lat_delta / 2) ** 2
        + math.cos(lat_from) * math.cos(lat_to) * math.sin(lon_delta / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_to_booking(agent, booking) -> float:
    """
    Distance between an agent's home base and a booking location.

    Returns 0 when neither side carries coordinates (unknown locations are
    not penalised). Any partial or one-sided location raises
    InvalidCoordinatesError.
    """
    agent_known = agent.latitude is not None or agent.longitude is not None
    booking_known = booking.latitude is not None or booking.longitude is not None
    if not agent_known and not booking_known:
        return 0.0

    return haversine_km(agent.latitude, agent.longitude, booking.latitude, booking.longitude)


class Geocoder(Protocol):
    def geocode(self, address: str) -> Optional[Tuple[float, float]]:
        ...


class TravelTimeEstimator(Protocol):
    def estimate(self, address_a: Optional[str], address_b: Optional[str]) -> float:
        """Estimated travel minutes from address_a to address_b"""
        ...


class FixedTravelTimeEstimator:
    """Flat estimate: no travel for the same address, otherwise the floor"""

    def __init__(self, minutes: float = 15):
        self.minutes = minutes

    def estimate(self, address_a: Optional[str], address_b: Optional[str]) -> float:
        normalized_a = normalize_address(address_a)
        if normalized_a is not None and normalized_a == normalize_address(address_b):
            return 0
        return self.minutes


class HaversineTravelTimeEstimator:
    """Straight-line distance at an average speed, floored at min_minutes"""

    def __init__(
        self,
        geocoder: Geocoder,
        speed_kmh: float = AVERAGE_TRAVEL_SPEED_KMH,
        min_minutes: float = MIN_TRAVEL_MINUTES,
    ):
        if speed_kmh <= 0:
            raise ValueError("speed_kmh must be positive")
        self.geocoder = geocoder
        self.speed_kmh = speed_kmh
        self.min_minutes = min_minutes

    def estimate(self, address_a: Optional[str], address_b: Optional[str]) -> float:
        normalized_a = normalize_address(address_a)
        normalized_b = normalize_address(address_b)
        if normalized_a is None or normalized_b is None:
            return self.min_minutes
        if normalized_a == normalized_b:
            return 0

        origin = self.geocoder.geocode(address_a)
        destination = self.geocoder.geocode(address_b)
        if not origin or not destination or not has_coordinates(*origin) or not has_coordinates(*destination):
            logger.debug(f"⚠️ Could not geocode travel leg, using floor: {address_a!r} -> {address_b!r}")
            return self.min_minutes

        distance = haversine_km(origin[0], origin[1], destination[0], destination[1])
        minutes = distance / self.speed_kmh * 60
        return max(self.min_minutes, round(minutes))
