"""Shared validation utilities"""

import re
from datetime import datetime
from typing import Optional

from ..exceptions import InvalidCoordinatesError, InvalidIntervalError


def validate_interval(start: datetime, end: datetime) -> None:
    """
    Validate that a time interval is well formed.

    Raises:
        InvalidIntervalError: If either bound is missing or start >= end
    """
    if start is None or end is None:
        raise InvalidIntervalError("Interval start and end are required")
    if start >= end:
        raise InvalidIntervalError(
            f"Interval start must be before end (got {start.isoformat()} - {end.isoformat()})"
        )


def has_coordinates(latitude: Optional[float], longitude: Optional[float]) -> bool:
    """True when both coordinates are present"""
    return latitude is not None and longitude is not None


def validate_coordinates(latitude: Optional[float], longitude: Optional[float]) -> None:
    """
    Validate a latitude/longitude pair.

    Raises:
        InvalidCoordinatesError: If only one coordinate is given or a value is out of range
    """
    if latitude is None or longitude is None:
        raise InvalidCoordinatesError("Latitude and longitude must be provided together")
    if not -90 <= latitude <= 90:
        raise InvalidCoordinatesError(f"Latitude out of range: {latitude}")
    if not -180 <= longitude <= 180:
        raise InvalidCoordinatesError(f"Longitude out of range: {longitude}")


def normalize_address(address: Optional[str]) -> Optional[str]:
    """Collapse whitespace and case so equal addresses compare equal"""
    if not address:
        return None

    normalized = re.sub(r"\s+", " ", address).strip().lower()
    return normalized or None
