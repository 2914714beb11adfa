"""
Planning engine: scheduling conflict detection and replacement matching
for agents fulfilling location-bound bookings.
"""

__version__ = "1.0.0"
