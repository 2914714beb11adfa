import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator, model_validator

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./planning.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Labour rules
MAX_DAILY_HOURS = float(os.getenv("MAX_DAILY_HOURS", "10"))
MAX_WEEKLY_HOURS = float(os.getenv("MAX_WEEKLY_HOURS", "48"))
MIN_BREAK_MINUTES = int(os.getenv("MIN_BREAK_MINUTES", "30"))
# Worked minutes allowed before a break becomes mandatory (6 hours)
MAX_CONSECUTIVE_WORK_MINUTES = int(os.getenv("MAX_CONSECUTIVE_WORK_MINUTES", "360"))

# Travel estimation
MIN_TRAVEL_MINUTES = int(os.getenv("MIN_TRAVEL_MINUTES", "15"))
AVERAGE_TRAVEL_SPEED_KMH = float(os.getenv("AVERAGE_TRAVEL_SPEED_KMH", "50"))

# Replacement search
REPLACEMENT_SEARCH_MAX_RESULTS = int(os.getenv("REPLACEMENT_SEARCH_MAX_RESULTS", "5"))
REPLACEMENT_NOTIFY_MAX = int(os.getenv("REPLACEMENT_NOTIFY_MAX", "10"))

# Nominatim (OpenStreetMap) geocoding, used by the distance-based travel estimator
NOMINATIM_BASE_URL = os.getenv("NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org")
NOMINATIM_USER_AGENT = os.getenv("NOMINATIM_USER_AGENT", "PlanningEngine/1.0")
GEOCODING_TIMEOUT_SECONDS = float(os.getenv("GEOCODING_TIMEOUT_SECONDS", "10"))
GEOCODING_CACHE_SECONDS = int(os.getenv("GEOCODING_CACHE_SECONDS", "86400"))

# Redis (optional - geocoding cache only)
REDIS_URL = os.getenv("REDIS_URL")


def setup_logging(level: str = LOG_LEVEL) -> None:
    """Configure root logging for processes embedding the planning engine"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Reduce verbosity of third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class SchedulingRules(BaseModel):
    """
    Rule constants shared by the conflict detector and the replacement service.

    Injected at construction so that every deployment (and every test) can
    tune caps and weights without touching module globals.
    """

    max_daily_hours: float = 10
    max_weekly_hours: float = 48
    min_break_minutes: int = 30
    max_consecutive_work_minutes: int = 360
    min_travel_minutes: int = 15

    # Composite candidate score: distance, rating (0-5 scale), experience
    distance_weight: float = 0.4
    rating_weight: float = 0.4
    experience_weight: float = 0.2
    experience_cap_bookings: int = 100

    @field_validator(
        "max_daily_hours",
        "max_weekly_hours",
        "min_break_minutes",
        "max_consecutive_work_minutes",
        "experience_cap_bookings",
    )
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("min_travel_minutes")
    @classmethod
    def validate_travel_floor(cls, v):
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @model_validator(mode="after")
    def validate_weights(self):
        total = self.distance_weight + self.rating_weight + self.experience_weight
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"score weights must sum to 1 (got {total})")
        return self

    @classmethod
    def from_env(cls) -> "SchedulingRules":
        return cls(
            max_daily_hours=MAX_DAILY_HOURS,
            max_weekly_hours=MAX_WEEKLY_HOURS,
            min_break_minutes=MIN_BREAK_MINUTES,
            max_consecutive_work_minutes=MAX_CONSECUTIVE_WORK_MINUTES,
            min_travel_minutes=MIN_TRAVEL_MINUTES,
        )
