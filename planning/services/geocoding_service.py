"""
Address geocoding via OpenStreetMap Nominatim.

Feeds the distance-based travel estimator. Nominatim usage policy requires
a User-Agent with contact info and reasonable request rates, so resolved
addresses are cached in Redis when it is available.
"""

import logging
from typing import Optional, Tuple

import httpx

from ..cache import Cache
from ..config import (
    GEOCODING_CACHE_SECONDS,
    GEOCODING_TIMEOUT_SECONDS,
    NOMINATIM_BASE_URL,
    NOMINATIM_USER_AGENT,
)
from ..shared.validators import normalize_address

logger = logging.getLogger(__name__)


class NominatimGeocoder:
    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        cache: Optional[Cache] = None,
        base_url: str = NOMINATIM_BASE_URL,
        user_agent: str = NOMINATIM_USER_AGENT,
        timeout: float = GEOCODING_TIMEOUT_SECONDS,
        cache_seconds: int = GEOCODING_CACHE_SECONDS,
    ):
        self.client = client or httpx.Client(timeout=timeout)
        self.cache = cache or Cache()
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.cache_seconds = cache_seconds

    def geocode(self, address: str) -> Optional[Tuple[float, float]]:
        """Resolve an address to (latitude, longitude), or None when it cannot be resolved"""
        normalized = normalize_address(address)
        if not normalized:
            return None

        cache_key = f"geo:search:{normalized}"
        cached = self.cache.get(cache_key)
        if cached:
            return cached[0], cached[1]

        params = {"q": address, "format": "json", "limit": "1"}
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}

        try:
            resp = self.client.get(f"{self.base_url}/search", params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Geocoding request failed for {address!r}: {e}")
            return None

        if resp.status_code >= 400:
            logger.warning(f"⚠️ Nominatim error {resp.status_code}: {resp.text[:200]}")
            return None

        results = resp.json()
        if not results:
            logger.debug(f"❌ No geocoding result for {address!r}")
            return None

        try:
            coordinates = (float(results[0]["lat"]), float(results[0]["lon"]))
        except (KeyError, TypeError, ValueError):
            logger.warning(f"⚠️ Malformed geocoding result for {address!r}: {results[0]}")
            return None

        self.cache.set(cache_key, list(coordinates), self.cache_seconds)
        return coordinates

    def close(self) -> None:
        self.client.close()
