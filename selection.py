"""
Selection hand-off across the redirect to the booking page.

The chosen offer is parked server-side under the visitor's identity for an
hour. The browser keeps its own copy too, so a lost record only costs the
server-side shortcut.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Optional, Tuple

from amadeus_client import AmadeusClient, TravelAPIError
from cache import KeyValueStore

logger = logging.getLogger(__name__)

SELECTION_TTL_SECONDS = 60 * 60

FLIGHT_PREFIX = "selected_flight_"
HOTEL_PREFIX = "selected_hotel_"

SESSION_COOKIE_NAME = "amadeus_session_id"
SESSION_COOKIE_MAX_AGE = 30 * 24 * 60 * 60

_SESSION_ID_RE = re.compile(r"[a-zA-Z0-9\-]+")


# ============================================================================
# CLIENT IDENTITY
# ============================================================================

def client_identity(user_id: Optional[int | str], session_cookie: Optional[str]) -> Tuple[str, Optional[str]]:
    """
    Work out who the visitor is.

    Returns:
        (identity, new_session_id). new_session_id is set only when a guest
        arrived without a usable cookie and the caller must set one.
    """
    if user_id:
        return f"user_{user_id}", None

    if session_cookie and _SESSION_ID_RE.fullmatch(session_cookie):
        return f"guest_{session_cookie}", None

    session_id = str(uuid.uuid4())
    return f"guest_{session_id}", session_id


# ============================================================================
# RELAY
# ============================================================================

class SelectionRelay:
    """One record per identity; a new selection replaces the old one."""

    def __init__(self, store: KeyValueStore, prefix: str, ttl: int = SELECTION_TTL_SECONDS):
        self.cache = store
        self.prefix = prefix
        self.ttl = ttl

    def _key(self, identity: str) -> str:
        return f"{self.prefix}{identity}"

    def store(self, identity: str, payload: Any):
        self.cache.set(self._key(identity), payload, self.ttl)
        logger.info(f"Selection stored: {self._key(identity)}")

    def retrieve(self, identity: str) -> Optional[Any]:
        """Payload if present and unexpired. Does not delete it."""
        return self.cache.get(self._key(identity))

    def clear(self, identity: str):
        self.cache.delete(self._key(identity))
        logger.info(f"Selection cleared: {self._key(identity)}")


# ============================================================================
# LOCATION NAMES
# ============================================================================

def _lookup_location_name(client: AmadeusClient, iata_code: str) -> str:
    """Exact-code match from the location search, else the code itself."""
    try:
        result = client.search_locations(iata_code)
    except TravelAPIError as e:
        logger.warning(f"Location lookup failed for {iata_code}: {e}")
        return iata_code

    for location in (result or {}).get("data") or []:
        if location.get("iataCode") == iata_code and location.get("name"):
            return location["name"]
    return iata_code


def _segment_code(segment: Any, end: str) -> Optional[str]:
    if not isinstance(segment, dict):
        return None
    point = segment.get(end)
    if not isinstance(point, dict):
        return None
    code = point.get("iataCode")
    return code if isinstance(code, str) and code else None


def resolve_location_names(offer: dict, client: AmadeusClient) -> dict:
    """
    Add originLocationName / destinationLocationName to a flight offer.

    Origin is the first outbound segment's departure; destination is the
    last outbound segment's arrival. Offers without that structure are
    returned as they came. The offer is modified and returned.
    """
    itineraries = offer.get("itineraries")
    if not isinstance(itineraries, list) or not itineraries or not isinstance(itineraries[0], dict):
        return offer
    segments = itineraries[0].get("segments")
    if not isinstance(segments, list) or not segments:
        return offer

    origin = _segment_code(segments[0], "departure")
    destination = _segment_code(segments[-1], "arrival")

    if origin:
        offer["originLocationName"] = _lookup_location_name(client, origin)
    if destination:
        offer["destinationLocationName"] = _lookup_location_name(client, destination)
    return offer
