"""
Amadeus Self-Service API client.

Token cache + request gateway for location search, flight offers and the
two-step hotel search (hotel ids by city, then offers by id batch).

Tokens are kept in the shared key-value store so every worker process
reuses the same bearer token until it is about to expire.
"""

import json
import logging
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

import requests

from cache import KeyValueStore
from config import Credentials

logger = logging.getLogger(__name__)


TOKEN_STORE_KEY = "amadeus_api_token_v2"
TOKEN_TIMEOUT = 30
REQUEST_TIMEOUT = 45
# Seconds shaved off the provider-declared lifetime.
TOKEN_EXPIRY_MARGIN = 60
DEFAULT_TOKEN_LIFETIME = 1700

MAX_HOTELS_PER_REQUEST = 50
REDUCED_HOTELS_PER_REQUEST = 20

JSON_CONTENT_TYPE = "application/json;charset=UTF-8"
AMADEUS_JSON_CONTENT_TYPE = "application/vnd.amadeus+json"


# ============================================================================
# ERRORS
# ============================================================================

class ErrorCode(Enum):
    """Structured error codes surfaced to the request handlers."""
    CREDENTIALS_MISSING = "CREDENTIALS_MISSING"
    TOKEN_RETRIEVAL_FAILED = "TOKEN_RETRIEVAL_FAILED"
    UPSTREAM_REQUEST_FAILED = "UPSTREAM_REQUEST_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    INVALID_INPUT = "INVALID_INPUT"


class TravelAPIError(Exception):
    """Base class for every failure the request handlers report to users."""
    code = ErrorCode.UPSTREAM_REQUEST_FAILED

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(f"{self.code.value}: {message}")


class CredentialsMissing(TravelAPIError):
    code = ErrorCode.CREDENTIALS_MISSING

    def __init__(self, message: str = "Amadeus API Key or Secret is not configured."):
        super().__init__(message)


class TokenRetrievalFailed(TravelAPIError):
    code = ErrorCode.TOKEN_RETRIEVAL_FAILED

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message, {"status": status, "body": body})
        self.status = status
        self.body = body


class UpstreamRequestFailed(TravelAPIError):
    code = ErrorCode.UPSTREAM_REQUEST_FAILED

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message, {"status": status, "body": body})
        self.status = status
        self.body = body

    @property
    def is_uri_too_long(self) -> bool:
        """Provider rejected the request line (too many hotel ids)."""
        if self.status == 414:
            return True
        text = self.message.lower()
        return "exceeds 2048 bytes" in text or "uri too long" in text


class RateLimited(TravelAPIError):
    code = ErrorCode.RATE_LIMITED

    def __init__(self, message: str = "Too many requests. Please try again later."):
        super().__init__(message)


class InvalidInput(TravelAPIError):
    code = ErrorCode.INVALID_INPUT


def _decode_body(response: requests.Response) -> Any:
    """Decoded JSON body, or None when the body is empty or not JSON."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


# ============================================================================
# TOKEN MANAGER
# ============================================================================

class TokenManager:
    """OAuth2 client-credentials token, cached in the key-value store."""

    def __init__(self, credentials: Credentials, store: KeyValueStore, session: requests.Session = None):
        self.credentials = credentials
        self.store = store
        self.session = session or requests.Session()

    def get_token(self) -> str:
        """Return a valid access token, fetching a new one on miss or expiry.

        Raises:
            CredentialsMissing: key or secret not configured
            TokenRetrievalFailed: the token endpoint did not hand out a token
        """
        cached = self.store.get(TOKEN_STORE_KEY)
        if cached and cached.get("value") and self.store.clock() < cached.get("expires_at", 0):
            return cached["value"]
        return self._fetch_new_token()

    def invalidate(self):
        """Drop the cached token (e.g. after the provider rejected it)."""
        self.store.delete(TOKEN_STORE_KEY)

    def _fetch_new_token(self) -> str:
        if not self.credentials.is_complete:
            logger.error("API Key or Secret is missing.")
            raise CredentialsMissing()

        url = f"{self.credentials.base_url}/v1/security/oauth2/token"
        logger.info(f"Requesting new Amadeus API token from: {url}")

        try:
            response = self.session.post(
                url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.credentials.key,
                    "client_secret": self.credentials.secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=TOKEN_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Network error during token request: {e}")
            raise TokenRetrievalFailed(f"Failed to retrieve Amadeus API access token. {e}")

        data = _decode_body(response)
        logger.debug(f"Token response code: {response.status_code}")

        if response.status_code == 200 and isinstance(data, dict) and data.get("access_token"):
            try:
                expires_in = int(data.get("expires_in", DEFAULT_TOKEN_LIFETIME))
            except (TypeError, ValueError):
                expires_in = DEFAULT_TOKEN_LIFETIME
            lifetime = max(0, expires_in - TOKEN_EXPIRY_MARGIN)

            token = data["access_token"]
            self.store.set(
                TOKEN_STORE_KEY,
                {"value": token, "expires_at": self.store.clock() + lifetime},
                lifetime,
            )
            logger.info(f"Amadeus token acquired, cached for {lifetime}s")
            return token

        message = "Failed to retrieve Amadeus API access token."
        if isinstance(data, dict):
            errors = data.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict) and errors[0].get("detail"):
                message += f" {errors[0]['detail']}"
            elif data.get("error_description"):
                message += f" {data['error_description']}"
            elif data.get("title"):
                message += f" {data['title']}"

        logger.error(f"Error retrieving token: {message}")
        raise TokenRetrievalFailed(
            message,
            status=response.status_code,
            body=data if data is not None else response.text[:200],
        )


# ============================================================================
# AMADEUS CLIENT
# ============================================================================

class AmadeusClient:
    """
    Authenticated gateway to the Amadeus Self-Service API.

    Every public method returns the decoded JSON body and raises a
    TravelAPIError subclass on failure. Nothing is retried except the
    hotel batch downsizing in search_hotel_offers_batched.
    """

    def __init__(
        self,
        credentials: Credentials,
        store: KeyValueStore,
        currency_code: str = "USD",
        session: requests.Session = None,
    ):
        self.credentials = credentials
        self.base_url = credentials.base_url
        self.currency_code = currency_code

        # Session for connection pooling
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": "TravelSearchRelay/1.0",
        })

        self.token_manager = TokenManager(credentials, store, self.session)

    # ========================================================================
    # HTTP REQUEST HELPER
    # ========================================================================

    def request(
        self,
        endpoint: str,
        method: str = "GET",
        params: dict = None,
        body: dict = None,
    ) -> dict:
        """
        Make an authenticated request to the Amadeus API.

        Args:
            endpoint: Path such as "/v2/shopping/flight-offers"
            method: GET or POST
            params: Query string parameters
            body: JSON body (POST only)

        Returns:
            Decoded JSON body ({} when the provider sends none)

        Raises:
            CredentialsMissing / TokenRetrievalFailed: from the token manager
            UpstreamRequestFailed: non-2xx status or transport error
        """
        token = self.token_manager.get_token()

        method = method.upper()
        url = f"{self.base_url}{endpoint}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": JSON_CONTENT_TYPE,
        }
        data = None
        if method == "POST" and body is not None:
            data = json.dumps(body)
            # Flight Offers Search insists on the vendor media type.
            headers["Content-Type"] = AMADEUS_JSON_CONTENT_TYPE

        logger.info(f"Making Amadeus API request: {method} {endpoint}")
        if body is not None:
            logger.debug(f"Request body: {data}")

        try:
            response = self.session.request(
                method,
                url,
                params=params or None,
                data=data,
                headers=headers,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.exceptions.Timeout:
            logger.error(f"Timeout calling {endpoint}")
            raise UpstreamRequestFailed("Amadeus API request timed out.")
        except requests.exceptions.RequestException as e:
            logger.error(f"Network error calling {endpoint}: {e}")
            raise UpstreamRequestFailed(f"Amadeus API request failed: {e}")

        decoded = _decode_body(response)
        logger.debug(f"API response code: {response.status_code}")

        if 200 <= response.status_code < 300:
            return decoded if decoded is not None else {}

        message = f"Amadeus API request failed with status {response.status_code}."
        if isinstance(decoded, dict) and isinstance(decoded.get("errors"), list):
            for error in decoded["errors"]:
                if not isinstance(error, dict):
                    continue
                title = error.get("title", "")
                detail = error.get("detail")
                message += f" {title}" + (f": {detail}" if detail else "")

        logger.error(f"API error: {message}")
        raise UpstreamRequestFailed(
            message,
            status=response.status_code,
            body=decoded if decoded is not None else response.text[:200],
        )

    # ========================================================================
    # LOCATIONS
    # ========================================================================

    def search_locations(self, keyword: str) -> dict:
        """Airport and city autocomplete."""
        if not keyword:
            raise InvalidInput("Search keyword cannot be empty.")
        return self._locations(keyword, "AIRPORT,CITY")

    def search_hotel_cities(self, keyword: str) -> dict:
        """City-only autocomplete for the hotel search box."""
        if not keyword:
            raise InvalidInput("Search keyword cannot be empty.")
        return self._locations(keyword, "CITY")

    def _locations(self, keyword: str, sub_type: str) -> dict:
        params = {
            "subType": sub_type,
            "keyword": keyword.upper(),
            "page[limit]": 10,
        }
        return self.request("/v1/reference-data/locations", "GET", params=params)

    # ========================================================================
    # FLIGHTS
    # ========================================================================

    def search_flight_offers(self, criteria: dict) -> dict:
        """
        POST /v2/shopping/flight-offers.

        Fills in currencyCode, sources and maxFlightOffers when the caller
        left them out.
        """
        if not criteria:
            raise InvalidInput("Search criteria cannot be empty.")

        payload = dict(criteria)
        payload.setdefault("currencyCode", self.currency_code)
        payload.setdefault("sources", ["GDS"])
        search_criteria = dict(payload.get("searchCriteria") or {})
        search_criteria.setdefault("maxFlightOffers", 25)
        payload["searchCriteria"] = search_criteria

        return self.request("/v2/shopping/flight-offers", "POST", body=payload)

    # ========================================================================
    # HOTELS
    # ========================================================================

    def get_hotel_ids_by_city(self, city_code: str) -> dict:
        """Step 1 of hotel search: hotels within 20 km of a city."""
        if not city_code:
            raise InvalidInput("City code is required.")
        params = {
            "cityCode": city_code,
            "radius": 20,
            "radiusUnit": "KM",
        }
        return self.request("/v1/reference-data/locations/hotels/by-city", "GET", params=params)

    def search_hotel_offers(
        self,
        hotel_ids: Sequence[str],
        check_in_date: str,
        check_out_date: str,
        adults: int = 1,
    ) -> dict:
        """Step 2 of hotel search: best offers for a batch of hotel ids."""
        if not hotel_ids or not check_in_date or not check_out_date:
            raise InvalidInput("Hotel IDs, check-in date, and check-out date are required.")

        params = {
            "hotelIds": ",".join(hotel_ids),
            "checkInDate": check_in_date,
            "checkOutDate": check_out_date,
            "adults": adults,
            "paymentPolicy": "NONE",
            "bestRateOnly": "true",
            "view": "FULL",
        }
        return self.request("/v3/shopping/hotel-offers", "GET", params=params)

    def search_hotel_offers_batched(
        self,
        hotel_ids: Sequence[str],
        check_in_date: str,
        check_out_date: str,
        adults: int = 1,
    ) -> Tuple[dict, List[str]]:
        """
        Hotel offers for at most MAX_HOTELS_PER_REQUEST ids.

        If the provider rejects the request URI as too long, retry once with
        the first REDUCED_HOTELS_PER_REQUEST ids.

        Returns:
            (offers response, ids actually searched)
        """
        batch = list(hotel_ids[:MAX_HOTELS_PER_REQUEST])
        logger.info(f"Hotel search: {len(hotel_ids)} hotels known, searching offers for {len(batch)}")

        try:
            return self.search_hotel_offers(batch, check_in_date, check_out_date, adults), batch
        except UpstreamRequestFailed as e:
            if not e.is_uri_too_long:
                raise
            reduced = batch[:REDUCED_HOTELS_PER_REQUEST]
            logger.warning(f"Retrying with only {len(reduced)} hotels due to URI length limit")
            return self.search_hotel_offers(reduced, check_in_date, check_out_date, adults), reduced
