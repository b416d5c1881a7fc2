"""
Inbound actions behind the search widgets.

Every action takes a RequestContext plus the raw request params and returns
an ActionResult envelope. Provider and validation errors become failure
envelopes with the error's message; an empty but valid result becomes a
success envelope flagged no_results.
"""

import functools
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import requests

import rate_limiter
from amadeus_client import (
    MAX_HOTELS_PER_REQUEST,
    AmadeusClient,
    InvalidInput,
    TravelAPIError,
)
from cache import KeyValueStore, SQLiteStore
from config import LoadedConfig
from keywords import load_translation_map, normalize_keyword
from models import ActionResult, FlightSearchParams, HotelSearchParams, LocationSuggestion
from nonces import FLIGHT_SCOPE, HOTEL_SCOPE, NonceManager
from rate_limiter import RateLimiter
from selection import FLIGHT_PREFIX, HOTEL_PREFIX, SelectionRelay, resolve_location_names

logger = logging.getLogger(__name__)

MIN_FLIGHT_KEYWORD = 3
MIN_HOTEL_KEYWORD = 2


@dataclass(frozen=True)
class RequestContext:
    """Who is calling and with which anti-forgery token."""
    client_ip: str
    identity: str
    nonce: str = ''


def _action(func: Callable[..., ActionResult]) -> Callable[..., ActionResult]:
    """Turn TravelAPIError raised inside an action into a failure envelope."""

    @functools.wraps(func)
    def wrapper(self, ctx: RequestContext, params: Optional[Mapping[str, Any]] = None) -> ActionResult:
        try:
            return func(self, ctx, params or {})
        except TravelAPIError as e:
            logger.warning(f"{func.__name__} failed for {ctx.identity}: {e}")
            return ActionResult.from_error(e)

    return wrapper


def _decode_offer(raw: Any, what: str) -> dict:
    """Selected offers arrive as a JSON string (or already decoded)."""
    if not raw:
        raise InvalidInput(f"No {what} offer data received.")
    if isinstance(raw, dict):
        return raw
    try:
        offer = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug(f"Undecodable {what} offer: {str(raw)[:200]}")
        raise InvalidInput(f"Invalid {what} offer data format.")
    if not isinstance(offer, dict):
        raise InvalidInput(f"Invalid {what} offer data format.")
    return offer


def _hotel_search(params: Mapping[str, Any]) -> HotelSearchParams:
    search = params.get('params')
    if not search or not isinstance(search, Mapping):
        raise InvalidInput('Invalid search parameters.')
    return HotelSearchParams.from_params(search)


class SearchActions:
    """Flight and hotel search, selection and hand-off."""

    def __init__(
        self,
        config: LoadedConfig,
        client: AmadeusClient,
        limiter: RateLimiter,
        nonces: NonceManager,
        flight_relay: SelectionRelay,
        hotel_relay: SelectionRelay,
        translations: Optional[Dict[str, str]] = None,
    ):
        self.config = config
        self.client = client
        self.limiter = limiter
        self.nonces = nonces
        self.flight_relay = flight_relay
        self.hotel_relay = hotel_relay
        self.translations = translations or {}

    # ------------------------------
    # Guards
    # ------------------------------

    def _check_nonce(self, ctx: RequestContext, scope: str):
        if not self.nonces.verify(ctx.nonce, scope, ctx.identity):
            raise InvalidInput("Security check failed. Please reload the page and try again.")

    def _check_hotels_enabled(self):
        if not self.config.hotel_search_enabled:
            raise InvalidInput("Hotel search feature is disabled.")

    # ------------------------------
    # Flights
    # ------------------------------

    @_action
    def search_locations(self, ctx: RequestContext, params: Mapping[str, Any]) -> ActionResult:
        self._check_nonce(ctx, FLIGHT_SCOPE)
        self.limiter.enforce(ctx.client_ip, 'search_locations', rate_limiter.SEARCH_LOCATIONS)

        keyword = str(params.get('keyword') or '').strip()
        if len(keyword) < MIN_FLIGHT_KEYWORD:
            raise InvalidInput(f"Search term must be at least {MIN_FLIGHT_KEYWORD} characters.")

        search_keyword = normalize_keyword(keyword, self.translations)
        logger.debug(f"search_locations keyword for API: {search_keyword}")

        result = self.client.search_locations(search_keyword)
        locations = result.get('data') or []
        if not locations:
            return ActionResult.empty('No locations found.', [])

        suggestions = [LocationSuggestion.from_location(loc).to_dict() for loc in locations]
        logger.info(f"search_locations: {len(suggestions)} suggestions")
        return ActionResult.ok(suggestions)

    @_action
    def search_flights(self, ctx: RequestContext, params: Mapping[str, Any]) -> ActionResult:
        self._check_nonce(ctx, FLIGHT_SCOPE)
        self.limiter.enforce(
            ctx.client_ip, 'search_flights', rate_limiter.SEARCH_FLIGHTS,
            message='Too many search requests. Please wait a moment.',
        )

        search = params.get('params')
        if not search or not isinstance(search, Mapping):
            raise InvalidInput('Invalid search parameters.')

        payload = FlightSearchParams.from_params(search).to_payload(self.config.currency_code)
        logger.debug(f"search_flights payload: {json.dumps(payload)}")

        result = self.client.search_flight_offers(payload)
        if result.get('data'):
            logger.info(f"search_flights: {len(result['data'])} offers")
            return ActionResult.ok(result)
        if 'data' in result:
            return ActionResult.empty(
                'No flights found matching your criteria.',
                {'data': [], 'dictionaries': {}},
            )
        return ActionResult.fail('No flights found or an API error occurred.')

    @_action
    def select_flight(self, ctx: RequestContext, params: Mapping[str, Any]) -> ActionResult:
        self._check_nonce(ctx, FLIGHT_SCOPE)

        offer = _decode_offer(params.get('flightOffer'), 'flight')
        offer = resolve_location_names(offer, self.client)
        self.flight_relay.store(ctx.identity, offer)

        if not self.config.booking_page_url:
            logger.error('Booking page URL not configured.')
            return ActionResult.fail('Booking page URL is not configured.')

        # The browser keeps flightOffer in session storage in case the
        # server-side record is gone by the time the booking page loads.
        return ActionResult.ok({
            'redirectUrl': self.config.booking_page_url,
            'flightOffer': offer,
        })

    @_action
    def get_selected_flight(self, ctx: RequestContext, params: Mapping[str, Any]) -> ActionResult:
        self._check_nonce(ctx, FLIGHT_SCOPE)
        offer = self.flight_relay.retrieve(ctx.identity)
        if offer is None:
            return ActionResult.empty('No flight selected.')
        return ActionResult.ok(offer)

    @_action
    def clear_selected_flight(self, ctx: RequestContext, params: Mapping[str, Any]) -> ActionResult:
        self._check_nonce(ctx, FLIGHT_SCOPE)
        self.flight_relay.clear(ctx.identity)
        return ActionResult.ok(message='Selection cleared.')

    # ------------------------------
    # Hotels
    # ------------------------------

    @_action
    def search_hotel_locations(self, ctx: RequestContext, params: Mapping[str, Any]) -> ActionResult:
        self._check_hotels_enabled()
        self._check_nonce(ctx, HOTEL_SCOPE)
        self.limiter.enforce(ctx.client_ip, 'search_hotel_locations', rate_limiter.SEARCH_HOTEL_LOCATIONS)

        keyword = str(params.get('keyword') or '').strip()
        if len(keyword) < MIN_HOTEL_KEYWORD:
            raise InvalidInput(f"Search term must be at least {MIN_HOTEL_KEYWORD} characters.")

        result = self.client.search_hotel_cities(normalize_keyword(keyword, self.translations))
        suggestions = []
        for location in result.get('data') or []:
            if location.get('subType') != 'CITY':
                continue
            country = (location.get('address') or {}).get('countryCode', '')
            suggestions.append({
                'label': f"{location.get('name', '')}, {country}",
                'value': location.get('name', ''),
                'iataCode': location.get('iataCode', ''),
            })

        if not suggestions:
            return ActionResult.empty('No locations found.', [])
        return ActionResult.ok(suggestions)

    def _hotel_ids(self, search: HotelSearchParams) -> list:
        hotels = self.client.get_hotel_ids_by_city(search.city_code).get('data') or []
        return [h['hotelId'] for h in hotels if isinstance(h, dict) and h.get('hotelId')]

    @_action
    def search_hotels(self, ctx: RequestContext, params: Mapping[str, Any]) -> ActionResult:
        self._check_hotels_enabled()
        self._check_nonce(ctx, HOTEL_SCOPE)
        self.limiter.enforce(
            ctx.client_ip, 'search_hotels', rate_limiter.SEARCH_HOTELS,
            message='Too many search requests. Please wait a moment.',
        )

        search = _hotel_search(params)
        all_ids = self._hotel_ids(search)
        if not all_ids:
            return ActionResult.empty('Could not find any hotels in the selected city.')

        result, searched = self.client.search_hotel_offers_batched(
            all_ids, search.check_in_date, search.check_out_date, search.adults,
        )
        offers = result.get('data') or []
        meta = {
            'total_hotels_in_city': len(all_ids),
            'hotels_searched': len(searched),
            'offers_found': len(offers),
        }
        if not offers:
            return ActionResult.empty(
                'No available hotel offers found for your criteria.',
                {'offers': [], 'meta': meta},
            )
        return ActionResult.ok({'offers': offers, 'meta': meta})

    @_action
    def search_hotels_paginated(self, ctx: RequestContext, params: Mapping[str, Any]) -> ActionResult:
        self._check_hotels_enabled()
        self._check_nonce(ctx, HOTEL_SCOPE)
        self.limiter.enforce(
            ctx.client_ip, 'search_hotels_paginated', rate_limiter.SEARCH_HOTELS,
            message='Too many search requests. Please wait a moment.',
        )

        search = _hotel_search(params)
        all_ids = self._hotel_ids(search)
        if not all_ids:
            return ActionResult.empty('Could not find any hotels in the selected city.')

        per_page = MAX_HOTELS_PER_REQUEST
        offset = (search.page - 1) * per_page
        page_ids = all_ids[offset:offset + per_page]
        if not page_ids:
            return ActionResult.empty('No more hotels to search.')

        result = self.client.search_hotel_offers(
            page_ids, search.check_in_date, search.check_out_date, search.adults,
        )
        offers = result.get('data') or []
        data = {
            'offers': offers,
            'pagination': {
                'current_page': search.page,
                'total_hotels': len(all_ids),
                'hotels_per_page': per_page,
                'total_pages': math.ceil(len(all_ids) / per_page),
                'has_more': offset + per_page < len(all_ids),
            },
        }
        if not offers:
            return ActionResult.empty('No available hotel offers on this page.', data)
        return ActionResult.ok(data)

    @_action
    def select_hotel(self, ctx: RequestContext, params: Mapping[str, Any]) -> ActionResult:
        self._check_hotels_enabled()
        self._check_nonce(ctx, HOTEL_SCOPE)

        offer = _decode_offer(params.get('hotelOffer'), 'hotel')
        self.hotel_relay.store(ctx.identity, offer)
        return ActionResult.ok({'message': 'Hotel selected successfully.', 'hotelData': offer})

    @_action
    def get_selected_hotel(self, ctx: RequestContext, params: Mapping[str, Any]) -> ActionResult:
        self._check_hotels_enabled()
        self._check_nonce(ctx, HOTEL_SCOPE)
        offer = self.hotel_relay.retrieve(ctx.identity)
        if offer is None:
            return ActionResult.empty('No hotel selected.')
        return ActionResult.ok(offer)

    @_action
    def clear_selected_hotel(self, ctx: RequestContext, params: Mapping[str, Any]) -> ActionResult:
        self._check_hotels_enabled()
        self._check_nonce(ctx, HOTEL_SCOPE)
        self.hotel_relay.clear(ctx.identity)
        return ActionResult.ok(message='Selection cleared.')


# Action names accepted on the HTTP surface.
ACTIONS = (
    'search_locations',
    'search_flights',
    'select_flight',
    'get_selected_flight',
    'clear_selected_flight',
    'search_hotel_locations',
    'search_hotels',
    'search_hotels_paginated',
    'select_hotel',
    'get_selected_hotel',
    'clear_selected_hotel',
)


def build_actions(
    config: LoadedConfig,
    store: Optional[KeyValueStore] = None,
    session: Optional[requests.Session] = None,
) -> SearchActions:
    """Wire the actions from one config record."""
    store = store if store is not None else SQLiteStore(config.cache_db_path)
    client = AmadeusClient(config.credentials, store, config.currency_code, session=session)
    return SearchActions(
        config=config,
        client=client,
        limiter=RateLimiter(store),
        nonces=NonceManager(config.nonce_secret, clock=store.clock),
        flight_relay=SelectionRelay(store, FLIGHT_PREFIX),
        hotel_relay=SelectionRelay(store, HOTEL_PREFIX),
        translations=load_translation_map(config.city_translations_path),
    )
