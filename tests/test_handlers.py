"""
End-to-end tests for the inbound actions.

The provider is faked at the requests.Session level; everything else (token
cache, limiter, relay, nonces) runs for real on an in-memory store.
"""

import dataclasses
import json

import pytest

from conftest import make_response
from handlers import RequestContext, build_actions
from nonces import FLIGHT_SCOPE, HOTEL_SCOPE


FLIGHT_OFFER = {
    "id": "1",
    "itineraries": [{"segments": [
        {"departure": {"iataCode": "JFK"}, "arrival": {"iataCode": "LAX"}},
    ]}],
    "price": {"grandTotal": "249.00", "currency": "USD"},
}

LOCATIONS = {
    "JFK": {"iataCode": "JFK", "name": "JOHN F KENNEDY INTL", "subType": "AIRPORT"},
    "LAX": {"iataCode": "LAX", "name": "LOS ANGELES INTL", "subType": "AIRPORT"},
}


@pytest.fixture
def actions(config, store, session):
    return build_actions(config, store=store, session=session)


@pytest.fixture
def flight_ctx(actions):
    identity = "guest_abc-123"
    return RequestContext(client_ip="10.0.0.1", identity=identity,
                          nonce=actions.nonces.create(FLIGHT_SCOPE, identity))


@pytest.fixture
def hotel_ctx(actions):
    identity = "guest_abc-123"
    return RequestContext(client_ip="10.0.0.1", identity=identity,
                          nonce=actions.nonces.create(HOTEL_SCOPE, identity))


def _sent_body(session):
    return json.loads(session.request.call_args[1]["data"])


def _locations_response(method, url, params=None, **kwargs):
    code = params["keyword"]
    return make_response(200, {"data": [LOCATIONS[code]] if code in LOCATIONS else []})


class TestGuards:

    def test_bad_nonce_rejected(self, actions, flight_ctx, session):
        ctx = dataclasses.replace(flight_ctx, nonce="forged")
        result = actions.search_locations(ctx, {"keyword": "london"})

        assert result.success is False
        assert result.error_code == "INVALID_INPUT"
        session.request.assert_not_called()

    def test_nonce_bound_to_identity(self, actions, flight_ctx):
        ctx = dataclasses.replace(flight_ctx, identity="guest_someone-else")
        assert actions.search_locations(ctx, {"keyword": "london"}).success is False

    def test_hotel_nonce_not_valid_for_flights(self, actions, flight_ctx, hotel_ctx):
        ctx = dataclasses.replace(flight_ctx, nonce=hotel_ctx.nonce)
        assert actions.search_locations(ctx, {"keyword": "london"}).success is False

    def test_flight_search_rate_limited_after_five(self, actions, flight_ctx, session):
        params = {"params": {"originLocationCode": "JFK", "destinationLocationCode": "LAX",
                             "departureDate": "2025-12-01"}}
        results = [actions.search_flights(flight_ctx, params) for _ in range(6)]

        assert all(r.success for r in results[:5])
        assert results[5].success is False
        assert results[5].error_code == "RATE_LIMITED"
        assert session.request.call_count == 5

    def test_hotels_disabled(self, config, store, session, hotel_ctx):
        actions = build_actions(dataclasses.replace(config, hotel_search_enabled=False), store=store, session=session)
        result = actions.search_hotels(hotel_ctx, {"params": {}})

        assert result.success is False
        assert result.message == "Hotel search feature is disabled."


class TestLocationSearch:

    def test_short_keyword(self, actions, flight_ctx):
        result = actions.search_locations(flight_ctx, {"keyword": "lo"})
        assert result.success is False
        assert result.error_code == "INVALID_INPUT"

    def test_suggestions(self, actions, flight_ctx, session):
        session.request.return_value = make_response(200, {"data": [
            {"iataCode": "LHR", "name": "HEATHROW", "subType": "AIRPORT", "address": {"cityName": "LONDON"}},
        ]})

        result = actions.search_locations(flight_ctx, {"keyword": "İstan"})

        assert result.success is True
        assert result.data[0]["label"] == "HEATHROW (LHR), LONDON"
        # Turkish characters are transliterated before the API call.
        assert session.request.call_args[1]["params"]["keyword"] == "ISTAN"

    def test_empty_is_no_results(self, actions, flight_ctx):
        result = actions.search_locations(flight_ctx, {"keyword": "zzzz"})
        assert result.success is True
        assert result.no_results is True

    def test_upstream_error_surfaces_message(self, actions, flight_ctx, session):
        session.request.return_value = make_response(500, {"errors": [{"title": "SYSTEM ERROR"}]})

        result = actions.search_locations(flight_ctx, {"keyword": "london"})

        assert result.success is False
        assert result.no_results is False
        assert result.error_code == "UPSTREAM_REQUEST_FAILED"
        assert "status 500" in result.message

    def test_missing_credentials_surface(self, config, store, session, flight_ctx):
        creds = dataclasses.replace(config.credentials, key="")
        actions = build_actions(dataclasses.replace(config, credentials=creds), store=store, session=session)
        ctx = dataclasses.replace(flight_ctx, nonce=actions.nonces.create(FLIGHT_SCOPE, flight_ctx.identity))

        result = actions.search_locations(ctx, {"keyword": "london"})

        assert result.error_code == "CREDENTIALS_MISSING"


class TestFlightScenarios:

    def test_one_way_single_adult(self, actions, flight_ctx, session):
        session.request.return_value = make_response(200, {"data": [FLIGHT_OFFER], "dictionaries": {}})

        result = actions.search_flights(flight_ctx, {"params": {
            "originLocationCode": "JFK",
            "destinationLocationCode": "LAX",
            "departureDate": "2025-12-01",
            "adults": "1",
        }})

        assert result.success is True
        assert result.data["data"] == [FLIGHT_OFFER]
        body = _sent_body(session)
        assert len(body["originDestinations"]) == 1
        assert body["originDestinations"][0]["originLocationCode"] == "JFK"
        assert body["travelers"] == [{"id": "1", "travelerType": "ADULT"}]
        assert body["currencyCode"] == "USD"

    def test_two_adults_one_infant(self, actions, flight_ctx, session):
        actions.search_flights(flight_ctx, {"params": {
            "originLocationCode": "JFK",
            "destinationLocationCode": "LAX",
            "departureDate": "2025-12-01",
            "adults": 2,
            "infants": 1,
        }})

        infant = [t for t in _sent_body(session)["travelers"] if t["travelerType"] == "HELD_INFANT"]
        assert infant == [{"id": "3", "travelerType": "HELD_INFANT", "associatedAdultId": "1"}]

    def test_no_offers_is_no_results(self, actions, flight_ctx):
        result = actions.search_flights(flight_ctx, {"params": {
            "originLocationCode": "JFK", "destinationLocationCode": "LAX", "departureDate": "2025-12-01",
        }})

        assert result.success is True
        assert result.no_results is True
        assert result.data == {"data": [], "dictionaries": {}}

    def test_missing_params(self, actions, flight_ctx):
        result = actions.search_flights(flight_ctx, {})
        assert result.success is False
        assert result.message == "Invalid search parameters."

    def test_oversized_party_never_reaches_provider(self, actions, flight_ctx, session):
        result = actions.search_flights(flight_ctx, {"params": {
            "originLocationCode": "JFK", "destinationLocationCode": "LAX", "departureDate": "2025-12-01",
            "adults": "200000",
        }})

        assert result.error_code == "INVALID_INPUT"
        session.request.assert_not_called()

    def test_select_retrieve_clear(self, actions, flight_ctx, session):
        session.request.side_effect = _locations_response

        selected = actions.select_flight(flight_ctx, {"flightOffer": json.dumps(FLIGHT_OFFER)})

        assert selected.success is True
        assert selected.data["redirectUrl"] == "https://example.com/booking"
        assert selected.data["flightOffer"]["originLocationName"] == "JOHN F KENNEDY INTL"

        stored = actions.get_selected_flight(flight_ctx)
        assert stored.success is True
        assert stored.data["destinationLocationName"] == "LOS ANGELES INTL"
        assert stored.data["id"] == "1"

        assert actions.clear_selected_flight(flight_ctx).success is True
        gone = actions.get_selected_flight(flight_ctx)
        assert gone.success is True
        assert gone.no_results is True

    def test_selection_scoped_to_identity(self, actions, flight_ctx, session):
        session.request.side_effect = _locations_response
        actions.select_flight(flight_ctx, {"flightOffer": json.dumps(FLIGHT_OFFER)})

        other_id = "guest_other"
        other = RequestContext("10.0.0.2", other_id, actions.nonces.create(FLIGHT_SCOPE, other_id))
        assert actions.get_selected_flight(other).no_results is True

    def test_select_invalid_json(self, actions, flight_ctx):
        result = actions.select_flight(flight_ctx, {"flightOffer": "{not json"})
        assert result.success is False
        assert result.message == "Invalid flight offer data format."

    @pytest.mark.parametrize("offer", [
        {"id": "9", "itineraries": ["x"]},
        {"id": "9", "itineraries": [{"segments": [{"departure": "JFK"}]}]},
    ])
    def test_select_odd_shaped_offer_is_stored_without_names(self, actions, flight_ctx, session, offer):
        result = actions.select_flight(flight_ctx, {"flightOffer": json.dumps(offer)})

        assert result.success is True
        assert result.data["flightOffer"] == offer
        assert actions.get_selected_flight(flight_ctx).data == offer
        session.request.assert_not_called()

    def test_select_without_booking_page_still_stores(self, config, store, session, flight_ctx):
        session.request.side_effect = _locations_response
        actions = build_actions(dataclasses.replace(config, booking_page_url=""), store=store, session=session)
        ctx = dataclasses.replace(flight_ctx, nonce=actions.nonces.create(FLIGHT_SCOPE, flight_ctx.identity))

        result = actions.select_flight(ctx, {"flightOffer": FLIGHT_OFFER})

        assert result.success is False
        assert actions.flight_relay.retrieve(ctx.identity)["id"] == "1"


class TestHotelSearch:

    SEARCH = {"params": {"cityCode": "PAR", "checkInDate": "2025-12-01", "checkOutDate": "2025-12-03"}}

    def _hotels(self, n):
        return make_response(200, {"data": [{"hotelId": f"H{i:03d}"} for i in range(n)]})

    def test_offers_with_meta(self, actions, hotel_ctx, session):
        session.request.side_effect = [self._hotels(80), make_response(200, {"data": [{"hotel": {"hotelId": "H000"}}]})]

        result = actions.search_hotels(hotel_ctx, self.SEARCH)

        assert result.success is True
        assert result.data["meta"] == {"total_hotels_in_city": 80, "hotels_searched": 50, "offers_found": 1}
        offers_call = session.request.call_args_list[1]
        assert len(offers_call[1]["params"]["hotelIds"].split(",")) == 50

    def test_uri_too_long_retry_reflected_in_meta(self, actions, hotel_ctx, session):
        too_long = make_response(400, {"errors": [{"title": "Request URI exceeds 2048 bytes"}]})
        session.request.side_effect = [self._hotels(80), too_long, make_response(200, {"data": [{"hotel": {}}]})]

        result = actions.search_hotels(hotel_ctx, self.SEARCH)

        assert result.success is True
        assert result.data["meta"]["hotels_searched"] == 20

    def test_no_hotels_in_city(self, actions, hotel_ctx, session):
        session.request.return_value = make_response(200, {"data": []})

        result = actions.search_hotels(hotel_ctx, self.SEARCH)

        assert result.success is True
        assert result.no_results is True

    def test_paginated(self, actions, hotel_ctx, session):
        session.request.side_effect = [self._hotels(120), make_response(200, {"data": [{"hotel": {}}]})]
        search = {"params": dict(self.SEARCH["params"], page=3)}

        result = actions.search_hotels_paginated(hotel_ctx, search)

        assert result.data["pagination"] == {
            "current_page": 3,
            "total_hotels": 120,
            "hotels_per_page": 50,
            "total_pages": 3,
            "has_more": False,
        }
        ids = session.request.call_args_list[1][1]["params"]["hotelIds"].split(",")
        assert ids[0] == "H100"
        assert len(ids) == 20

    def test_hotel_locations_city_only(self, actions, hotel_ctx, session):
        session.request.return_value = make_response(200, {"data": [
            {"subType": "CITY", "name": "PARIS", "iataCode": "PAR", "address": {"countryCode": "FR"}},
            {"subType": "AIRPORT", "name": "ORLY", "iataCode": "ORY", "address": {"countryCode": "FR"}},
        ]})

        result = actions.search_hotel_locations(hotel_ctx, {"keyword": "pa"})

        assert result.data == [{"label": "PARIS, FR", "value": "PARIS", "iataCode": "PAR"}]

    def test_select_hotel_round_trip(self, actions, hotel_ctx):
        hotel = {"hotel": {"hotelId": "H001", "name": "HOTEL"}, "offers": []}

        selected = actions.select_hotel(hotel_ctx, {"hotelOffer": json.dumps(hotel)})

        assert selected.data == {"message": "Hotel selected successfully.", "hotelData": hotel}
        assert actions.get_selected_hotel(hotel_ctx).data == hotel
        actions.clear_selected_hotel(hotel_ctx)
        assert actions.get_selected_hotel(hotel_ctx).no_results is True
