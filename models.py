"""
Data models for the travel search service.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from amadeus_client import ErrorCode, InvalidInput, TravelAPIError

DEFAULT_MAX_FLIGHT_OFFERS = 25
# Provider cap on travelers per search.
MAX_TRAVELERS = 9


def _absint(value: Any) -> int:
    """Lenient non-negative int: junk becomes 0, negatives lose their sign."""
    try:
        return abs(int(str(value).strip()))
    except (TypeError, ValueError):
        return 0


def _text(params: Mapping[str, Any], name: str) -> str:
    value = params.get(name)
    if value is None:
        return ''
    return str(value).strip()


@dataclass
class ActionResult:
    """Envelope returned by every inbound action.

    `no_results` marks a valid request with an empty result set, which the
    UI renders as an empty state rather than an error.
    """
    success: bool
    data: Any = None
    message: Optional[str] = None
    no_results: bool = False
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> 'ActionResult':
        return cls(success=True, data=data, message=message)

    @classmethod
    def empty(cls, message: str, data: Any = None) -> 'ActionResult':
        return cls(success=True, data=data, message=message, no_results=True)

    @classmethod
    def fail(cls, message: str, code: Optional[ErrorCode] = None, data: Any = None) -> 'ActionResult':
        return cls(success=False, data=data, message=message, error_code=code.value if code else None)

    @classmethod
    def from_error(cls, error: TravelAPIError) -> 'ActionResult':
        return cls.fail(error.message, error.code, data=error.details or None)

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'data': self.data,
            'message': self.message,
            'no_results': self.no_results,
            'error_code': self.error_code,
        }


@dataclass
class FlightSearchParams:
    """Flight search form input."""
    origin: str
    destination: str
    departure_date: str
    return_date: str = ''
    adults: int = 1
    children: int = 0
    infants: int = 0
    travel_class: str = 'ECONOMY'
    non_stop: bool = False

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> 'FlightSearchParams':
        """Parse raw request params.

        Raises:
            InvalidInput: origin, destination or departure date missing, or
                more than MAX_TRAVELERS travelers
        """
        origin = _text(params, 'originLocationCode')
        destination = _text(params, 'destinationLocationCode')
        departure_date = _text(params, 'departureDate')
        if not origin or not destination or not departure_date:
            raise InvalidInput('Missing required search fields (origin, destination, departure date).')

        adults = params.get('adults')
        adults = 1 if adults is None else _absint(adults)
        children = _absint(params.get('children', 0))
        infants = _absint(params.get('infants', 0))
        if adults + children + infants > MAX_TRAVELERS:
            raise InvalidInput(f'A search can include at most {MAX_TRAVELERS} travelers.')

        return cls(
            origin=origin,
            destination=destination,
            departure_date=departure_date,
            return_date=_text(params, 'returnDate'),
            adults=adults,
            children=children,
            infants=infants,
            travel_class=(_text(params, 'travelClass') or 'ECONOMY').upper(),
            non_stop=str(params.get('nonStop', '')).strip().lower() in ('1', 'true'),
        )

    def origin_destinations(self) -> List[dict]:
        legs = [{
            'id': '1',
            'originLocationCode': self.origin,
            'destinationLocationCode': self.destination,
            'departureDateTimeRange': {'date': self.departure_date},
        }]
        if self.return_date:
            legs.append({
                'id': '2',
                'originLocationCode': self.destination,
                'destinationLocationCode': self.origin,
                'departureDateTimeRange': {'date': self.return_date},
            })
        return legs

    def travelers(self) -> List[dict]:
        """Adults, then children, then infants, numbered from "1".

        Each infant rides on the adult with the same index; extra infants
        fall back to the last adult.
        """
        travelers: List[dict] = []
        adult_ids: List[str] = []
        next_id = 1

        for _ in range(self.adults):
            adult_id = str(next_id)
            next_id += 1
            travelers.append({'id': adult_id, 'travelerType': 'ADULT'})
            adult_ids.append(adult_id)

        for _ in range(self.children):
            travelers.append({'id': str(next_id), 'travelerType': 'CHILD'})
            next_id += 1

        for i in range(self.infants):
            infant = {'id': str(next_id), 'travelerType': 'HELD_INFANT'}
            next_id += 1
            if adult_ids:
                infant['associatedAdultId'] = adult_ids[i] if i < len(adult_ids) else adult_ids[-1]
            travelers.append(infant)

        if not travelers:
            travelers.append({'id': '1', 'travelerType': 'ADULT'})
        return travelers

    def to_payload(self, currency_code: str, max_offers: int = DEFAULT_MAX_FLIGHT_OFFERS) -> dict:
        """Build the Flight Offers Search POST body."""
        legs = self.origin_destinations()
        flight_filters: Dict[str, Any] = {
            'cabinRestrictions': [{
                'cabin': self.travel_class,
                'coverage': 'MOST_SEGMENTS',
                'originDestinationIds': [leg['id'] for leg in legs],
            }]
        }
        if self.non_stop:
            flight_filters['connectionRestriction'] = {'maxNumberOfConnections': 0}

        return {
            'currencyCode': currency_code,
            'originDestinations': legs,
            'travelers': self.travelers(),
            'sources': ['GDS'],
            'searchCriteria': {
                'maxFlightOffers': max_offers,
                'flightFilters': flight_filters,
            },
        }


@dataclass
class HotelSearchParams:
    """Hotel search form input."""
    city_code: str
    check_in_date: str
    check_out_date: str
    adults: int = 1
    page: int = 1

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> 'HotelSearchParams':
        city_code = _text(params, 'cityCode')
        check_in = _text(params, 'checkInDate')
        check_out = _text(params, 'checkOutDate')
        if not city_code or not check_in or not check_out:
            raise InvalidInput('Missing required search fields.')

        adults = params.get('adults')
        adults = 1 if adults is None else max(1, _absint(adults))
        if adults > MAX_TRAVELERS:
            raise InvalidInput(f'A search can include at most {MAX_TRAVELERS} travelers.')

        page = _absint(params.get('page', 1))
        return cls(
            city_code=city_code,
            check_in_date=check_in,
            check_out_date=check_out,
            adults=adults,
            page=max(1, page),
        )


@dataclass
class LocationSuggestion:
    """Autocomplete entry for the airport/city search box."""
    label: str
    value: str
    name: str
    iata_code: str
    sub_type: str
    full_data: dict = field(default_factory=dict)

    @classmethod
    def from_location(cls, location: dict) -> 'LocationSuggestion':
        name = location.get('name', '')
        iata = location.get('iataCode', '')
        label = name
        if iata:
            label += f" ({iata})"
        city_name = (location.get('address') or {}).get('cityName')
        if city_name:
            label += f", {city_name}"
        return cls(
            label=label,
            value=iata,
            name=name,
            iata_code=iata,
            sub_type=location.get('subType', ''),
            full_data=location,
        )

    def to_dict(self) -> dict:
        return {
            'label': self.label,
            'value': self.value,
            'name': self.name,
            'iataCode': self.iata_code,
            'subType': self.sub_type,
            'full_data': self.full_data,
        }
