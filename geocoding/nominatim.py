"""Nominatim-backed geocoding with a persistent cache."""
import logging
from typing import Any, Dict, Optional

import requests

from geocoding.throttle import FixedIntervalThrottle
from processor.field_mapping import pick_number, pick_string
from processor.models import (
    GeoCacheEntry,
    GeoDetails,
    GeoPoint,
    ReverseGeocode,
    format_coordinate,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'https://nominatim.openstreetmap.org'
DEFAULT_USER_AGENT = 'MapEvents/1.0'

CITY_LEVEL_TYPES = frozenset({
    'city', 'town', 'village', 'hamlet', 'municipality', 'county',
    'state', 'region', 'country', 'administrative',
})

CITY_ADDRESS_KEYS = ('city', 'town', 'village', 'hamlet', 'municipality', 'county')


class GeocodingFailure(Exception):
    """Provider call failed; recorded as a negative cache entry."""


def looks_city_level(result: Dict[str, Any]) -> bool:
    """True when the feature is an area (boundary/place) rather than a point address."""
    feature_class = (result.get('class') or result.get('category') or '').lower()
    feature_type = (result.get('type') or result.get('addresstype') or '').lower()

    if feature_class == 'boundary':
        return True
    return feature_type in CITY_LEVEL_TYPES


def city_from_address(address: Optional[Dict[str, Any]], keys=CITY_ADDRESS_KEYS) -> Optional[str]:
    if not address:
        return None
    for key in keys:
        value = pick_string(address.get(key))
        if value:
            return value
    return None


def country_code_from_address(address: Optional[Dict[str, Any]]) -> Optional[str]:
    if not address:
        return None
    code = pick_string(address.get('country_code'))
    if code and len(code) == 2:
        return code.upper()
    return None


def reverse_key(prefix: str, lat: float, lng: float) -> str:
    """Synthetic cache key; four decimals is roughly 11 m."""
    return f"{prefix}:{lat:.4f},{lng:.4f}"


class GeoResolver:
    """
    Forward and reverse geocoding through Nominatim.

    Every lookup goes through the cache first. Failed lookups (HTTP
    error, network error, empty result) are cached with null coordinates
    and are never retried while the entry exists.
    """

    def __init__(self, cache, base_url: str = DEFAULT_BASE_URL,
                 user_agent: str = DEFAULT_USER_AGENT, min_interval: float = 1.1,
                 timeout: int = 30, session: Optional[requests.Session] = None,
                 throttle: Optional[FixedIntervalThrottle] = None,
                 accept_language: str = 'en'):
        """
        Args:
            cache: Object with get(query) -> GeoCacheEntry|None and
                put(query, lat, lng, raw)
            base_url: Provider base URL
            user_agent: User-Agent required by the provider's usage policy
            min_interval: Minimum seconds between provider calls
            timeout: HTTP timeout in seconds
            session: Optional requests session
            throttle: Optional pre-built throttle (overrides min_interval)
            accept_language: Preferred language of returned names
        """
        self.cache = cache
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.throttle = throttle or FixedIntervalThrottle(min_interval)
        self.headers = {
            'User-Agent': user_agent,
            'Accept-Language': accept_language,
        }
        self.provider_calls = 0

    def forward(self, query: str) -> Optional[GeoPoint]:
        """Resolve a place query to coordinates."""
        details = self.forward_detailed(query)
        if details is None:
            return None
        return GeoPoint(lat=details.lat, lng=details.lng)

    def forward_detailed(self, query: str) -> Optional[GeoDetails]:
        """
        Resolve a place query and classify the result's precision.

        Args:
            query: Free-text place query; trimmed and used as cache key

        Returns:
            GeoDetails or None when the query cannot be resolved
        """
        q = (query or '').strip()
        if not q:
            return None

        cached = self.cache.get(q)
        if cached is not None:
            if cached.is_negative:
                logger.debug(f"Negative geocode cache hit: {q!r}")
                return None
            return self._details_from_entry(cached)

        try:
            results = self._call('search', {
                'format': 'json',
                'limit': '1',
                'addressdetails': '1',
                'q': q,
            })
        except GeocodingFailure as e:
            logger.warning(f"Geocoding failed for {q!r}: {e}")
            self.cache.put(q, None, None, {'error': str(e)})
            return None

        first = results[0] if isinstance(results, list) and results else None
        lat = pick_number(first.get('lat')) if isinstance(first, dict) else None
        lng = pick_number(first.get('lon')) if isinstance(first, dict) else None

        if lat is None or lng is None:
            logger.info(f"No geocoding result for {q!r}")
            self.cache.put(q, None, None, {'results': results})
            return None

        self.cache.put(q, format_coordinate(lat), format_coordinate(lng), first)
        return self._details(lat, lng, first)

    def reverse(self, lat: float, lng: float) -> Optional[ReverseGeocode]:
        """Resolve coordinates to a city name and 2-letter country code."""
        key = reverse_key('revcc', lat, lng)
        raw = self._reverse_cached(key, lat, lng)
        if raw is None:
            return None
        return ReverseGeocode(city=raw.get('city'), country_code=raw.get('countryCode'))

    def reverse_city(self, lat: float, lng: float) -> Optional[str]:
        """Resolve coordinates to a city name only."""
        key = reverse_key('rev', lat, lng)
        raw = self._reverse_cached(key, lat, lng)
        if raw is None:
            return None
        return raw.get('city')

    def _reverse_cached(self, key: str, lat: float, lng: float) -> Optional[Dict[str, Any]]:
        cached = self.cache.get(key)
        if cached is not None:
            if cached.is_negative:
                return None
            return cached.raw if isinstance(cached.raw, dict) else {}

        try:
            payload = self._call('reverse', {
                'format': 'jsonv2',
                'addressdetails': '1',
                'zoom': '10',
                'lat': str(lat),
                'lon': str(lng),
            })
        except GeocodingFailure as e:
            logger.warning(f"Reverse geocoding failed for {key}: {e}")
            self.cache.put(key, None, None, {'error': str(e)})
            return None

        if not isinstance(payload, dict) or payload.get('error'):
            self.cache.put(key, None, None, {'result': payload})
            return None

        address = payload.get('address') or {}
        raw = {
            'city': city_from_address(address),
            'countryCode': country_code_from_address(address),
            'address': address,
            'result': payload,
        }
        self.cache.put(key, format_coordinate(lat), format_coordinate(lng), raw)
        return raw

    def _call(self, endpoint: str, params: Dict[str, str]) -> Any:
        self.throttle.wait()
        self.provider_calls += 1
        url = f"{self.base_url}/{endpoint}"
        try:
            response = self.session.get(url, params=params, headers=self.headers,
                                        timeout=self.timeout)
        except requests.RequestException as e:
            raise GeocodingFailure(f"{type(e).__name__}: {e}") from e

        if not response.ok:
            raise GeocodingFailure(f"HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise GeocodingFailure(f"Invalid JSON: {e}") from e

    def _details_from_entry(self, entry: GeoCacheEntry) -> GeoDetails:
        raw = entry.raw if isinstance(entry.raw, dict) else {}
        return self._details(float(entry.lat), float(entry.lng), raw)

    @staticmethod
    def _details(lat: float, lng: float, result: Dict[str, Any]) -> GeoDetails:
        return GeoDetails(
            lat=lat,
            lng=lng,
            city_level=looks_city_level(result),
            address=result.get('address') or {},
            display_name=result.get('display_name'),
            feature_class=result.get('class'),
            feature_type=result.get('type'),
        )
