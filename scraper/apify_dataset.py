"""Apify facebook-events-scraper dataset adapter."""
import logging
from typing import Any, Dict, Iterable, Optional, Set

from processor.field_mapping import as_datetime, as_text, first_number, first_present, first_string
from processor.models import EventSource, ExternalEvent, SkipReason
from processor.text_signals import city_from_query_hint, country_code_from_value
from scraper.base import SkipItem, SourceAdapter
from scraper.graph_api import resolve_end
from scraper.page_scrape import facebook_event_id

logger = logging.getLogger(__name__)

APIFY_BASE_URL = 'https://api.apify.com/v2'
DEFAULT_ACTOR_ID = 'apify~facebook-events-scraper'
MAX_EVENTS = 200

# Dataset items spell the same field several ways depending on actor version.
ID_PATHS = ('id', 'eventId')
TITLE_PATHS = ('name', 'title')
DESCRIPTION_PATHS = ('description',)
URL_PATHS = ('url', 'eventUrl')
START_PATHS = ('utcStartDate', 'startDate', 'startTime', 'startTimestamp')
END_PATHS = ('utcEndDate', 'endDate', 'endTime', 'endTimestamp')
DURATION_PATHS = ('duration', 'eventDuration')
LAT_PATHS = (
    'location.latitude', 'location.lat', 'location.location.latitude', 'location.location.lat',
    'place.latitude', 'place.lat', 'place.location.latitude', 'place.location.lat',
)
LNG_PATHS = (
    'location.longitude', 'location.lng', 'location.location.longitude', 'location.location.lng',
    'place.longitude', 'place.lng', 'place.location.longitude', 'place.location.lng',
)
PLACE_PATHS = (
    'location.name', 'location.title', 'location.locationName',
    'place.name', 'place.title', 'placeName',
)
CITY_PATHS = ('location.city', 'location.location.city', 'place.city', 'place.location.city')
COUNTRY_PATHS = (
    'location.countryCode', 'location.country_code', 'location.country',
    'place.location.country_code', 'place.location.country',
)


def clamp_timeout(value: int) -> int:
    """The run-sync endpoint aborts after 300 s."""
    return min(295, max(30, int(value)))


class ApifyDatasetAdapter(SourceAdapter):
    """
    Run the scraper actor synchronously and map its dataset items.

    Items without coordinates are geocoded from "place, city"; the
    city falls back to the query's parenthesized hint, then to a reverse
    lookup of the coordinates.
    """

    name = 'scraper'

    def __init__(self, http, geocoder, token: str, actor_id: str = DEFAULT_ACTOR_ID,
                 timeout_secs: int = 240, **kwargs):
        super().__init__(geocoder=geocoder, **kwargs)
        self.http = http
        self.token = token
        self.actor_id = actor_id
        self.timeout_secs = clamp_timeout(timeout_secs)

    def fetch_items(self, limit: int = 0, query: str = '', **params) -> Iterable[Any]:
        url = f"{APIFY_BASE_URL}/acts/{self.actor_id}/run-sync-get-dataset-items"
        payload = {
            'searchQueries': [query],
            'startUrls': [],
            'maxEvents': max(1, min(MAX_EVENTS, limit or MAX_EVENTS)),
        }
        logger.info(f"Running actor {self.actor_id} for query {query!r}")
        data = self.http.post_json(
            url,
            payload,
            params={
                'token': self.token,
                'format': 'json',
                'clean': 'true',
                'timeout': self.timeout_secs,
            },
            timeout=self.timeout_secs + 10,
        )
        items = data if isinstance(data, list) else (data or {}).get('items') or []
        fallback_city = city_from_query_hint(query)
        for item in items:
            yield {'item': item, 'fallback_city': fallback_city}

    def map_item(self, item: Dict[str, Any], seen: Set[str]) -> ExternalEvent:
        it = item['item']
        if not isinstance(it, dict):
            raise SkipItem(SkipReason.MALFORMED, 'dataset item is not an object')

        url = first_string(it, URL_PATHS)
        source_id = as_text(first_present(it, ID_PATHS)) or facebook_event_id(url)
        if not source_id:
            raise SkipItem(SkipReason.MALFORMED, 'no event id')
        self.claim(seen, source_id)

        start_at = as_datetime(first_present(it, START_PATHS), self.tz)
        if start_at is None:
            raise SkipItem(SkipReason.NO_DATE, source_id)
        end_at = resolve_end(start_at, first_present(it, END_PATHS),
                             first_string(it, DURATION_PATHS), self.tz)

        title = first_string(it, TITLE_PATHS)
        if not title:
            raise SkipItem(SkipReason.MALFORMED, f"no title for {source_id}")

        place = first_string(it, PLACE_PATHS)
        city: Optional[str] = first_string(it, CITY_PATHS) or item['fallback_city']

        lat = first_number(it, LAT_PATHS)
        lng = first_number(it, LNG_PATHS)
        if lat is None or lng is None:
            query = ', '.join(p for p in (place, city) if p)
            point = self.geocoder.forward(query) if query else None
            if point is None:
                raise SkipItem(SkipReason.NO_GEO, source_id)
            lat, lng = point.lat, point.lng

        if not city:
            city = self.geocoder.reverse_city(lat, lng)

        country_code = country_code_from_value(first_string(it, COUNTRY_PATHS)) or self.default_country_code

        return ExternalEvent(
            title=title,
            description=first_string(it, DESCRIPTION_PATHS),
            country_code=country_code,
            city=city or 'Unknown',
            place=place,
            start_at=start_at,
            end_at=end_at,
            lat=lat,
            lng=lng,
            source=EventSource.FACEBOOK,
            source_id=source_id,
            source_url=url,
            raw_payload=it,
        )
