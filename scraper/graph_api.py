"""Facebook Graph API page events adapter."""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional, Set

from processor.field_mapping import (
    as_datetime,
    first_number,
    first_string,
    parse_duration,
    pick_string,
)
from processor.models import EventSource, ExternalEvent, SkipReason
from processor.text_signals import country_code_from_value
from scraper.base import SkipItem, SourceAdapter

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = 'https://graph.facebook.com'

GRAPH_FIELDS = ','.join([
    'id',
    'name',
    'description',
    'start_time',
    'end_time',
    'place{name,location{city,country,country_code,latitude,longitude,street,zip}}',
])


def resolve_end(start_at: datetime, end_value: Any, duration_text: Any, tz) -> Optional[datetime]:
    """Explicit end timestamp, else start plus a human-readable duration."""
    end_at = as_datetime(end_value, tz)
    if end_at is not None:
        return end_at
    duration: Optional[timedelta] = parse_duration(duration_text)
    return start_at + duration if duration else None


def event_url(event_id: str) -> str:
    return f"https://www.facebook.com/events/{event_id}"


class GraphAPIAdapter(SourceAdapter):
    """
    Events of one Facebook Page via /{page-id}/events with cursor paging.

    Args:
        http: HttpClient
        geocoder: GeoResolver, used when the place lacks coordinates or city
        page_id: Facebook Page id
        access_token: Page access token
        graph_version: Graph API version, e.g. "v24.0"
        page_size: Items requested per page
    """

    name = 'graph'

    def __init__(self, http, geocoder, page_id: str, access_token: str,
                 graph_version: str = 'v24.0', page_size: int = 50, **kwargs):
        super().__init__(geocoder=geocoder, **kwargs)
        self.http = http
        self.page_id = page_id
        self.access_token = access_token
        self.graph_version = graph_version
        self.page_size = page_size

    def fetch_items(self, limit: int = 0, max_pages: int = 10, since: Optional[datetime] = None,
                    until: Optional[datetime] = None, **params) -> Iterable[Any]:
        url = f"{GRAPH_BASE_URL}/{self.graph_version}/{self.page_id}/events"
        query: Optional[Dict[str, Any]] = {
            'access_token': self.access_token,
            'fields': GRAPH_FIELDS,
            'limit': self.page_size,
        }
        if since:
            query['since'] = int(since.timestamp())
        if until:
            query['until'] = int(until.timestamp())

        for page in range(max_pages):
            payload = self.http.get_json(url, params=query)
            data = payload.get('data') or []
            logger.info(f"Graph page {page + 1}: {len(data)} event(s)")
            yield from data

            next_url = (payload.get('paging') or {}).get('next')
            if not next_url:
                return
            # the next link already carries every query parameter
            url, query = next_url, None

    def map_item(self, item: Dict[str, Any], seen: Set[str]) -> ExternalEvent:
        event_id = pick_string(item.get('id'))
        if not event_id:
            raise SkipItem(SkipReason.MALFORMED, 'missing id')
        self.claim(seen, event_id)

        start_at = as_datetime(item.get('start_time'), self.tz)
        if start_at is None:
            raise SkipItem(SkipReason.NO_DATE, event_id)
        end_at = resolve_end(start_at, item.get('end_time'), item.get('duration'), self.tz)

        location = (item.get('place') or {}).get('location') or {}
        place_name = first_string(item, ('place.name',))
        city = pick_string(location.get('city'))

        lat = first_number(location, ('latitude',))
        lng = first_number(location, ('longitude',))
        if lat is None or lng is None:
            parts = [first_string(location, ('street',)), place_name, city]
            query = ', '.join(p for p in parts if p)
            point = self.geocoder.forward(query) if query else None
            if point is None:
                raise SkipItem(SkipReason.NO_GEO, event_id)
            lat, lng = point.lat, point.lng

        if not city:
            city = self.geocoder.reverse_city(lat, lng) or 'Unknown'

        country_code = (
            country_code_from_value(location.get('country_code'))
            or country_code_from_value(location.get('country'))
            or self.default_country_code
        )

        return ExternalEvent(
            title=pick_string(item.get('name')) or '(no title)',
            description=pick_string(item.get('description')),
            country_code=country_code,
            city=city,
            place=place_name,
            start_at=start_at,
            end_at=end_at,
            lat=lat,
            lng=lng,
            source=EventSource.FACEBOOK,
            source_id=event_id,
            source_url=event_url(event_id),
            raw_payload=item,
        )
