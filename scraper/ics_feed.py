"""ICS calendar feed adapter."""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Set

from icalendar import Calendar

from geocoding.nominatim import city_from_address, country_code_from_address
from processor.errors import UpstreamFetchError
from processor.field_mapping import as_datetime, as_text, pick_number, stable_hash, utc_iso
from processor.models import EventSource, ExternalEvent, SkipReason
from scraper.base import SkipItem, SourceAdapter

logger = logging.getLogger(__name__)

# Feed locations are often venue names; broader areas are acceptable here.
ICS_CITY_KEYS = (
    'city', 'town', 'village', 'municipality', 'county', 'state_district', 'state',
)


@dataclass
class FeedItem:
    component: Any
    feed_url: str
    future_only: bool
    now: datetime


def city_from_location(location: str) -> str:
    """First comma-separated segment of a LOCATION value."""
    parts = [p.strip() for p in location.split(',') if p.strip()]
    return parts[0] if parts else 'Unknown'


def component_text(component: Any, name: str) -> str:
    return as_text(component.get(name))


class ICSFeedAdapter(SourceAdapter):
    """
    Map VEVENT components of one calendar feed.

    sourceId is "<uid>#<UTC start>" so each instance of a recurring
    event keeps its own identity.
    """

    name = 'ics'

    def __init__(self, http, geocoder, **kwargs):
        super().__init__(geocoder=geocoder, **kwargs)
        self.http = http

    def parse_feed(self, text: str) -> Calendar:
        try:
            return Calendar.from_ical(text)
        except ValueError as e:
            raise UpstreamFetchError(f"Invalid calendar feed: {e}") from e

    def fetch_items(self, limit: int = 0, url: str = '', future_only: bool = False,
                    **params) -> Iterable[Any]:
        """
        Raises:
            UpstreamFetchError: If the feed cannot be fetched or parsed
        """
        logger.info(f"Fetching ICS feed {url}")
        calendar = self.parse_feed(self.http.get_text(url))
        now = datetime.now(timezone.utc)
        for component in calendar.walk('VEVENT'):
            yield FeedItem(component, url, future_only, now)

    def map_item(self, item: FeedItem, seen: Set[str]) -> ExternalEvent:
        component = item.component

        dtstart = component.get('dtstart')
        start_at = as_datetime(dtstart.dt, self.tz) if dtstart is not None else None
        if start_at is None:
            raise SkipItem(SkipReason.NO_DATE, component_text(component, 'uid'))

        if item.future_only and start_at < item.now:
            raise SkipItem(SkipReason.PAST, utc_iso(start_at))

        end_at = None
        dtend = component.get('dtend')
        duration = component.get('duration')
        if dtend is not None:
            end_at = as_datetime(dtend.dt, self.tz)
        elif duration is not None:
            end_at = start_at + duration.dt

        location = component_text(component, 'location')
        if not location:
            raise SkipItem(SkipReason.NO_LOCATION, component_text(component, 'uid'))

        title = component_text(component, 'summary') or '(no title)'
        uid = component_text(component, 'uid') or stable_hash([title, utc_iso(start_at), location])
        source_id = f"{uid}#{utc_iso(start_at)}"
        self.claim(seen, source_id)

        lat = lng = None
        city = country_code = None

        geo = component.get('geo')
        if geo is not None:
            lat = pick_number(getattr(geo, 'latitude', None))
            lng = pick_number(getattr(geo, 'longitude', None))
            if lat is not None and lng is not None:
                reverse = self.geocoder.reverse(lat, lng)
                if reverse is not None:
                    city, country_code = reverse.city, reverse.country_code

        if lat is None or lng is None:
            details = self.geocoder.forward_detailed(location)
            if details is None:
                raise SkipItem(SkipReason.NO_GEO, location)
            lat, lng = details.lat, details.lng
            city = city_from_address(details.address, ICS_CITY_KEYS) or city
            country_code = country_code_from_address(details.address) or country_code

        if not country_code or len(country_code) != 2:
            raise SkipItem(SkipReason.NO_COUNTRY, location)

        return ExternalEvent(
            title=title,
            description=component_text(component, 'description') or None,
            country_code=country_code,
            city=city or city_from_location(location),
            place=location,
            start_at=start_at,
            end_at=end_at,
            lat=lat,
            lng=lng,
            source=EventSource.OTHER,
            source_id=source_id,
            source_url=item.feed_url,
            raw_payload={'ical': component.to_ical().decode('utf-8', 'replace')},
        )
