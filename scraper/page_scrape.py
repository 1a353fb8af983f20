"""Event page scraper: JSON-LD Event markup, OpenGraph tags, visible text."""
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Iterable, Iterator, Optional, Set

from bs4 import BeautifulSoup

from geocoding.nominatim import city_from_address, country_code_from_address
from processor.errors import UpstreamFetchError
from processor.field_mapping import as_datetime, first_number, pick_string, stable_hash
from processor.models import EventSource, ExternalEvent, SkipReason
from processor.text_signals import (
    DEFAULT_TZ,
    country_code_from_value,
    extract_place,
    extract_start_end,
    extract_year_hint,
)
from scraper.base import SkipItem, SourceAdapter

logger = logging.getLogger(__name__)

FACEBOOK_EVENT_ID = re.compile(r'facebook\.com/events/(\d+)', re.IGNORECASE)

MAX_TEXT_LENGTH = 5000


@dataclass
class PageSignals:
    """What an event page tells about the event."""
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    place: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country_code: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    text: str = ''

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


def facebook_event_id(url: Optional[str]) -> Optional[str]:
    m = FACEBOOK_EVENT_ID.search(url or '')
    return m.group(1) if m else None


def _walk_json_ld(node: Any) -> Iterator[dict]:
    if isinstance(node, list):
        for child in node:
            yield from _walk_json_ld(child)
    elif isinstance(node, dict):
        yield node
        if '@graph' in node:
            yield from _walk_json_ld(node['@graph'])


def _is_event(node: dict) -> bool:
    types = node.get('@type')
    if isinstance(types, str):
        types = [types]
    return any(isinstance(t, str) and t.endswith('Event') for t in types or [])


def find_json_ld_event(soup: BeautifulSoup) -> Optional[dict]:
    """First schema.org *Event object in the page's JSON-LD blocks."""
    for script in soup.find_all('script', type='application/ld+json'):
        content = script.string or script.get_text()
        if not content:
            continue
        try:
            data = json.loads(content)
        except ValueError:
            logger.debug("Ignoring unparseable JSON-LD block")
            continue
        for node in _walk_json_ld(data):
            if _is_event(node):
                return node
    return None


def _meta(soup: BeautifulSoup, name: str) -> Optional[str]:
    tag = soup.find('meta', attrs={'property': name}) or soup.find('meta', attrs={'name': name})
    return pick_string(tag.get('content')) if tag else None


def _address_text(address: Any) -> Optional[str]:
    if isinstance(address, str):
        return pick_string(address)
    if isinstance(address, dict):
        parts = [pick_string(address.get(k)) for k in ('streetAddress', 'addressLocality')]
        return ', '.join(p for p in parts if p) or None
    return None


def parse_event_page(html: str, url: str, tz: tzinfo = DEFAULT_TZ) -> PageSignals:
    """
    Extract event signals from an HTML page.

    JSON-LD Event markup wins over OpenGraph tags; visible text is kept
    for the regex fallbacks of the caller.

    Args:
        html: Page HTML
        url: Page URL
        tz: Timezone for naive timestamps

    Returns:
        PageSignals (fields None when the page does not carry them)
    """
    soup = BeautifulSoup(html, 'html.parser')
    signals = PageSignals(url=url)

    event = find_json_ld_event(soup)
    if event:
        signals.title = pick_string(event.get('name'))
        signals.description = pick_string(event.get('description'))
        signals.start_at = as_datetime(event.get('startDate'), tz)
        signals.end_at = as_datetime(event.get('endDate'), tz)

        location = event.get('location')
        if isinstance(location, list):
            location = location[0] if location else None
        if isinstance(location, dict):
            signals.place = pick_string(location.get('name'))
            address = location.get('address')
            signals.address = _address_text(address)
            if isinstance(address, dict):
                signals.city = pick_string(address.get('addressLocality'))
                country = address.get('addressCountry')
                if isinstance(country, dict):
                    country = country.get('name')
                signals.country_code = country_code_from_value(pick_string(country))
            signals.lat = first_number(location, ('geo.latitude', 'latitude'))
            signals.lng = first_number(location, ('geo.longitude', 'longitude'))
        elif isinstance(location, str):
            signals.place = pick_string(location)

    signals.title = signals.title or _meta(soup, 'og:title') or (
        pick_string(soup.title.get_text()) if soup.title else None
    )
    signals.description = signals.description or _meta(soup, 'og:description') or _meta(soup, 'description')
    if signals.start_at is None:
        signals.start_at = as_datetime(_meta(soup, 'event:start_time'), tz)
        signals.end_at = signals.end_at or as_datetime(_meta(soup, 'event:end_time'), tz)

    for tag in soup(['script', 'style', 'noscript']):
        tag.decompose()
    signals.text = re.sub(r'\s+', ' ', soup.get_text(' ')).strip()[:MAX_TEXT_LENGTH]
    return signals


class PageScrapeAdapter(SourceAdapter):
    """Turn a list of event page URLs into events."""

    name = 'page'

    def __init__(self, http, geocoder, accept_country_level: bool = False, **kwargs):
        super().__init__(geocoder=geocoder, **kwargs)
        self.http = http
        self.accept_country_level = accept_country_level

    def fetch_page_signals(self, url: str) -> PageSignals:
        """Fetch and parse one page; fetch errors propagate."""
        html = self.http.get_text(url)
        return parse_event_page(html, url, self.tz)

    def fetch_items(self, limit: int = 0, urls: Iterable[str] = (), **params) -> Iterable[Any]:
        for url in urls:
            url = pick_string(url)
            if url:
                yield url

    def map_item(self, item: str, seen: Set[str]) -> ExternalEvent:
        fb_id = facebook_event_id(item)
        if fb_id:
            source, source_id = EventSource.FACEBOOK, fb_id
        else:
            source, source_id = EventSource.OTHER, f"page:{stable_hash([item])}"
        self.claim(seen, source_id)

        try:
            page = self.fetch_page_signals(item)
        except UpstreamFetchError as e:
            raise SkipItem(SkipReason.FETCH_FAILED, str(e))

        title = page.title
        if not title:
            raise SkipItem(SkipReason.MALFORMED, f"no title on {item}")

        start_at, end_at = page.start_at, page.end_at
        if start_at is None:
            text = f"{title}\n{page.description or ''}\n{page.text}"
            span = extract_start_end(text, extract_year_hint(text), self.tz)
            start_at, end_at = span.start_at, span.end_at
        if start_at is None:
            raise SkipItem(SkipReason.NO_DATE, item)

        lat, lng, city, country_code, place = self.resolve_location(page, title, page.description)

        return ExternalEvent(
            title=title,
            description=page.description,
            country_code=country_code,
            city=city,
            place=place,
            start_at=start_at,
            end_at=end_at,
            lat=lat,
            lng=lng,
            source=source,
            source_id=source_id,
            source_url=item,
            raw_payload={'url': item, 'title': page.title, 'place': page.place, 'address': page.address},
        )

    def resolve_location(self, page: PageSignals, title: Optional[str], snippet: Optional[str],
                         query: Optional[str] = None):
        """
        Coordinates, city, country code and place label of a page.

        Embedded coordinates win; otherwise the structured place/address
        is geocoded; otherwise a place query is built from the text.

        Raises:
            SkipItem: When no usable location can be resolved
        """
        signal = extract_place(title, f"{snippet or ''}\n{page.text[:1000]}", query,
                               self.default_country, self.default_country_code)
        city = page.city or (signal.city if signal.city != 'Unknown' else None)
        country_code = page.country_code or signal.country_code
        place = page.place or page.address or signal.place

        if page.has_coordinates:
            if not city and self.geocoder is not None:
                city = self.geocoder.reverse_city(page.lat, page.lng)
            return page.lat, page.lng, city or 'Unknown', country_code, place

        structured = [p for p in (page.place, page.address, page.city) if p]
        if structured:
            query_text = ', '.join(dict.fromkeys(structured))
        elif signal.precision == 'country' and not self.accept_country_level:
            raise SkipItem(SkipReason.NO_LOCATION, page.url)
        else:
            query_text = signal.place_query

        details = self.geocoder.forward_detailed(query_text)
        if details is None:
            raise SkipItem(SkipReason.NO_GEO, query_text)
        if details.city_level and place:
            logger.debug(f"{query_text!r} resolved to a city centroid; dropping place {place!r}")
            place = None

        city = city or city_from_address(details.address) or 'Unknown'
        country_code = country_code_from_address(details.address) or country_code
        return details.lat, details.lng, city, country_code, place
