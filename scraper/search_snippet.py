"""Search-engine snippet adapter for indexed Facebook event pages."""
import logging
from typing import Any, Iterable, List, Optional, Set

from geocoding.nominatim import city_from_address, country_code_from_address
from processor.errors import UpstreamFetchError
from processor.field_mapping import pick_string
from processor.models import AdapterStats, EventSource, ExternalEvent, SkipReason
from processor.text_signals import extract_place, extract_start_end, extract_year_hint
from scraper.base import SkipItem, SourceAdapter
from scraper.page_scrape import PageSignals, facebook_event_id, parse_event_page

logger = logging.getLogger(__name__)

SERPAPI_URL = 'https://serpapi.com/search.json'
PAGE_SIZE = 20


class SearchSnippetAdapter(SourceAdapter):
    """
    Paginated SerpAPI search over facebook.com/events results.

    Each organic result is mapped from its title and snippet; the linked
    page is fetched first when fetch_pages is enabled. The limit counts
    accepted events while max_scanned bounds pagination.
    """

    name = 'search'

    def __init__(self, http, geocoder, api_key: str, max_scanned: int = 300,
                 fetch_pages: bool = False, accept_country_level: bool = False,
                 engine: str = 'google', **kwargs):
        super().__init__(geocoder=geocoder, **kwargs)
        self.http = http
        self.api_key = api_key
        self.max_scanned = max_scanned
        self.fetch_pages = fetch_pages
        self.accept_country_level = accept_country_level
        self.engine = engine

    def fetch_items(self, limit: int = 0, query: str = '', **params) -> Iterable[Any]:
        """
        Yield organic results page by page.

        Raises:
            UpstreamFetchError: If a search page cannot be fetched
        """
        start = 0
        while start < self.max_scanned:
            payload = self.http.get_json(SERPAPI_URL, params={
                'engine': self.engine,
                'q': query,
                'num': PAGE_SIZE,
                'start': start,
                'api_key': self.api_key,
            })
            organic = payload.get('organic_results') or []
            logger.info(f"Search page at offset {start}: {len(organic)} result(s)")
            if not organic:
                return
            for result in organic:
                yield {'query': query, 'result': result}
            if not (payload.get('serpapi_pagination') or {}).get('next'):
                return
            start += len(organic)

    def should_stop(self, stats: AdapterStats, results: List[ExternalEvent], limit: int) -> bool:
        if stats.scanned >= self.max_scanned:
            logger.info(f"Reached scan cap of {self.max_scanned} results")
            return True
        return bool(limit) and len(results) >= limit

    def map_item(self, item: Any, seen: Set[str]) -> ExternalEvent:
        query = item['query']
        result = item['result']

        link = pick_string(result.get('link'))
        event_id = facebook_event_id(link)
        if not event_id:
            raise SkipItem(SkipReason.MALFORMED, f"no event id in {link!r}")
        self.claim(seen, event_id)

        url = f"https://www.facebook.com/events/{event_id}/"
        title = pick_string(result.get('title'))
        snippet = pick_string(result.get('snippet')) or ''
        if not title:
            raise SkipItem(SkipReason.MALFORMED, f"no title for {event_id}")

        page = self._fetch_page(url) if self.fetch_pages else None
        year_hint = extract_year_hint(query) or extract_year_hint(f"{title} {snippet}")

        start_at = end_at = None
        if page is not None and page.start_at is not None:
            start_at, end_at = page.start_at, page.end_at
        else:
            span = extract_start_end(f"{title}\n{snippet}", year_hint, self.tz)
            if span.start_at is None and page is not None:
                span = extract_start_end(page.text, year_hint, self.tz)
            start_at, end_at = span.start_at, span.end_at
        if start_at is None:
            raise SkipItem(SkipReason.NO_DATE, title)

        lat, lng, city, country_code, place = self._resolve_place(title, snippet, query, page)

        return ExternalEvent(
            title=title,
            description=snippet or None,
            country_code=country_code,
            city=city,
            place=place,
            start_at=start_at,
            end_at=end_at,
            lat=lat,
            lng=lng,
            source=EventSource.FACEBOOK,
            source_id=event_id,
            source_url=url,
            raw_payload={'query': query, 'indexed': result},
        )

    def _fetch_page(self, url: str) -> Optional[PageSignals]:
        try:
            return parse_event_page(self.http.get_text(url), url, self.tz)
        except UpstreamFetchError as e:
            logger.warning(f"Page fetch failed, using snippet only: {e}")
            return None

    def _resolve_place(self, title: str, snippet: str, query: str, page: Optional[PageSignals]):
        signal = extract_place(title, snippet, query, self.default_country, self.default_country_code)

        if page is not None and page.has_coordinates:
            city = page.city or (signal.city if signal.city != 'Unknown' else None)
            if not city:
                city = self.geocoder.reverse_city(page.lat, page.lng)
            return (page.lat, page.lng, city or 'Unknown',
                    page.country_code or signal.country_code, page.place or signal.place)

        query_text = signal.place_query
        place = signal.place
        if page is not None and (page.place or page.address):
            query_text = ', '.join(p for p in (page.place, page.address, page.city) if p)
            place = page.place or page.address
        elif signal.precision == 'country' and not self.accept_country_level:
            raise SkipItem(SkipReason.NO_LOCATION, title)

        details = self.geocoder.forward_detailed(query_text)
        if details is None:
            raise SkipItem(SkipReason.NO_GEO, query_text)
        if details.city_level and place:
            logger.debug(f"{query_text!r} resolved to a city centroid; dropping place {place!r}")
            place = None

        city = signal.city
        if city == 'Unknown':
            city = city_from_address(details.address) or 'Unknown'
        country_code = country_code_from_address(details.address) or signal.country_code
        return details.lat, details.lng, city, country_code, place
