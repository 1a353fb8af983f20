"""Newline-delimited JSON event file import."""
import json
import logging
from typing import Any, Iterable, Set, Union

from processor.field_mapping import as_datetime, pick_string
from processor.models import EventSource, ExternalEvent, SkipReason
from scraper.base import SkipItem, SourceAdapter

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('title', 'countryCode', 'city', 'startAt')


def map_source(value: Any) -> EventSource:
    """Unknown source names are treated as manual entries."""
    try:
        return EventSource(value)
    except ValueError:
        return EventSource.MANUAL


class NDJSONFileAdapter(SourceAdapter):
    """
    One JSON record per line.

    Records carry coordinates already; nothing is geocoded. Manual
    records without sourceEventId become drafts.
    """

    name = 'ndjson'

    def fetch_items(self, limit: int = 0, lines: Iterable[Union[str, bytes]] = (),
                    **params) -> Iterable[Any]:
        for line in lines:
            if isinstance(line, bytes):
                line = line.decode('utf-8')
            line = line.strip()
            if line:
                yield line

    def map_item(self, item: str, seen: Set[str]) -> ExternalEvent:
        try:
            record = json.loads(item)
        except ValueError as e:
            raise SkipItem(SkipReason.MALFORMED, f"invalid JSON: {e}")
        if not isinstance(record, dict):
            raise SkipItem(SkipReason.MALFORMED, 'record is not an object')

        missing = [f for f in REQUIRED_FIELDS if not pick_string(record.get(f))]
        if missing:
            raise SkipItem(SkipReason.MALFORMED, f"missing {', '.join(missing)}")

        lat, lng = record.get('lat'), record.get('lng')
        if any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in (lat, lng)):
            raise SkipItem(SkipReason.MALFORMED, 'lat/lng must be numbers')

        source = map_source(record.get('source'))
        source_id = pick_string(record.get('sourceEventId'))
        if source != EventSource.MANUAL and not source_id:
            raise SkipItem(SkipReason.MALFORMED, f"{source.value} record without sourceEventId")
        if source_id:
            self.claim(seen, f"{source.value}#{source_id}")

        start_at = as_datetime(record.get('startAt'), self.tz)
        if start_at is None:
            raise SkipItem(SkipReason.NO_DATE, str(record.get('startAt')))

        return ExternalEvent(
            title=record['title'],
            description=pick_string(record.get('description')),
            country_code=record['countryCode'],
            city=record['city'],
            place=pick_string(record.get('place')),
            start_at=start_at,
            end_at=as_datetime(record.get('endAt'), self.tz),
            lat=lat,
            lng=lng,
            source=source,
            source_id=source_id,
            source_url=pick_string(record.get('sourceUrl')),
            raw_payload=record.get('raw'),
        )
