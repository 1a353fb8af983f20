"""Spreadsheet (xlsx) upload adapter."""
import logging
import zipfile
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set

from openpyxl import load_workbook
from openpyxl.utils.datetime import from_excel
from openpyxl.utils.exceptions import InvalidFileException

from processor.errors import ValidationError
from processor.field_mapping import (
    as_datetime,
    as_text,
    pick_column,
    pick_number,
    pick_string,
    stable_hash,
    utc_iso,
)
from processor.models import AdapterStats, EventSource, ExternalEvent, SkipReason
from processor.text_signals import country_code_from_value
from scraper.base import SkipItem, SourceAdapter

logger = logging.getLogger(__name__)

MAX_ROWS = 5000

TITLE_COLUMNS = ('title', 'name')
DESCRIPTION_COLUMNS = ('description', 'details')
START_COLUMNS = ('startAt', 'start', 'date')
END_COLUMNS = ('endAt', 'end')
PLACE_COLUMNS = ('place', 'location', 'address', 'venue')
CITY_COLUMNS = ('city',)
COUNTRY_COLUMNS = ('countryCode', 'country')
LAT_COLUMNS = ('lat', 'latitude')
LNG_COLUMNS = ('lng', 'lon', 'longitude')
URL_COLUMNS = ('sourceUrl', 'url', 'link')
ID_COLUMNS = ('sourceId', 'id')


def read_rows(content: bytes) -> Iterator[Dict[str, Any]]:
    """
    Rows of the first worksheet keyed by header text.

    Raises:
        ValidationError: If the bytes are not a readable workbook
    """
    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ValidationError(f"Not a readable workbook: {e}") from e

    try:
        if not workbook.worksheets:
            raise ValidationError("Workbook has no sheets")
        rows = workbook.worksheets[0].iter_rows(values_only=True)
        header = next(rows, None)
        if not header:
            return
        columns = [as_text(h) for h in header]
        for values in rows:
            if values is None or all(v is None or as_text(v) == '' for v in values):
                continue
            yield {col: val for col, val in zip(columns, values) if col}
    finally:
        workbook.close()


class SpreadsheetAdapter(SourceAdapter):
    """
    Map rows of an uploaded workbook.

    Without an explicit id column the sourceId is a hash of the row's
    content and the file name, so re-importing the same file converges.
    """

    name = 'spreadsheet'

    def __init__(self, geocoder, **kwargs):
        super().__init__(geocoder=geocoder, **kwargs)

    def fetch_items(self, limit: int = 0, content: bytes = b'', filename: str = None,
                    **params) -> Iterable[Any]:
        for row in read_rows(content):
            yield filename, row

    def should_stop(self, stats: AdapterStats, results: List[ExternalEvent], limit: int) -> bool:
        cap = min(MAX_ROWS, limit) if limit and limit > 0 else MAX_ROWS
        return stats.scanned >= cap

    def _cell_datetime(self, value: Any) -> Optional[datetime]:
        # unformatted date cells arrive as Excel serial numbers
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                value = from_excel(value)
            except (OverflowError, ValueError, TypeError):
                return None
        return as_datetime(value, self.tz)

    def map_item(self, item: Any, seen: Set[str]) -> ExternalEvent:
        filename, row = item

        title = as_text(pick_column(row, TITLE_COLUMNS))
        place = as_text(pick_column(row, PLACE_COLUMNS))
        if not title or not place:
            raise SkipItem(SkipReason.MALFORMED, 'title and place are required')

        start_at = self._cell_datetime(pick_column(row, START_COLUMNS))
        if start_at is None:
            raise SkipItem(SkipReason.NO_DATE, title)
        end_at = self._cell_datetime(pick_column(row, END_COLUMNS))

        city = as_text(pick_column(row, CITY_COLUMNS)) or 'Unknown'
        country_value = as_text(pick_column(row, COUNTRY_COLUMNS))
        country_code = country_code_from_value(country_value) if country_value else self.default_country_code
        if not country_code:
            raise SkipItem(SkipReason.NO_COUNTRY, country_value)

        lat = pick_number(pick_column(row, LAT_COLUMNS))
        lng = pick_number(pick_column(row, LNG_COLUMNS))
        geocode = None
        if lat is None or lng is None:
            point = self.geocoder.forward(place)
            if point is None:
                raise SkipItem(SkipReason.NO_GEO, place)
            lat, lng = point.lat, point.lng
            geocode = {'lat': lat, 'lng': lng}

        explicit_id = pick_string(as_text(pick_column(row, ID_COLUMNS)))
        source_id = explicit_id or 'excel:' + stable_hash([
            title, utc_iso(start_at), place, city, country_code, filename or 'unknown',
        ])
        self.claim(seen, source_id)

        return ExternalEvent(
            title=title,
            description=as_text(pick_column(row, DESCRIPTION_COLUMNS)) or None,
            country_code=country_code,
            city=city,
            place=place,
            start_at=start_at,
            end_at=end_at,
            lat=lat,
            lng=lng,
            source=EventSource.OTHER,
            source_id=source_id,
            source_url=pick_string(as_text(pick_column(row, URL_COLUMNS))),
            raw_payload={'file': filename, 'row': row, 'geocode': geocode},
        )
