"""Tests for the spreadsheet upload adapter."""
from datetime import datetime
from io import BytesIO

import pytest
from openpyxl import Workbook

from processor.errors import ValidationError
from processor.text_signals import DEFAULT_TZ
from scraper.spreadsheet import SpreadsheetAdapter, read_rows

HEADER = ['Title', 'Place', 'Start', 'End', 'City', 'Country', 'Lat', 'Lng', 'URL']


def workbook_bytes(rows, header=HEADER):
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(header)
    for row in rows:
        sheet.append(row)
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


JAZZ = ['Jazz Night', 'Teatr Powszechny, Radom, Poland', datetime(2026, 3, 20, 19, 30),
        datetime(2026, 3, 20, 22, 0), 'Radom', 'PL', None, None, 'https://example.com/jazz']
PICNIC = ['Piknik', 'Planty', datetime(2026, 6, 1, 12, 0), None, 'Kraków', 'Polska',
          50.0647, 19.945, None]


def test_read_rows_skips_blank_rows():
    content = workbook_bytes([JAZZ, [None] * len(HEADER), PICNIC])

    rows = list(read_rows(content))

    assert [r['Title'] for r in rows] == ['Jazz Night', 'Piknik']
    assert rows[0]['Start'] == datetime(2026, 3, 20, 19, 30)


def test_read_rows_rejects_garbage():
    with pytest.raises(ValidationError):
        list(read_rows(b'definitely not a workbook'))


def test_maps_rows_and_counts_skips(geocoder):
    rows = [
        JAZZ,
        PICNIC,
        ['', 'Somewhere', datetime(2026, 5, 1, 10, 0)],
        ['Bez daty', 'Planty', 'someday'],
        ['Atlantyda', 'Planty', datetime(2026, 5, 1, 10, 0), None, None, 'Atlantis'],
        ['Zgubione', 'Nowhere 1', datetime(2026, 5, 1, 10, 0)],
    ]

    result = SpreadsheetAdapter(geocoder).run(content=workbook_bytes(rows), filename='events.xlsx')

    assert result.stats.scanned == 6
    assert result.stats.breakdown() == {'malformed': 1, 'no_date': 1, 'no_country': 1, 'no_geo': 1}

    jazz, picnic = result.results
    assert jazz.start_at == datetime(2026, 3, 20, 19, 30, tzinfo=DEFAULT_TZ)
    assert jazz.end_at == datetime(2026, 3, 20, 22, 0, tzinfo=DEFAULT_TZ)
    assert jazz.lat == '51.402700'
    assert jazz.source_url == 'https://example.com/jazz'
    assert jazz.source_id.startswith('excel:')
    assert jazz.raw_payload['geocode'] == {'lat': 51.4027, 'lng': 21.1471}
    assert picnic.country_code == 'PL'
    assert picnic.lat == '50.064700'
    assert picnic.raw_payload['geocode'] is None
    assert geocoder.forward_calls == ['Teatr Powszechny, Radom, Poland', 'Nowhere 1']


def test_content_hash_id_is_stable_per_file(geocoder):
    content = workbook_bytes([PICNIC])
    adapter = SpreadsheetAdapter(geocoder)

    first = adapter.run(content=content, filename='a.xlsx').results[0]
    again = adapter.run(content=content, filename='a.xlsx').results[0]
    other_file = adapter.run(content=content, filename='b.xlsx').results[0]

    assert first.source_id == again.source_id
    assert first.source_id != other_file.source_id


def test_explicit_id_column_and_duplicates(geocoder):
    header = ['sourceId', 'name', 'location', 'date', 'latitude', 'longitude']
    rows = [
        ['row-1', 'A', 'Planty', datetime(2026, 5, 1, 10, 0), 50.06, 19.94],
        ['row-1', 'A copy', 'Planty', datetime(2026, 5, 1, 10, 0), 50.06, 19.94],
    ]

    result = SpreadsheetAdapter(geocoder).run(content=workbook_bytes(rows, header))

    assert [e.source_id for e in result.results] == ['row-1']
    assert result.stats.breakdown() == {'duplicate': 1}
    assert result.results[0].country_code == 'PL'


def test_limit_caps_rows(geocoder):
    content = workbook_bytes([PICNIC, PICNIC, PICNIC])

    result = SpreadsheetAdapter(geocoder).run(limit=1, content=content)

    assert result.stats.scanned == 1
