"""Tests for the ICS feed adapter."""
from datetime import datetime, timedelta, timezone

import pytest
import responses

from processor.errors import UpstreamFetchError
from processor.models import EventSource
from processor.text_signals import DEFAULT_TZ
from scraper.http_client import HttpClient
from scraper.ics_feed import ICSFeedAdapter, city_from_location


FEED_URL = 'https://calendar.example.com/events.ics'


def calendar(*events):
    lines = ['BEGIN:VCALENDAR', 'VERSION:2.0', 'PRODID:-//Map Events Test//EN']
    for event in events:
        lines.append('BEGIN:VEVENT')
        lines.extend(event)
        lines.append('END:VEVENT')
    lines.append('END:VCALENDAR')
    return '\r\n'.join(lines) + '\r\n'


PHILHARMONIC = [
    'UID:evt-1@example.com',
    'SUMMARY:Koncert symfoniczny',
    'DTSTART:20260320T190000Z',
    'DTEND:20260320T210000Z',
    'LOCATION:Filharmonia Narodowa\\, Warszawa',
    'DESCRIPTION:Program: Chopin',
]
PICNIC_WITH_GEO = [
    'UID:evt-2@example.com',
    'SUMMARY:Piknik',
    'DTSTART;VALUE=DATE:20260401',
    'GEO:52.2297;21.0122',
    'LOCATION:Park Skaryszewski',
]
UNDATED = [
    'UID:evt-3@example.com',
    'SUMMARY:Bez daty',
    'LOCATION:Somewhere',
]
FAIR_IN_BERLIN = [
    'UID:evt-4@example.com',
    'SUMMARY:Targi',
    'DTSTART:20260501T090000Z',
    'DURATION:PT8H',
    'LOCATION:Messe Berlin',
]


@pytest.fixture
def http():
    return HttpClient(timeout=5, sleep=lambda s: None)


@responses.activate
def test_maps_events_and_applies_country_filter(http, geocoder):
    responses.add(responses.GET, FEED_URL, status=200,
                  body=calendar(PHILHARMONIC, PICNIC_WITH_GEO, UNDATED, FAIR_IN_BERLIN))

    result = ICSFeedAdapter(http, geocoder).run(url=FEED_URL, country_filter='PL')

    assert result.stats.scanned == 4
    assert result.stats.accepted == 2
    assert result.stats.breakdown() == {'no_date': 1, 'filtered': 1}

    concert, picnic = result.results
    assert concert.source == EventSource.OTHER
    assert concert.source_id == 'evt-1@example.com#2026-03-20T19:00:00.000Z'
    assert concert.source_url == FEED_URL
    assert concert.place == 'Filharmonia Narodowa, Warszawa'
    assert concert.city == 'Warszawa'
    assert concert.country_code == 'PL'
    assert concert.end_at == datetime(2026, 3, 20, 21, 0, tzinfo=timezone.utc)
    assert concert.description == 'Program: Chopin'
    assert 'BEGIN:VEVENT' in concert.raw_payload['ical']

    assert picnic.start_at == datetime(2026, 4, 1, 12, 0, tzinfo=DEFAULT_TZ)
    assert picnic.lat == '52.229700'
    assert picnic.city == 'Warszawa'
    assert geocoder.reverse_calls == [(52.2297, 21.0122)]


@responses.activate
def test_duration_sets_end(http, geocoder):
    responses.add(responses.GET, FEED_URL, body=calendar(FAIR_IN_BERLIN), status=200)

    [fair] = ICSFeedAdapter(http, geocoder).run(url=FEED_URL).results

    assert fair.country_code == 'DE'
    assert fair.city == 'Berlin'
    assert fair.end_at - fair.start_at == timedelta(hours=8)


@responses.activate
def test_future_only_skips_past_events(http, geocoder):
    past = [
        'UID:old@example.com',
        'SUMMARY:Dawno temu',
        'DTSTART:20200101T100000Z',
        'LOCATION:Messe Berlin',
    ]
    future = [
        'UID:new@example.com',
        'SUMMARY:Kiedyś',
        'DTSTART:20990101T100000Z',
        'LOCATION:Messe Berlin',
    ]
    responses.add(responses.GET, FEED_URL, body=calendar(past, future), status=200)

    result = ICSFeedAdapter(http, geocoder).run(url=FEED_URL, future_only=True)

    assert [e.title for e in result.results] == ['Kiedyś']
    assert result.stats.breakdown() == {'past': 1}


@responses.activate
def test_recurring_instances_and_duplicates(http, geocoder):
    first = FAIR_IN_BERLIN
    second = [line.replace('20260501', '20260502') for line in FAIR_IN_BERLIN]
    responses.add(responses.GET, FEED_URL, body=calendar(first, second, first), status=200)

    result = ICSFeedAdapter(http, geocoder).run(url=FEED_URL)

    assert len(result.results) == 2
    assert result.stats.breakdown() == {'duplicate': 1}


@responses.activate
def test_location_skip_reasons(http, make_geocoder):
    geocoder = make_geocoder(forward={'Stacja Polarna': (77.0, 15.5, {'city': 'Hornsund'}, False)})
    no_location = ['UID:a', 'SUMMARY:A', 'DTSTART:20260501T090000Z']
    unknown_place = ['UID:b', 'SUMMARY:B', 'DTSTART:20260501T090000Z', 'LOCATION:Nowhere']
    no_country = ['UID:c', 'SUMMARY:C', 'DTSTART:20260501T090000Z', 'LOCATION:Stacja Polarna']
    responses.add(responses.GET, FEED_URL, body=calendar(no_location, unknown_place, no_country),
                  status=200)

    result = ICSFeedAdapter(http, geocoder).run(url=FEED_URL)

    assert result.results == []
    assert result.stats.breakdown() == {'no_location': 1, 'no_geo': 1, 'no_country': 1}


@responses.activate
def test_unparseable_feed_fails_the_run(http, geocoder):
    responses.add(responses.GET, FEED_URL, body='this is not a calendar', status=200)

    with pytest.raises(UpstreamFetchError):
        ICSFeedAdapter(http, geocoder).run(url=FEED_URL)


def test_city_from_location():
    assert city_from_location('Dom Kultury, ul. Kościuszki 5, Radom') == 'Dom Kultury'
    assert city_from_location(' , ') == 'Unknown'
