"""Tests for event page scraping."""
import json
from datetime import datetime

import pytest
import responses

from processor.field_mapping import stable_hash
from processor.models import EventSource
from processor.text_signals import DEFAULT_TZ
from scraper.http_client import HttpClient
from scraper.page_scrape import PageScrapeAdapter, facebook_event_id, parse_event_page

EXPO_URL = 'https://expo.example.com/tech-expo'
FB_URL = 'https://www.facebook.com/events/555/'


def json_ld_page(data, body='<p>Big fair</p>'):
    return (
        '<html><head>'
        f'<script type="application/ld+json">{json.dumps(data)}</script>'
        '<style>.x { color: red }</style>'
        f'</head><body>{body}</body></html>'
    )


@pytest.fixture
def adapter(geocoder):
    return PageScrapeAdapter(HttpClient(timeout=5, sleep=lambda s: None), geocoder)


class TestParseEventPage:
    """Tests for parse_event_page."""

    def test_json_ld_in_graph(self):
        html = json_ld_page({'@graph': [
            {'@type': 'WebPage', 'name': 'Tickets'},
            {
                '@type': 'MusicEvent',
                'name': 'Jazz Night',
                'startDate': '2026-03-20T19:30:00',
                'endDate': '2026-03-20T22:00:00',
                'location': {
                    'name': 'Teatr Powszechny',
                    'address': {
                        '@type': 'PostalAddress',
                        'streetAddress': 'ul. Żeromskiego 53',
                        'addressLocality': 'Radom',
                        'addressCountry': 'PL',
                    },
                },
            },
        ]})

        page = parse_event_page(html, EXPO_URL)

        assert page.title == 'Jazz Night'
        assert page.start_at == datetime(2026, 3, 20, 19, 30, tzinfo=DEFAULT_TZ)
        assert page.end_at == datetime(2026, 3, 20, 22, 0, tzinfo=DEFAULT_TZ)
        assert page.place == 'Teatr Powszechny'
        assert page.address == 'ul. Żeromskiego 53, Radom'
        assert page.city == 'Radom'
        assert page.country_code == 'PL'
        assert not page.has_coordinates

    def test_open_graph_fallback_and_visible_text(self):
        html = (
            '<html><head><title>Page title</title>'
            '<meta property="og:title" content="OG title">'
            '<meta property="og:description" content="OG description">'
            '<meta property="event:start_time" content="2026-04-01T18:00:00+02:00">'
            '<script>var tracking = 1;</script>'
            '</head><body><h1>Hello</h1>  <p>World</p></body></html>'
        )

        page = parse_event_page(html, EXPO_URL)

        assert page.title == 'OG title'
        assert page.description == 'OG description'
        assert page.start_at == datetime(2026, 4, 1, 18, 0, tzinfo=DEFAULT_TZ)
        assert 'tracking' not in page.text
        assert 'Hello World' in page.text

    def test_broken_json_ld_is_ignored(self):
        html = '<html><head><script type="application/ld+json">{not json</script></head></html>'
        page = parse_event_page(html, EXPO_URL)
        assert page.title is None
        assert page.start_at is None


def test_facebook_event_id():
    assert facebook_event_id('https://www.facebook.com/events/123456/?ref=x') == '123456'
    assert facebook_event_id('https://example.com/events/1') is None
    assert facebook_event_id(None) is None


@responses.activate
def test_structured_place_is_geocoded(adapter, geocoder):
    responses.add(responses.GET, EXPO_URL, body=json_ld_page({
        '@type': 'Event',
        'name': 'Tech Expo',
        'description': 'Big fair',
        'startDate': '2026-06-01T10:00:00+02:00',
        'location': {'@type': 'Place', 'name': 'Messe Berlin', 'address': {'addressCountry': 'DE'}},
    }), status=200)

    result = adapter.run(urls=[EXPO_URL])

    [event] = result.results
    assert event.source == EventSource.OTHER
    assert event.source_id == f"page:{stable_hash([EXPO_URL])}"
    assert event.source_url == EXPO_URL
    assert event.city == 'Berlin'
    assert event.country_code == 'DE'
    assert event.place == 'Messe Berlin'
    assert geocoder.forward_calls == ['Messe Berlin']


@responses.activate
def test_text_signals_fallback(adapter, geocoder):
    responses.add(responses.GET, FB_URL, body=(
        '<html><head>'
        '<meta property="og:title" content="Radom: Koncert jazzowy">'
        '<meta property="og:description" content="Teatr Powszechny; 15.03.2026 godz. 19:00">'
        '</head><body><p>Zapraszamy!</p></body></html>'
    ), status=200)

    result = adapter.run(urls=[FB_URL])

    [event] = result.results
    assert event.source == EventSource.FACEBOOK
    assert event.source_id == '555'
    assert event.start_at == datetime(2026, 3, 15, 19, 0, tzinfo=DEFAULT_TZ)
    assert event.city == 'Radom'
    assert event.place == 'Teatr Powszechny'
    assert geocoder.forward_calls == ['Teatr Powszechny, Radom, Poland']


@responses.activate
def test_skip_reasons(adapter):
    responses.add(responses.GET, 'https://example.com/gone', status=404)
    responses.add(responses.GET, 'https://example.com/no-title', body='<html><body></body></html>', status=200)
    responses.add(responses.GET, 'https://example.com/no-date', body=(
        '<html><head><meta property="og:title" content="Spotkanie"></head>'
        '<body>Bez daty</body></html>'
    ), status=200)

    result = adapter.run(urls=[
        'https://example.com/gone',
        'https://example.com/no-title',
        'https://example.com/no-date',
        'https://example.com/no-date',
    ])

    assert result.results == []
    assert result.stats.breakdown() == {
        'fetch_failed': 1, 'malformed': 1, 'no_date': 1, 'duplicate': 1,
    }


@responses.activate
def test_city_level_structured_place_drops_place_label(make_geocoder):
    geocoder = make_geocoder(forward={
        'Hala Nieznana': (52.0, 19.0, {'city': 'Łódź', 'country_code': 'pl'}, True),
    })
    adapter = PageScrapeAdapter(HttpClient(timeout=5, sleep=lambda s: None), geocoder)
    responses.add(responses.GET, EXPO_URL, body=json_ld_page({
        '@type': 'Event',
        'name': 'Targi',
        'startDate': '2026-06-01T10:00:00+02:00',
        'location': {'@type': 'Place', 'name': 'Hala Nieznana'},
    }), status=200)

    [event] = adapter.run(urls=[EXPO_URL]).results

    assert event.place is None
    assert event.lat == '52.000000'
    assert event.city == 'Łódź'
    assert event.country_code == 'PL'
