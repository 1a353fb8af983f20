"""Unit tests for data models."""
from datetime import datetime, timedelta

import pytest

from processor.models import (
    AdapterStats,
    EventSource,
    ExternalEvent,
    GeoCacheEntry,
    RunSummary,
    SkipReason,
    natural_key_of,
)
from processor.text_signals import DEFAULT_TZ


def make_event(**overrides):
    fields = dict(
        title=' Jazz Night ',
        country_code='pl',
        city='Radom',
        start_at=datetime(2026, 3, 20, 19, 30, tzinfo=DEFAULT_TZ),
        lat=51.4027,
        lng=21.1471,
        source=EventSource.FACEBOOK,
        source_id='123',
    )
    fields.update(overrides)
    return ExternalEvent(**fields)


class TestExternalEvent:
    """Tests for ExternalEvent normalization."""

    def test_normalizes_fields(self):
        event = make_event()
        assert event.title == 'Jazz Night'
        assert event.country_code == 'PL'
        assert event.lat == '51.402700'
        assert event.lng == '21.147100'
        assert event.natural_key == 'facebook#123'

    def test_empty_title_rejected(self):
        with pytest.raises(ValueError):
            make_event(title='   ')

    def test_invalid_country_code_rejected(self):
        with pytest.raises(ValueError):
            make_event(country_code='POL')

    def test_end_not_after_start_is_dropped(self):
        start = datetime(2026, 3, 20, 19, 30, tzinfo=DEFAULT_TZ)
        assert make_event(end_at=start).end_at is None
        assert make_event(end_at=start - timedelta(hours=1)).end_at is None
        assert make_event(end_at=start + timedelta(hours=2)).end_at == start + timedelta(hours=2)

    def test_blank_city_becomes_unknown(self):
        assert make_event(city='  ').city == 'Unknown'

    def test_no_source_id_has_no_natural_key(self):
        assert make_event(source=EventSource.MANUAL, source_id=None).natural_key is None

    def test_source_accepts_plain_string(self):
        assert make_event(source='other').source == EventSource.OTHER


def test_natural_key_of():
    assert natural_key_of(EventSource.OTHER, 'page:abc') == 'other#page:abc'


def test_adapter_stats_breakdown():
    stats = AdapterStats()
    stats.record_skip(SkipReason.NO_DATE)
    stats.record_skip(SkipReason.NO_DATE)
    stats.record_skip('duplicate')
    assert stats.skipped_total == 3
    assert stats.breakdown() == {'no_date': 2, 'duplicate': 1}


def test_geo_cache_entry_negative():
    assert GeoCacheEntry('x', None, None).is_negative
    assert not GeoCacheEntry('x', '1.000000', '2.000000').is_negative


def test_run_summary_to_dict():
    summary = RunSummary(source='ics', status='success', run_id='r1', fetched=3,
                         skip_breakdown={'past': 1})
    data = summary.to_dict()
    assert data['source'] == 'ics'
    assert data['fetched'] == 3
    assert data['skip_breakdown'] == {'past': 1}
