"""Tests for the reconciliation engine against a mocked event store."""
from datetime import datetime
from unittest.mock import Mock

import pytest

from processor.models import EventSource, EventStatus, ExternalEvent, SyncStatus
from processor.reconciliation import ReconciliationEngine
from processor.text_signals import DEFAULT_TZ


def make_event(source_id='123', source=EventSource.FACEBOOK, **overrides):
    fields = dict(
        title='Jazz Night',
        description='Live jazz',
        country_code='PL',
        city='Radom',
        place='Teatr Powszechny',
        start_at=datetime(2026, 3, 20, 19, 30, tzinfo=DEFAULT_TZ),
        lat=51.4027,
        lng=21.1471,
        source=source,
        source_id=source_id,
        source_url=f'https://www.facebook.com/events/{source_id}/',
        raw_payload={'query': 'jazz'},
    )
    fields.update(overrides)
    return ExternalEvent(**fields)


@pytest.fixture
def engine(event_store, sync_ledger):
    return ReconciliationEngine(event_store, sync_ledger)


def test_reconcile_creates_and_finalizes(engine, event_store, sync_ledger):
    run = sync_ledger.create_sync_run('search')

    result = engine.reconcile([make_event('1'), make_event('2')], run.run_id, fetched=5, skipped=3)

    assert (result.created, result.updated) == (2, 0)
    finished = sync_ledger.get_sync_run(run.run_id)
    assert finished.status == SyncStatus.SUCCESS
    assert (finished.fetched_count, finished.created_count, finished.skipped_count) == (5, 2, 3)
    stored = event_store.find_by_natural_key(EventSource.FACEBOOK, '1')
    assert stored.status == EventStatus.PENDING


def test_reconcile_is_idempotent(engine, event_store, sync_ledger):
    events = [make_event('1'), make_event('2')]
    first = engine.reconcile(events, sync_ledger.create_sync_run('search').run_id, 2, 0)
    second = engine.reconcile(events, sync_ledger.create_sync_run('search').run_id, 2, 0)

    assert (first.created, first.updated) == (2, 0)
    assert (second.created, second.updated) == (0, 2)
    assert len(event_store.get_all_events()) == 2


def test_pending_event_gets_full_update(engine, event_store, sync_ledger):
    engine.merge(make_event('1'))

    engine.merge(make_event('1', title='Jazz Night (moved)', city='Kielce'))

    stored = event_store.find_by_natural_key(EventSource.FACEBOOK, '1')
    assert stored.title == 'Jazz Night (moved)'
    assert stored.city == 'Kielce'
    assert stored.status == EventStatus.PENDING


@pytest.mark.parametrize('status', [EventStatus.APPROVED, EventStatus.REJECTED])
def test_moderated_event_content_is_locked(engine, event_store, status):
    created = engine.merge(make_event('1'))
    event_store.update_event(created.event_id, {'status': status})

    engine.merge(make_event(
        '1', title='Changed title', city='Kielce', description='New description',
        source_url='https://www.facebook.com/events/1/?ref=new',
    ))

    stored = event_store.find_by_natural_key(EventSource.FACEBOOK, '1')
    assert stored.status == status
    assert stored.title == 'Jazz Night'
    assert stored.city == 'Radom'
    assert stored.description == 'New description'
    assert stored.source_url == 'https://www.facebook.com/events/1/?ref=new'


def test_manual_event_without_id_becomes_draft(engine, event_store):
    stored = engine.merge(make_event(None, source=EventSource.MANUAL))

    assert stored.status == EventStatus.DRAFT
    assert stored.source_id.startswith('draft:')


def test_store_failure_finalizes_run_as_failed(sync_ledger):
    store = Mock()
    store.find_by_natural_key.return_value = None
    store.upsert.side_effect = RuntimeError('table unavailable')
    engine = ReconciliationEngine(store, sync_ledger)
    run = sync_ledger.create_sync_run('ics')

    with pytest.raises(RuntimeError):
        engine.reconcile([make_event('1')], run.run_id, fetched=1, skipped=0)

    finished = sync_ledger.get_sync_run(run.run_id)
    assert finished.status == SyncStatus.FAILED
    assert finished.error_message == 'table unavailable'
    assert finished.fetched_count == 1


def test_fail_run(engine, sync_ledger):
    run = sync_ledger.create_sync_run('graph')

    engine.fail_run(run.run_id, ValueError('bad token'))

    finished = sync_ledger.get_sync_run(run.run_id)
    assert finished.status == SyncStatus.FAILED
    assert finished.error_message == 'ValueError: bad token'
