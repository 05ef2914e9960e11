"""Unit tests for the Reconciler."""
from dataclasses import replace
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from processor.models import ReconcileResult
from processor.reconciler import Reconciler
from storage.event_store import DuplicateEventError


@pytest.fixture
def records(sample_record):
    return [
        sample_record,
        replace(sample_record, title='[Sonarr] Show Name - 1x02 - Second',
                start='2024-01-08T10:00:00Z', end='2024-01-08T11:00:00Z'),
        replace(sample_record, title='[Radarr] Movie Title', color='green',
                start='2024-01-15T00:00:00Z', end='2024-01-16T00:00:00Z'),
    ]


def all_events(store):
    return store.scan_range(0, 2 ** 40)


def client_error(code='ProvisionedThroughputExceededException'):
    return ClientError({'Error': {'Code': code, 'Message': 'boom'}}, 'PutItem')


def test_reconcile_inserts_new_events(event_store, records):
    result = Reconciler(event_store).reconcile(records)

    assert result == ReconcileResult(added=3, updated=0, errors=[])
    assert len(all_events(event_store)) == 3


def test_reconcile_is_idempotent(event_store, records):
    """Test reconciling the same batch twice keeps one record per identity key."""
    reconciler = Reconciler(event_store)

    reconciler.reconcile(records)
    first_ids = sorted(event.id for event in all_events(event_store))

    result = reconciler.reconcile(records)

    assert result.added == 0
    assert result.updated == 3
    stored = all_events(event_store)
    assert len(stored) == 3
    assert sorted(event.id for event in stored) == first_ids


def test_duplicates_within_batch_collapse(event_store, sample_record):
    result = Reconciler(event_store).reconcile([sample_record, replace(sample_record)])

    assert result.added == 1
    assert result.updated == 1
    assert len(all_events(event_store)) == 1


def test_status_change_updates_color_only(event_store, sample_record):
    """Test a confirmed re-ingest turns the stored event green without a new row."""
    reconciler = Reconciler(event_store)
    reconciler.reconcile([sample_record])
    original = event_store.find_by_identity(sample_record)

    confirmed = replace(sample_record, color='green', description='Changed', location='Moved')
    reconciler.reconcile([confirmed])

    stored = all_events(event_store)
    assert len(stored) == 1
    updated = stored[0]
    assert updated.id == original.id
    assert updated.color == 'green'
    assert (updated.title, updated.start, updated.end) == (
        original.title, original.start, original.end
    )
    assert updated.description == 'The first episode'
    assert updated.location == 'Network One'


def test_update_policy_all(event_store, sample_record):
    """Test the 'all' policy also refreshes description and location."""
    reconciler = Reconciler(event_store, update_policy='all')
    reconciler.reconcile([sample_record])

    reconciler.reconcile([replace(sample_record, color='green',
                                  description='Changed', location='Moved')])

    updated = event_store.find_by_identity(sample_record)
    assert (updated.color, updated.description, updated.location) == ('green', 'Changed', 'Moved')


def test_unknown_update_policy(event_store):
    with pytest.raises(ValueError):
        Reconciler(event_store, update_policy='everything')


def test_record_failure_does_not_abort_batch(records):
    """Test a storage error on one record is collected and the rest still run."""
    store = Mock()
    store.find_by_identity.side_effect = [None, client_error(), None]

    result = Reconciler(store).reconcile(records)

    assert result.added == 2
    assert result.updated == 0
    assert len(result.errors) == 1
    assert records[1].title in result.errors[0]
    assert store.insert.call_count == 2


def test_write_failure_is_collected(records):
    store = Mock()
    store.find_by_identity.return_value = None
    store.insert.side_effect = [client_error(), Mock(), Mock()]

    result = Reconciler(store).reconcile(records)

    assert result.added == 2
    assert len(result.errors) == 1


def test_lost_insert_race_falls_back_to_update(sample_record):
    """Test a record inserted by an overlapping pass is updated instead."""
    store = Mock()
    store.find_by_identity.return_value = None
    store.insert.side_effect = DuplicateEventError('exists')

    result = Reconciler(store).reconcile([sample_record])

    assert result == ReconcileResult(added=0, updated=1, errors=[])
    store.update.assert_called_once_with(sample_record, ('color',))


def test_completion_hooks_run_after_batch(event_store, records):
    hook = Mock()
    reconciler = Reconciler(event_store)
    reconciler.add_completion_hook(hook)

    result = reconciler.reconcile(records)

    hook.assert_called_once_with(result)


def test_failing_hook_does_not_fail_batch(event_store, records):
    reconciler = Reconciler(event_store)
    reconciler.add_completion_hook(Mock(side_effect=RuntimeError('hook failed')))

    result = reconciler.reconcile(records)

    assert result.added == 3


def test_empty_batch(event_store):
    result = Reconciler(event_store).reconcile([])

    assert result == ReconcileResult()
