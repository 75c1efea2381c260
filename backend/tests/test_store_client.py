import uuid
from datetime import datetime

import pytest

from orderflow.services.store_client import StoreError, StoreErrorCode

from conftest import make_recipient


def job_payload(workflow, recipient_id, **overrides):
    payload = {
        'job_id': str(uuid.uuid4()),
        'order_id': 'ORD-TEST',
        'recipient_id': recipient_id,
        'sequence_id': workflow['sequence_id'],
        'step_id': workflow['step_id'],
        'status': 'unscheduled',
        'due_at': datetime(2026, 3, 5, 9, 0),
    }
    payload.update(overrides)
    return payload


class TestStoreClientErrors:
    def test_insert_returns_row_with_server_defaults(self, store, workflow):
        recipient_id = make_recipient(store, 'a@example.com')
        row = store.insert('dispatch_jobs', job_payload(workflow, recipient_id))
        assert row['recipient_id'] == recipient_id
        assert row['attempt_count'] == 0
        assert row['created_at'] is not None

    def test_unknown_column_detected_before_execution(self, store, workflow):
        recipient_id = make_recipient(store, 'a@example.com')
        with pytest.raises(StoreError) as exc:
            store.insert('dispatch_jobs', job_payload(workflow, recipient_id, legacy_priority=3))
        assert exc.value.code == StoreErrorCode.UNKNOWN_COLUMN
        assert exc.value.column == 'legacy_priority'
        assert store.select('dispatch_jobs') == []

    def test_not_null_violation_names_column(self, store, workflow):
        recipient_id = make_recipient(store, 'a@example.com')
        payload = job_payload(workflow, recipient_id)
        payload.pop('due_at')
        with pytest.raises(StoreError) as exc:
            store.insert('dispatch_jobs', payload)
        assert exc.value.code == StoreErrorCode.NOT_NULL_VIOLATION
        assert exc.value.column == 'due_at'

    def test_unique_violation_names_columns(self, store, workflow):
        recipient_id = make_recipient(store, 'a@example.com')
        store.insert('dispatch_jobs', job_payload(workflow, recipient_id))
        with pytest.raises(StoreError) as exc:
            store.insert('dispatch_jobs', job_payload(workflow, recipient_id))
        assert exc.value.code == StoreErrorCode.UNIQUE_VIOLATION
        assert set(exc.value.columns) == {'recipient_id', 'step_id'}

    def test_foreign_key_violation_attributed_to_column(self, store, workflow):
        missing = str(uuid.uuid4())
        with pytest.raises(StoreError) as exc:
            store.insert('dispatch_jobs', job_payload(workflow, missing))
        err = exc.value
        assert err.code == StoreErrorCode.FOREIGN_KEY_VIOLATION
        assert err.column == 'recipient_id'
        assert err.value == missing
        assert err.referenced_table == 'recipients'
        assert err.referenced_column == 'recipient_id'

    def test_unknown_table(self, store):
        with pytest.raises(StoreError) as exc:
            store.select('no_such_table')
        assert exc.value.code == StoreErrorCode.UNKNOWN_TABLE
        assert store.has_table('no_such_table') is False


class TestStoreClientOperations:
    def test_update_reselects_changed_filter_columns(self, store, workflow):
        recipient_id = make_recipient(store, 'a@example.com')
        row = store.insert('dispatch_jobs', job_payload(workflow, recipient_id))
        updated = store.update('dispatch_jobs', {'status': 'queued'}, {'job_id': row['job_id'], 'status': 'unscheduled'})
        assert len(updated) == 1
        assert updated[0]['status'] == 'queued'

    def test_select_with_in_filter_and_ordering(self, store):
        make_recipient(store, 'b@example.com')
        make_recipient(store, 'a@example.com')
        rows = store.select('recipients', {'email_normalized': ['a@example.com', 'b@example.com']},
                            order_by=['email_normalized'])
        assert [r['email_normalized'] for r in rows] == ['a@example.com', 'b@example.com']

    def test_delete_returns_rowcount(self, store):
        make_recipient(store, 'a@example.com')
        assert store.delete('recipients', {'email_normalized': 'a@example.com'}) == 1
        assert store.delete('recipients', {'email_normalized': 'a@example.com'}) == 0
