"""
Unit tests for task integrity checks and repair.
"""
import pytest

from speechtasks.exceptions import IntegrityDrift
from speechtasks.integrity import check_status_drift, get_required_fields, validate_task_completeness

from conftest import seed_task


def _history(store, task_id, *moves):
    for i, (from_status, to_status) in enumerate(moves):
        store.put('task_status_history', {
            'id': f"{task_id}-h{i}", 'task_id': task_id, 'from_status': from_status,
            'to_status': to_status, 'changed_at': f"2024-01-0{i + 1}T00:00:00+00:00",
        })


class TestCompleteness:

    def test_required_fields_by_type_and_status(self):
        assert get_required_fields('tts') == ['title', 'description', 'source_text', 'target_language']
        assert 'completed_contribution_id' in get_required_fields('asr', 'completed')

    def test_fields_may_live_in_content(self):
        task = {
            'type': 'tts', 'status': 'open', 'title': 'Read', 'description': 'Read the text',
            'content': {'source_text': 'Habari', 'target_language': 'sw'},
        }
        assert validate_task_completeness(task) == {'is_valid': True, 'missing_fields': []}

    def test_missing_fields(self):
        result = validate_task_completeness({'type': 'asr', 'status': 'in_progress', 'title': ''})
        assert result['missing_fields'] == [
            'title', 'description', 'source_language', 'audio_duration', 'assigned_to',
        ]

    def test_drift_detection(self):
        history = [{'to_status': 'completed', 'changed_at': '1'}, {'to_status': 'verified', 'changed_at': '2'}]
        with pytest.raises(IntegrityDrift):
            check_status_drift({'id': 't1', 'status': 'completed'}, history)
        check_status_drift({'id': 't1', 'status': 'verified'}, history)


class TestEnsureIntegrity:
    """Tests for IntegrityChecker.ensure_integrity."""

    def test_status_is_repaired_from_history(self, store, checker, project):
        seed_task(store, 't1', status='completed')
        _history(store, 't1', (None, 'open'), ('open', 'completed'), ('completed', 'verified'))

        result = checker.ensure_integrity('t1')

        assert result['success'] is True
        assert result['repaired'] is True
        assert result['message'] == 'Task data inconsistencies detected and repaired'
        assert store.get('tasks', 't1')['status'] == 'verified'

    def test_consistent_task_is_left_alone(self, store, checker, project):
        seed_task(store, 't1', status='open')
        _history(store, 't1', (None, 'draft'), ('draft', 'open'))

        result = checker.ensure_integrity('t1')

        assert result['repaired'] is False
        assert result['message'] == 'Task data integrity verified'

    def test_task_without_history_is_left_alone(self, store, checker, project):
        seed_task(store, 't1', status='open')
        assert checker.ensure_integrity('t1')['repaired'] is False

    def test_dangling_file_links_removed(self, store, checker, project):
        seed_task(store, 't1')
        store.put('file_metadata', {'id': 'f1', 'file_path': 'a.wav'})
        store.put('task_files', {'id': 't1#f1', 'task_id': 't1', 'file_id': 'f1'})
        store.put('task_files', {'id': 't1#f2', 'task_id': 't1', 'file_id': 'f2'})

        result = checker.ensure_integrity('t1')

        assert result['repaired'] is True
        assert [row['id'] for row in store.rows('task_files')] == ['t1#f1']

    def test_missing_fields_reported_not_invented(self, store, checker, project):
        seed_task(store, 't1', task_type='asr', title='Read aloud')

        result = checker.ensure_integrity('t1')

        assert result['missing_fields'] == ['description', 'source_language', 'audio_duration']
        assert 'description' not in store.get('tasks', 't1')

    def test_missing_task(self, checker):
        result = checker.ensure_integrity('nope')
        assert result['success'] is False
        assert result['message'] == 'Task not found'

    def test_concurrent_change_is_not_overwritten(self, store, checker, project):
        seed_task(store, 't1', status='completed')
        _history(store, 't1', ('completed', 'verified'))
        original_update = store.update

        def racing_update(table, record_id, values, expected=None):
            original_update('tasks', 't1', {'status': 'archived'})
            return original_update(table, record_id, values, expected)

        store.update = racing_update

        result = checker.ensure_integrity('t1')

        assert result['success'] is False
        assert store.get('tasks', 't1')['status'] == 'archived'


class TestBatchRevalidate:

    def test_counts(self, store, checker, project):
        seed_task(store, 't1', status='completed')
        seed_task(store, 't2', status='open')
        seed_task(store, 't3', status='open')
        _history(store, 't1', ('completed', 'verified'))

        result = checker.batch_revalidate_project_tasks('p1')

        assert result == {
            'success': True,
            'repairedCount': 1,
            'totalChecked': 3,
            'failedCount': 0,
            'message': 'Checked 3 tasks, repaired 1',
        }

    def test_store_error(self, store, checker):
        store.fail('select', 'tasks')

        result = checker.batch_revalidate_project_tasks('p1')

        assert result['success'] is False
        assert result['message'].startswith('Error retrieving tasks:')
