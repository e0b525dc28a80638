"""
Unit tests for project cascade deletion.
"""
from speechtasks.exceptions import StorageFailure

from conftest import BUCKET, seed_task


def _populate(store, blobs):
    """2 tasks, 3 contributions (2 with recordings), 1 validation."""
    seed_task(store, 't1', task_type='asr', status='completed')
    seed_task(store, 't2', task_type='transcription', status='in_progress')

    for cid, task_id, path in [
        ('t1#alice', 't1', 'projects/p1/tasks/t1/alice.wav'),
        ('t1#bob', 't1', 'projects/p1/tasks/t1/bob.wav'),
        ('t2#alice', 't2', None),
    ]:
        row = {'id': cid, 'task_id': task_id, 'user_id': cid.split('#')[1], 'status': 'submitted'}
        if path:
            row['storage_url'] = f"https://{BUCKET}.s3.amazonaws.com/{path}"
            blobs.objects[(BUCKET, path)] = b'audio'
            store.put('file_metadata', {'id': f"f-{cid}", 'task_id': task_id, 'file_path': path})
            store.put('task_files', {'id': f"{task_id}#f-{cid}", 'task_id': task_id, 'file_id': f"f-{cid}"})
        store.put('contributions', row)

    store.put('validations', {'id': 'v1', 'contribution_id': 't1#alice', 'task_id': 't1', 'is_approved': True})
    store.put('task_status_history', {'id': 'h1', 'task_id': 't1', 'to_status': 'completed'})
    # Rows of another project must survive
    seed_task(store, 'other', project_id='p2')


class TestSafelyDelete:
    """Tests for ProjectCascadeDeleter.safely_delete."""

    def test_deletes_everything_and_reports_counts(self, store, blobs, deleter, project):
        _populate(store, blobs)

        result = deleter.safely_delete('p1', 'owner')

        assert result['success'] is True
        assert result['deletedData'] == {
            'validations': 1, 'contributions': 3, 'tasks': 2, 'members': 4, 'files': 2,
        }
        assert store.get('projects', 'p1') is None
        assert store.rows('contributions') == []
        assert store.rows('validations') == []
        assert store.rows('task_files') == []
        assert store.rows('file_metadata') == []
        assert store.rows('task_status_history') == []
        assert store.rows('project_members') == []
        assert [t['id'] for t in store.rows('tasks')] == ['other']
        assert blobs.objects == {}

    def test_only_owner_may_delete(self, store, blobs, deleter, project):
        _populate(store, blobs)

        result = deleter.safely_delete('p1', 'mgr')

        assert result['success'] is False
        assert result['code'] == 'PermissionDenied'
        assert store.get('projects', 'p1')['status'] == 'active'
        assert len(store.rows('contributions')) == 3

    def test_creator_with_lower_membership_may_delete(self, store, blobs, deleter, project):
        store.put('project_members', {'id': 'p1#owner', 'project_id': 'p1', 'user_id': 'owner', 'role': 'reviewer'})
        _populate(store, blobs)

        result = deleter.safely_delete('p1', 'owner')

        assert result['success'] is True
        assert store.get('projects', 'p1') is None

    def test_archived_project_is_locked(self, store, deleter, project):
        store.update('projects', 'p1', {'status': 'archived'})

        result = deleter.safely_delete('p1', 'owner')

        assert result['code'] == 'Conflict'
        assert result['deletedData']['tasks'] == 0

    def test_missing_project(self, deleter):
        assert deleter.safely_delete('nope', 'owner')['code'] == 'NotFound'

    def test_failure_restores_prior_status_and_reports_partial_counts(self, store, blobs, deleter, project):
        _populate(store, blobs)
        store.fail('delete_where', 'tasks')

        result = deleter.safely_delete('p1', 'owner')

        assert result['success'] is False
        assert result['code'] == 'StoreError'
        assert result['deletedData']['validations'] == 1
        assert result['deletedData']['contributions'] == 3
        assert result['deletedData']['tasks'] == 0
        assert result['deletedData']['members'] == 0
        assert store.get('projects', 'p1')['status'] == 'active'
        assert len(store.rows('project_members')) == 4

    def test_blob_failures_do_not_block_deletion(self, store, blobs, deleter, project):
        _populate(store, blobs)
        blobs.remove_error = StorageFailure('access denied')

        result = deleter.safely_delete('p1', 'owner')

        assert result['success'] is True
        assert result['deletedData']['files'] == 0
        assert store.get('projects', 'p1') is None

    def test_lock_lost_to_concurrent_update(self, store, blobs, deleter, project):
        original_get = store.get

        def stale_get(table, record_id):
            row = original_get(table, record_id)
            if table == 'projects':
                store.tables['projects'][record_id]['status'] = 'completed'
            return row

        store.get = stale_get

        result = deleter.safely_delete('p1', 'owner')

        assert result['code'] == 'Conflict'
        assert original_get('projects', 'p1')['status'] == 'completed'
