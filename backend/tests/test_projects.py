"""
Unit tests for project operations: creation, settings, members and metrics.
"""
from speechtasks.models import member_key

from conftest import seed_task


class TestCreateProject:

    def test_creates_project_and_owner_membership(self, store, project_service):
        result = project_service.create_project_with_owner(
            {'name': 'Kikuyu prompts', 'source_language': 'ki', 'created_by': 'mallory'}, 'carol'
        )

        assert result['success'] is True
        project = result['data']
        assert project['created_by'] == 'carol'
        assert project['status'] == 'draft'
        assert store.get('project_members', member_key(project['id'], 'carol'))['role'] == 'owner'

    def test_name_required(self, store, project_service):
        result = project_service.create_project_with_owner({'name': '  '}, 'carol')
        assert result['code'] == 'ValidationFailed'
        assert store.rows('projects') == []

    def test_membership_failure_removes_project(self, store, project_service):
        store.fail('insert', 'project_members')

        result = project_service.create_project_with_owner({'name': 'Kikuyu prompts'}, 'carol')

        assert result['success'] is False
        assert store.rows('projects') == []

    def test_cannot_create_archived(self, project_service):
        result = project_service.create_project_with_owner({'name': 'x', 'status': 'archived'}, 'carol')
        assert result['code'] == 'ValidationFailed'


class TestUpdateProjectSettings:

    def test_manager_updates_settings(self, store, project_service, project):
        result = project_service.update_project_settings('p1', {'name': 'Renamed', 'id': 'hijack'}, 'mgr')

        assert result['success'] is True
        row = store.get('projects', 'p1')
        assert row['name'] == 'Renamed'
        assert row['updated_by'] == 'mgr'
        assert store.get('projects', 'hijack') is None

    def test_contributor_cannot_update(self, project_service, project):
        assert project_service.update_project_settings('p1', {'name': 'x'}, 'alice')['code'] == 'PermissionDenied'

    def test_archiving_is_not_a_setting(self, project_service, project):
        result = project_service.update_project_settings('p1', {'status': 'archived'}, 'owner')
        assert result['code'] == 'ValidationFailed'

    def test_project_being_deleted_is_not_updated(self, store, project_service, project):
        store.update('projects', 'p1', {'status': 'archived'})

        result = project_service.update_project_settings('p1', {'name': 'x'}, 'mgr')

        assert result['success'] is False
        assert store.get('projects', 'p1')['name'] == 'Swahili read speech'


class TestMembers:

    def test_add_member(self, store, project_service, project):
        result = project_service.add_member('p1', 'dave', 'contributor', 'mgr')

        assert result['success'] is True
        assert store.get('project_members', 'p1#dave')['added_by'] == 'mgr'

    def test_duplicate_member(self, project_service, project):
        result = project_service.add_member('p1', 'alice', 'reviewer', 'mgr')
        assert result['code'] == 'Conflict'
        assert result['error'] == 'User is already a member of this project'

    def test_only_owner_adds_owner(self, project_service, project):
        assert project_service.add_member('p1', 'dave', 'owner', 'mgr')['code'] == 'PermissionDenied'
        assert project_service.add_member('p1', 'dave', 'owner', 'owner')['success'] is True

    def test_invalid_role(self, project_service, project):
        assert project_service.add_member('p1', 'dave', 'emperor', 'mgr')['code'] == 'ValidationFailed'

    def test_remove_member(self, store, project_service, project):
        assert project_service.remove_member('p1', 'bob', 'mgr')['success'] is True
        assert store.get('project_members', 'p1#bob') is None
        assert project_service.remove_member('p1', 'bob', 'mgr')['code'] == 'NotFound'

    def test_creator_cannot_be_removed(self, project_service, project):
        assert project_service.remove_member('p1', 'owner', 'owner')['code'] == 'PermissionDenied'

    def test_list_members(self, project_service, project):
        assert {m['user_id'] for m in project_service.list_members('p1')} == {'alice', 'bob', 'rev', 'mgr'}


class TestMetrics:

    def test_counts(self, store, project_service, project):
        seed_task(store, 't1', status='completed')
        seed_task(store, 't2', status='verified')
        seed_task(store, 't3')
        store.put('contributions', {'id': 't1#alice', 'task_id': 't1', 'status': 'validated'})
        store.put('contributions', {'id': 't2#bob', 'task_id': 't2', 'status': 'approved_for_transcription'})
        store.put('contributions', {'id': 't3#alice', 'task_id': 't3', 'status': 'submitted'})

        result = project_service.get_project_with_metrics('p1')

        assert result['data']['metrics'] == {
            'tasks': 3, 'completedTasks': 2, 'contributions': 3, 'validContributions': 2, 'members': 4,
        }

    def test_missing_project(self, project_service):
        assert project_service.get_project_with_metrics('nope')['code'] == 'NotFound'
