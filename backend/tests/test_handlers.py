"""
Tests for the Lambda handlers: authentication, request parsing and the
mapping of result objects onto HTTP responses.
"""
import base64
import json
from unittest.mock import MagicMock, patch

from handlers.contributions import manage_upload_session, submit_contribution
from handlers.maintenance import ensure_integrity
from handlers.projects import delete_project, manage_members
from handlers.tasks import create_task_batch, update_task_status
from handlers.validations import review_contribution

from conftest import seed_task


def _event(user_id='alice', body=None, path=None, method='POST', **extra):
    event = {
        'httpMethod': method,
        'pathParameters': path or {},
        'body': json.dumps(body) if body is not None else None,
    }
    if user_id:
        event['requestContext'] = {'authorizer': {'claims': {'sub': user_id}}}
    event.update(extra)
    return event


def _body(response):
    return json.loads(response['body'])


class TestSubmitContributionHandler:

    def test_requires_authentication(self):
        response = submit_contribution.handler(_event(user_id=None, path={'taskId': 't1'}), None)
        assert response['statusCode'] == 401

    def test_rejects_bad_base64(self):
        response = submit_contribution.handler(
            _event(body={'audio': '***not base64***'}, path={'taskId': 't1'}), None
        )
        assert response['statusCode'] == 400

    def test_recording_is_created(self, store, manager, project, recording):
        seed_task(store, 't1', task_type='asr')
        event = _event(
            body={'audio': base64.b64encode(recording).decode(), 'contentType': 'audio/wav'},
            path={'taskId': 't1'}
        )

        with patch.object(submit_contribution, 'get_lifecycle_manager', return_value=manager):
            response = submit_contribution.handler(event, None)

        assert response['statusCode'] == 201
        assert _body(response)['data']['contribution']['id'] == 't1#alice'
        assert response['headers']['Access-Control-Allow-Origin'] == '*'

    def test_validation_failure_maps_to_422(self, store, manager, project):
        seed_task(store, 't1', task_type='transcription')
        event = _event(body={'submittedData': {'text': ''}}, path={'taskId': 't1'})

        with patch.object(submit_contribution, 'get_lifecycle_manager', return_value=manager):
            response = submit_contribution.handler(event, None)

        assert response['statusCode'] == 422
        assert _body(response)['code'] == 'ValidationFailed'

    def test_unexpected_error_is_500(self):
        broken = MagicMock()
        broken.submit_contribution.side_effect = RuntimeError('boom')

        with patch.object(submit_contribution, 'get_lifecycle_manager', return_value=broken):
            response = submit_contribution.handler(_event(body={}, path={'taskId': 't1'}), None)

        assert response['statusCode'] == 500
        assert _body(response)['reason'] == 'boom'


class TestReviewHandler:

    def test_missing_decision(self):
        response = review_contribution.handler(_event('rev', body={}, path={'contributionId': 'c1'}), None)
        assert response['statusCode'] == 400

    def test_self_review_is_403(self, store, workflow, project):
        seed_task(store, 't1', status='in_progress', assigned_to='rev')
        store.put('contributions', {'id': 't1#rev', 'task_id': 't1', 'user_id': 'rev', 'status': 'submitted'})

        with patch.object(review_contribution, 'get_validation_workflow', return_value=workflow):
            response = review_contribution.handler(
                _event('rev', body={'approve': True}, path={'contributionId': 't1#rev'}), None
            )

        assert response['statusCode'] == 403
        assert _body(response)['error'] == 'You cannot validate your own contribution'


class TestTaskHandlers:

    def test_batch_partial_success_is_207(self, task_service, project):
        event = _event('mgr', body={'tasks': [{'type': 'asr'}, {'type': 'dance'}]}, path={'projectId': 'p1'})

        with patch.object(create_task_batch, 'get_task_service', return_value=task_service):
            response = create_task_batch.handler(event, None)

        assert response['statusCode'] == 207
        body = _body(response)
        assert body['successCount'] == 1
        assert body['message'] == 'Created 1 tasks'

    def test_batch_all_failed_is_400(self, task_service, project):
        event = _event('alice', body={'tasks': [{'type': 'asr'}]}, path={'projectId': 'p1'})

        with patch.object(create_task_batch, 'get_task_service', return_value=task_service):
            response = create_task_batch.handler(event, None)

        assert response['statusCode'] == 400

    def test_empty_batch(self):
        assert create_task_batch.handler(_event('mgr', body={'tasks': []}), None)['statusCode'] == 400

    def test_invalid_transition_is_400(self, store, task_service, project):
        seed_task(store, 't1')

        with patch.object(update_task_status, 'get_task_service', return_value=task_service):
            response = update_task_status.handler(
                _event('mgr', body={'status': 'verified'}, path={'taskId': 't1'}, method='PUT'), None
            )

        assert response['statusCode'] == 400
        assert _body(response)['code'] == 'InvalidTransition'

    def test_verification_uses_validation(self):
        service = MagicMock()
        service.mark_task_verified.return_value = {'success': True, 'data': {}, 'error': None, 'code': None}

        with patch.object(update_task_status, 'get_task_service', return_value=service):
            response = update_task_status.handler(
                _event('rev', body={'status': 'verified', 'validationId': 'v1'}, path={'taskId': 't1'}), None
            )

        assert response['statusCode'] == 200
        service.mark_task_verified.assert_called_once_with('t1', 'v1', 'rev')


class TestProjectHandlers:

    def test_delete_by_non_owner_is_403(self, deleter, project):
        with patch.object(delete_project, 'get_cascade_deleter', return_value=deleter):
            response = delete_project.handler(_event('mgr', path={'projectId': 'p1'}, method='DELETE'), None)

        assert response['statusCode'] == 403
        assert _body(response)['deletedData']['tasks'] == 0

    def test_members_listing_requires_view(self, store, gate, project_service, project):
        with patch.object(manage_members, 'get_project_service', return_value=project_service), \
                patch.object(manage_members, 'get_record_store', return_value=store), \
                patch.object(manage_members, 'get_permission_gate', return_value=gate):
            ok = manage_members.handler(_event('alice', path={'projectId': 'p1'}, method='GET'), None)
            denied = manage_members.handler(_event('stranger', path={'projectId': 'p1'}, method='GET'), None)

        assert ok['statusCode'] == 200
        assert len(_body(ok)['members']) == 4
        assert denied['statusCode'] == 403

    def test_add_member_conflict_is_409(self, project_service, project):
        with patch.object(manage_members, 'get_project_service', return_value=project_service):
            response = manage_members.handler(
                _event('mgr', body={'userId': 'alice', 'role': 'reviewer'}, path={'projectId': 'p1'}), None
            )

        assert response['statusCode'] == 409


class TestUploadSessionHandler:

    def test_session_lifecycle(self, store, sessions, project, recording):
        seed_task(store, 't1', status='in_progress', assigned_to='alice')

        with patch.object(manage_upload_session, 'get_upload_sessions', return_value=sessions):
            created = manage_upload_session.handler(_event(body={'metadata': {'purpose': 'batch'}}), None)
            session_id = _body(created)['sessionId']

            uploaded = manage_upload_session.handler(_event(
                body={'filename': 'a.wav', 'contentType': 'audio/wav',
                      'file': base64.b64encode(recording).decode()},
                path={'sessionId': session_id, 'action': 'files'}
            ), None)
            foreign = manage_upload_session.handler(
                _event('bob', path={'sessionId': session_id}, method='GET'), None
            )
            committed = manage_upload_session.handler(_event(
                body={'taskId': 't1'}, path={'sessionId': session_id, 'action': 'commit'}
            ), None)

        assert created['statusCode'] == 201
        assert uploaded['statusCode'] == 201
        assert _body(uploaded)['path'].startswith(f"sessions/{session_id}/")
        assert foreign['statusCode'] == 404
        assert committed['statusCode'] == 200
        assert len(store.rows('task_files')) == 1

    def test_commit_to_someone_elses_task_is_403(self, store, sessions, project, recording):
        seed_task(store, 't1', status='in_progress', assigned_to='bob')

        with patch.object(manage_upload_session, 'get_upload_sessions', return_value=sessions):
            created = manage_upload_session.handler(_event(body={}), None)
            session_id = _body(created)['sessionId']
            committed = manage_upload_session.handler(_event(
                body={'taskId': 't1'}, path={'sessionId': session_id, 'action': 'commit'}
            ), None)

        assert committed['statusCode'] == 403
        assert store.rows('task_files') == []


class TestEnsureIntegrityHandler:

    def test_scheduled_project_revalidation(self, store, checker, project):
        seed_task(store, 't1', status='completed')
        store.put('task_status_history', {'id': 'h1', 'task_id': 't1', 'to_status': 'verified',
                                          'changed_at': '2024-01-02'})

        with patch.object(ensure_integrity, 'get_record_store', return_value=store), \
                patch.object(ensure_integrity, 'get_integrity_checker', return_value=checker):
            response = ensure_integrity.handler({'projectId': 'p1'}, None)

        assert response['statusCode'] == 200
        assert _body(response)['repairedCount'] == 1

    def test_contributor_cannot_repair_task(self, store, gate, checker, project):
        seed_task(store, 't1')

        with patch.object(ensure_integrity, 'get_record_store', return_value=store), \
                patch.object(ensure_integrity, 'get_integrity_checker', return_value=checker), \
                patch.object(ensure_integrity, 'get_permission_gate', return_value=gate):
            response = ensure_integrity.handler(_event('alice', path={'taskId': 't1'}), None)

        assert response['statusCode'] == 403
