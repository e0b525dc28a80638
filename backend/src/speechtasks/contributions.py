"""
Contribution lifecycle: who may contribute to a task, submission of new
contributions and resubmission after a rejection.
"""
from typing import Any, Dict, Optional

from .config import config
from .content_rules import validate_contribution
from .exceptions import Conflict, LifecycleError, NotFound, PermissionDenied, ValidationFailed
from .logging import logger
from .models import (
    ContributionStatus, ProjectStatus, TaskStatus, TaskType, contribution_key,
    normalize_contribution_status, normalize_task_status,
)
from .s3_utils import parse_storage_url
from .uploads import build_storage_path
from .utils import failure_from_exception, failure_result, now_iso, success_result

# Statuses a rejected contribution's task can be in while awaiting resubmission
RESUBMITTABLE_TASK_STATES = frozenset([TaskStatus.OPEN, TaskStatus.IN_PROGRESS, TaskStatus.REJECTED])


def _text_of(submitted_data: Optional[Dict[str, Any]]) -> Optional[str]:
    data = submitted_data or {}
    for field in ('text', 'transcription', 'translation'):
        if data.get(field) is not None:
            return data[field]
    return None


class ContributionLifecycleManager:
    """Orchestrates one user's submission against a task."""

    def __init__(self, store, gate, pipeline, coordinator, bucket: str = None):
        self.store = store
        self.gate = gate
        self.pipeline = pipeline
        self.coordinator = coordinator
        self.bucket = bucket or config.MEDIA_BUCKET

    # -------------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------------

    def check_contribution_permission(self, task_id: str, user_id: str, task_type: str = None) -> Dict[str, Any]:
        """
        Decide whether the user may contribute to the task.

        Returns:
            dict: {'allowed': bool, 'reason': str or None}
        """
        try:
            task = self.store.get('tasks', task_id)
            if not task:
                return {'allowed': False, 'reason': f"Task {task_id} not found"}

            if task_type and task.get('type') != task_type:
                return {'allowed': False, 'reason': f"Task is not of type {task_type}"}

            status = normalize_task_status(task.get('status'))
            if status not in TaskStatus.ACCEPTING_CONTRIBUTIONS:
                return {'allowed': False, 'reason': f"Task is not available for contributions (status: {status})"}

            if task.get('assigned_to') and task['assigned_to'] != user_id:
                return {'allowed': False, 'reason': 'Task is assigned to another user'}

            project = self.store.get('projects', task['project_id'])
            if not project or project.get('status') == ProjectStatus.ARCHIVED:
                return {'allowed': False, 'reason': 'Project is not available'}

            if not self.gate.is_member(user_id, project):
                return {'allowed': False, 'reason': 'You are not a member of this project'}

            return {'allowed': True, 'reason': None}

        except LifecycleError as e:
            logger.error(f"Error checking contribution permission for {user_id} on {task_id}: {e}")
            return {'allowed': False, 'reason': e.message}

    def can_contribute(self, task_id: str, user_id: str) -> bool:
        return self.check_contribution_permission(task_id, user_id)['allowed']

    def validate_for_contribution(self, task_id: str) -> Dict[str, Any]:
        """
        Task-level checks: accepting status, contribution cap and no accepted contribution.

        Returns:
            dict: {'valid': bool, 'reason': str or None}
        """
        try:
            task = self.store.get('tasks', task_id)
            if not task:
                return {'valid': False, 'reason': f"Task {task_id} not found"}

            status = normalize_task_status(task.get('status'))
            if status not in TaskStatus.ACCEPTING_CONTRIBUTIONS:
                return {'valid': False, 'reason': f"Task is not available for contributions (status: {status})"}

            max_contributions = task.get('max_contributions')
            if max_contributions:
                count = self.store.count('contributions', {'task_id': task_id})
                if count >= int(max_contributions):
                    return {'valid': False, 'reason': 'Maximum number of contributions reached for this task'}

            if task.get('completed_contribution_id') or self.store.count(
                'contributions',
                {'task_id': task_id, 'status': list(ContributionStatus.ACCEPTED_STATES)}
            ):
                return {'valid': False, 'reason': 'This task has already been completed'}

            return {'valid': True, 'reason': None}

        except LifecycleError as e:
            logger.error(f"Error validating task {task_id} for contribution: {e}")
            return {'valid': False, 'reason': e.message}

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def _check_content(self, task: Dict[str, Any], blob: Optional[bytes],
                       submitted_data: Optional[Dict[str, Any]], content_type: str = None) -> Dict[str, Any]:
        """Run the content rules; raises ValidationFailed on errors and returns the warnings."""
        if task['type'] in TaskType.AUDIO:
            report = validate_contribution(task['type'], blob, {'content_type': content_type})
        else:
            report = validate_contribution(
                task['type'], _text_of(submitted_data),
                {'source_text': task.get('source_text') or (task.get('metadata') or {}).get('source_text')}
            )
        if not report['is_valid']:
            raise ValidationFailed(report['errors'][0], errors=report['errors'])
        return report['warnings']

    @staticmethod
    def _validation_failure(e: ValidationFailed) -> Dict[str, Any]:
        result = failure_from_exception(e)
        result['data'] = {'errors': e.errors}
        return result

    def submit_contribution(
        self,
        task_id: str,
        user_id: str,
        submitted_data: Optional[Dict[str, Any]] = None,
        blob: Optional[bytes] = None,
        content_type: str = None,
        path: str = None
    ) -> Dict[str, Any]:
        """
        Submit a contribution to a task.

        Recordings (asr/tts) are uploaded and recorded through the upload
        pipeline; text contributions are recorded without a blob. A user whose
        own contribution was rejected is routed to resubmission.

        Returns:
            {success, data, error, code}; data carries the contribution, the
            updated task and any content warnings
        """
        try:
            task = self.store.get('tasks', task_id)
            if not task:
                raise NotFound(f"Task {task_id} not found")

            existing = self.store.get('contributions', contribution_key(task_id, user_id))
            if existing and existing.get('status') in ContributionStatus.REJECTED_STATES:
                return self.resubmit_contribution(task_id, user_id, submitted_data, blob, content_type)

            permission = self.check_contribution_permission(task_id, user_id)
            if not permission['allowed']:
                raise PermissionDenied(permission['reason'])

            validity = self.validate_for_contribution(task_id)
            if not validity['valid']:
                raise Conflict(validity['reason'])

            warnings = self._check_content(task, blob, submitted_data, content_type)

        except ValidationFailed as e:
            return self._validation_failure(e)
        except LifecycleError as e:
            logger.info(f"Contribution by {user_id} to task {task_id} refused: {e}")
            return failure_from_exception(e)

        draft = {'task_id': task_id, 'user_id': user_id, 'submitted_data': submitted_data or {}}

        if task['type'] in TaskType.AUDIO:
            path = path or build_storage_path(task['project_id'], task_id, user_id, content_type)
            result = self.pipeline.upload_and_create_contribution(self.bucket, path, blob, draft, content_type)
        else:
            result = self.pipeline.create_contribution(draft)

        if result['success']:
            result['data']['warnings'] = warnings
            logger.info(f"User {user_id} submitted contribution to task {task_id}")
        return result

    def resubmit_contribution(
        self,
        task_id: str,
        user_id: str,
        submitted_data: Optional[Dict[str, Any]] = None,
        blob: Optional[bytes] = None,
        content_type: str = None
    ) -> Dict[str, Any]:
        """
        Replace a rejected contribution's submission in place.

        The previous submission and the reviewer comment are kept in
        `previous_submissions`. The update is conditional on the contribution
        still holding the rejected status that was read; a new recording is
        removed again if anything after its upload fails.
        """
        try:
            task = self.store.get('tasks', task_id)
            if not task:
                raise NotFound(f"Task {task_id} not found")

            contribution = self.store.get('contributions', contribution_key(task_id, user_id))
            if not contribution:
                raise NotFound('No previous contribution to resubmit')
            if contribution.get('user_id') != user_id:
                raise PermissionDenied('You can only resubmit your own contribution')
            if normalize_contribution_status(contribution.get('status')) not in ContributionStatus.REJECTED_STATES:
                raise Conflict('Only rejected contributions can be resubmitted')

            task_status = normalize_task_status(task.get('status'))
            if task_status not in RESUBMITTABLE_TASK_STATES:
                raise Conflict(f"Task is not accepting resubmissions (status: {task_status})")
            if task.get('assigned_to') and task['assigned_to'] != user_id:
                raise Conflict('Task is assigned to another user')

            warnings = self._check_content(task, blob, submitted_data, content_type)

        except ValidationFailed as e:
            return self._validation_failure(e)
        except (LifecycleError, ValueError) as e:
            return failure_from_exception(e)

        upload = None
        if task['type'] in TaskType.AUDIO:
            path = build_storage_path(task['project_id'], task_id, user_id, content_type)
            upload = self.pipeline.upload_with_retry(self.bucket, path, blob, content_type)
            if not upload['success']:
                result = failure_result(
                    f"Upload failed at stage {upload['stage']}: {upload['error']}", 'StorageFailure'
                )
                result['data'] = {'stage': upload['stage']}
                return result

        previous = {
            'submitted_data': contribution.get('submitted_data'),
            'storage_url': contribution.get('storage_url'),
            'file_path': contribution.get('file_path'),
            'status': contribution['status'],
            'reviewer_comment': contribution.get('reviewer_comment'),
            'submitted_at': contribution.get('updated_at') or contribution.get('created_at'),
        }
        values = {
            'status': ContributionStatus.SUBMITTED,
            'submitted_data': submitted_data or {},
            'previous_submissions': list(contribution.get('previous_submissions') or []) + [previous],
            'reviewer_comment': None,
            'updated_at': now_iso(),
        }
        if upload:
            values['storage_url'] = upload['url']
            values['file_path'] = upload['path']

        def body(tx):
            if upload:
                tx.add_compensation(
                    f"remove uploaded blob {upload['path']}",
                    lambda: self.pipeline.blobs.remove(self.bucket, [upload['path']])
                )

            restore = {field: contribution.get(field) for field in values}
            updated = tx.step(
                f"resubmit contribution {contribution['id']}",
                lambda: self.store.update(
                    'contributions', contribution['id'], values, expected={'status': contribution['status']}
                ),
                lambda row: self.store.update(
                    'contributions', contribution['id'], restore, expected={'status': ContributionStatus.SUBMITTED}
                )
            )

            file_row = None
            if upload:
                file_row = self.pipeline.record_file(
                    tx, task_id, contribution['id'], self.bucket,
                    upload['path'], upload['url'], content_type, len(blob)
                )

            updated_task = self.pipeline.claim_task(tx, task, user_id, contribution['id'])
            return {'contribution': updated, 'task': updated_task, 'file': file_row, 'warnings': warnings}

        result = self.coordinator.run_transaction(body)
        if result['success']:
            logger.info(f"User {user_id} resubmitted contribution {contribution['id']}")
        return result

    def get_resubmission_context(self, task_id: str, user_id: str) -> Dict[str, Any]:
        """
        Original submission and latest reviewer feedback for a rejected contribution.
        """
        try:
            contribution = self.store.get('contributions', contribution_key(task_id, user_id))
            if not contribution:
                raise NotFound('No contribution found for this task')

            validations = self.store.select('validations', {'contribution_id': contribution['id']})
            validations.sort(key=lambda v: v.get('created_at', ''))
            rejections = [v for v in validations if not v.get('is_approved')]

            reviewer_comment = contribution.get('reviewer_comment')
            if not reviewer_comment and rejections:
                reviewer_comment = rejections[-1].get('comment')

            playback_url = None
            parsed = parse_storage_url(contribution.get('storage_url'))
            if parsed:
                playback_url = self.pipeline.blobs.generate_presigned_url(parsed[0], parsed[1])

            status = contribution.get('status')
            return success_result({
                'contribution': contribution,
                'original_submission': contribution.get('submitted_data'),
                'storage_url': contribution.get('storage_url'),
                'playback_url': playback_url,
                'reviewer_comment': reviewer_comment,
                'previous_submissions': contribution.get('previous_submissions') or [],
                'can_resubmit': status in ContributionStatus.REJECTED_STATES,
            })

        except LifecycleError as e:
            return failure_from_exception(e)
