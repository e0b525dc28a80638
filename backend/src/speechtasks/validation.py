"""
Validation workflow: reviewer approval and rejection of contributions.

Approving a contribution claims the task's completed_contribution_id with a
conditional update, so at most one contribution per task is ever accepted.
Approved recordings (asr/tts) spawn one transcription task whose id is derived
from the recording's contribution id; re-approval finds it instead of
creating another.

Rejection sends the task back to in_progress for the same contributor, who
can then resubmit (see contributions.resubmit_contribution).
"""
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from .config import config
from .exceptions import Conflict, InvalidTransition, LifecycleError, NotFound, PermissionDenied, ValidationFailed
from .logging import logger
from .models import (
    ContributionStatus, TaskStatus, TaskType, derived_task_key, normalize_contribution_status,
    normalize_task_status,
)
from .tasks import record_status_change, transition_task
from .utils import batch_result, failure_from_exception, now_iso, success_result


class ValidationWorkflow:
    """Approve/reject contributions and cascade the result onto their task."""

    def __init__(self, store, gate, coordinator, max_workers: int = None):
        self.store = store
        self.gate = gate
        self.coordinator = coordinator
        self.max_workers = max_workers or config.BATCH_MAX_WORKERS

    # -------------------------------------------------------------------------
    # Shared steps
    # -------------------------------------------------------------------------

    def _load(self, contribution_id: str):
        contribution = self.store.get('contributions', contribution_id)
        if not contribution:
            raise NotFound(f"Contribution {contribution_id} not found")
        task = self.store.get('tasks', contribution['task_id'])
        if not task:
            raise NotFound(f"Task {contribution['task_id']} not found")
        return contribution, task

    def _check_reviewer(self, contribution: Dict[str, Any], task: Dict[str, Any], reviewer_id: str) -> None:
        if not reviewer_id:
            raise PermissionDenied('A reviewer is required')
        if contribution.get('user_id') == reviewer_id:
            raise PermissionDenied('You cannot validate your own contribution')
        if not self.gate.can_review(reviewer_id, task):
            raise PermissionDenied('You do not have permission to review contributions for this project')

    def _insert_validation(self, tx, contribution: Dict[str, Any], reviewer_id: str, is_approved: bool,
                           comment: Optional[str], rating=None) -> Dict[str, Any]:
        validation = {
            'id': str(uuid.uuid4()),
            'contribution_id': contribution['id'],
            'task_id': contribution['task_id'],
            'validator_id': reviewer_id,
            'is_approved': is_approved,
            'comment': comment or '',
            'created_at': now_iso(),
        }
        if rating is not None:
            validation['rating'] = rating
        return tx.step(
            f"insert validation for {contribution['id']}",
            lambda: self.store.insert('validations', validation),
            lambda row: self.store.delete('validations', row['id'])
        )

    def _set_contribution_status(self, tx, contribution: Dict[str, Any], status: str,
                                 reviewer_id: str, comment: Optional[str]) -> Dict[str, Any]:
        values = {
            'status': status,
            'reviewed_by': reviewer_id,
            'reviewed_at': now_iso(),
            'reviewer_comment': comment,
            'updated_at': now_iso(),
        }
        restore = {field: contribution.get(field) for field in values}
        return tx.step(
            f"set contribution {contribution['id']} to {status}",
            lambda: self.store.update(
                'contributions', contribution['id'], values, expected={'status': contribution['status']}
            ),
            lambda row: self.store.update('contributions', contribution['id'], restore, expected={'status': status})
        )

    # -------------------------------------------------------------------------
    # Approve
    # -------------------------------------------------------------------------

    def _spawn_transcription_task(self, tx, task: Dict[str, Any], contribution: Dict[str, Any],
                                  reviewer_id: str) -> Dict[str, Any]:
        """Create the transcription task for an approved recording, once."""
        derived_id = derived_task_key(contribution['id'])
        existing = self.store.get('tasks', derived_id)
        if existing:
            return existing

        content = task.get('content') or {}
        metadata = task.get('metadata') or {}
        original_text = (
            content.get('text_prompt') or task.get('source_text') or metadata.get('text_prompt') or ''
        )
        timestamp = now_iso()
        derived = {
            'id': derived_id,
            'project_id': task['project_id'],
            'type': TaskType.TRANSCRIPTION,
            'status': TaskStatus.OPEN,
            'priority': task.get('priority', 0),
            'title': f"Transcribe: {task.get('title') or task['id']}",
            'source_language': task.get('source_language'),
            'source_contribution_id': contribution['id'],
            'source_task_id': task['id'],
            'content': {
                'task_title': task.get('title'),
                'audio_source': contribution.get('storage_url'),
                'source_contribution_id': contribution['id'],
                'original_text': original_text,
            },
            'metadata': {},
            'created_by': reviewer_id,
            'created_at': timestamp,
            'updated_at': timestamp,
            'updated_by': reviewer_id,
        }

        try:
            tx.step(
                f"create transcription task {derived_id}",
                lambda: self.store.insert('tasks', derived),
                lambda row: self.store.delete('tasks', row['id'])
            )
        except Conflict:
            # A concurrent approval created it first
            return self.store.get('tasks', derived_id)

        tx.step(
            f"record creation of {derived_id}",
            lambda: record_status_change(
                self.store, derived_id, None, TaskStatus.OPEN, reviewer_id,
                f"Created from approved recording {contribution['id']}"
            ),
            lambda entry: self.store.delete('task_status_history', entry['id'])
        )
        logger.info(f"Spawned transcription task {derived_id} from contribution {contribution['id']}")
        return derived

    def approve(self, contribution_id: str, reviewer_id: str, comment: str = None, rating=None) -> Dict[str, Any]:
        """
        Approve a contribution.

        Writes a Validation, moves the contribution to validated (or
        approved_for_transcription for recordings) and completes the task.
        Approving an already accepted contribution only records the new
        Validation and makes sure the derived transcription task exists.
        """
        try:
            contribution, task = self._load(contribution_id)
            self._check_reviewer(contribution, task, reviewer_id)

            status = normalize_contribution_status(contribution.get('status'))
            already_accepted = status in ContributionStatus.ACCEPTED_STATES
            if not already_accepted and status not in ContributionStatus.REVIEWABLE:
                raise Conflict(f"Contribution cannot be approved from status {status}")

            claimed = task.get('completed_contribution_id')
            if claimed and claimed != contribution_id:
                raise Conflict('This task already has an accepted contribution')

        except (LifecycleError, ValueError) as e:
            logger.info(f"Approval of {contribution_id} by {reviewer_id} refused: {e}")
            return failure_from_exception(e)

        is_recording = task.get('type') in TaskType.AUDIO
        target = ContributionStatus.APPROVED_FOR_TRANSCRIPTION if is_recording else ContributionStatus.VALIDATED

        def body(tx):
            validation = self._insert_validation(tx, contribution, reviewer_id, True, comment, rating)

            updated_contribution = contribution
            updated_task = task
            if not already_accepted:
                updated_contribution = self._set_contribution_status(tx, contribution, target, reviewer_id, comment)
                updated_task = transition_task(
                    self.store, task, TaskStatus.COMPLETED, reviewer_id,
                    notes=f"Contribution {contribution_id} approved",
                    values={'completed_contribution_id': contribution_id, 'completed_at': now_iso()},
                    expected={'completed_contribution_id': None},
                    tx=tx,
                    validation_id=validation['id']
                )

            derived = None
            if is_recording:
                derived = self._spawn_transcription_task(tx, task, contribution, reviewer_id)

            return {
                'validation': validation,
                'contribution': updated_contribution,
                'task': updated_task,
                'derived_task': derived,
                'already_approved': already_accepted,
            }

        result = self.coordinator.run_transaction(body)
        if result['success']:
            logger.info(f"Contribution {contribution_id} approved by {reviewer_id}")
        return result

    # -------------------------------------------------------------------------
    # Reject
    # -------------------------------------------------------------------------

    def _reopen_task(self, tx, task: Dict[str, Any], contribution: Dict[str, Any], reviewer_id: str,
                     reason: str) -> Dict[str, Any]:
        """Put the task back in progress for the contributor of a rejected contribution."""
        status = normalize_task_status(task.get('status'))
        contributor = contribution['user_id']
        notes = f"Contribution {contribution['id']} rejected: {reason}"

        if status == TaskStatus.COMPLETED:
            task = transition_task(
                self.store, task, TaskStatus.REJECTED, reviewer_id, notes=notes,
                values={'completed_contribution_id': None},
                expected={'completed_contribution_id': task.get('completed_contribution_id')},
                tx=tx
            )
            status = TaskStatus.REJECTED

        if status == TaskStatus.OPEN:
            return transition_task(
                self.store, task, TaskStatus.IN_PROGRESS, reviewer_id, notes=notes,
                values={'assigned_to': contributor}, expected={'assigned_to': None}, tx=tx
            )
        if status in (TaskStatus.IN_PROGRESS, TaskStatus.REJECTED):
            return transition_task(
                self.store, task, TaskStatus.IN_PROGRESS, reviewer_id, notes=notes,
                values={'current_contribution_id': contribution['id']},
                expected={'assigned_to': task.get('assigned_to')}, tx=tx
            )
        raise InvalidTransition(f"Cannot reopen a task in status {status}")

    def reject(self, contribution_id: str, reviewer_id: str, reason: str, rating=None) -> Dict[str, Any]:
        """
        Reject a contribution with a reason shown to the contributor.

        Recordings become rejected_audio, everything else rejected. A task
        that had already been completed with this contribution goes through
        rejected back to in_progress and loses its completed_contribution_id.
        """
        try:
            if not reason or not str(reason).strip():
                raise ValidationFailed('A rejection reason is required')

            contribution, task = self._load(contribution_id)
            self._check_reviewer(contribution, task, reviewer_id)

            status = normalize_contribution_status(contribution.get('status'))
            if status in ContributionStatus.REJECTED_STATES:
                raise Conflict('Contribution has already been rejected')

            claimed = task.get('completed_contribution_id')
            if claimed and claimed != contribution_id:
                raise Conflict('Another contribution has already been accepted for this task')

        except (LifecycleError, ValueError) as e:
            logger.info(f"Rejection of {contribution_id} by {reviewer_id} refused: {e}")
            return failure_from_exception(e)

        target = (
            ContributionStatus.REJECTED_AUDIO if task.get('type') in TaskType.AUDIO
            else ContributionStatus.REJECTED
        )

        def body(tx):
            validation = self._insert_validation(tx, contribution, reviewer_id, False, reason, rating)
            updated_contribution = self._set_contribution_status(tx, contribution, target, reviewer_id, reason)
            updated_task = self._reopen_task(tx, task, contribution, reviewer_id, reason)
            return {'validation': validation, 'contribution': updated_contribution, 'task': updated_task}

        result = self.coordinator.run_transaction(body)
        if result['success']:
            logger.info(f"Contribution {contribution_id} rejected by {reviewer_id}")
        return result

    # -------------------------------------------------------------------------
    # Dispatch and batches
    # -------------------------------------------------------------------------

    def review(self, contribution_id: str, reviewer_id: str, is_approved: bool,
               comment: str = None, rating=None) -> Dict[str, Any]:
        if is_approved:
            return self.approve(contribution_id, reviewer_id, comment, rating)
        return self.reject(contribution_id, reviewer_id, comment, rating)

    def batch_review(self, decisions: List[Dict[str, Any]], reviewer_id: str) -> Dict[str, Any]:
        """
        Apply many review decisions independently.

        Args:
            decisions: [{'contribution_id', 'is_approved', 'comment', 'rating'}]
            reviewer_id: Reviewer making all decisions

        Returns:
            {successCount, failedCount, errors[], results{}}
        """
        def review_one(decision):
            contribution_id = decision.get('contribution_id')
            if not contribution_id:
                return {'id': None, 'success': False, 'error': 'contribution_id is required'}
            result = self.review(
                contribution_id, reviewer_id, bool(decision.get('is_approved')),
                decision.get('comment'), decision.get('rating')
            )
            return {'id': contribution_id, 'success': result['success'], 'error': result['error']}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            outcomes = list(executor.map(review_one, decisions))

        summary = batch_result(outcomes)
        logger.info(
            f"Batch review by {reviewer_id}: {summary['successCount']} succeeded, "
            f"{summary['failedCount']} failed"
        )
        return summary

    def get_review_queue(self, reviewer_id: str, project_id: str = None, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Contributions awaiting review that this reviewer may decide on,
        oldest first. The reviewer's own contributions are excluded.
        """
        pending = [
            c for c in self.store.select('contributions', {'status': list(ContributionStatus.REVIEWABLE)})
            if c.get('user_id') != reviewer_id
        ]
        if not pending:
            return []

        filters = {'id': list({c['task_id'] for c in pending})}
        if project_id:
            filters['project_id'] = project_id
        tasks = {t['id']: t for t in self.store.select('tasks', filters)}

        allowed = {}
        queue = []
        for contribution in pending:
            task = tasks.get(contribution['task_id'])
            if not task:
                continue
            if task['project_id'] not in allowed:
                allowed[task['project_id']] = self.gate.can_review(reviewer_id, task)
            if allowed[task['project_id']]:
                queue.append({'contribution': contribution, 'task': task})

        queue.sort(key=lambda item: item['contribution'].get('created_at', ''))
        return queue[:limit]
