"""
Task operations: creation, status changes with history, batch updates and
task listings.

Every status write goes through TaskService.transition(), which checks the
transition table immediately before a single conditional update on the row's
current status. That conditional update is what protects concurrent writers;
everything read beforehand is advisory.
"""
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from .config import config
from .exceptions import Conflict, LifecycleError, NotFound, PermissionDenied, ValidationFailed
from .logging import logger
from .models import Action, ContributionStatus, TaskStatus, TaskType
from .transitions import assert_transition
from .utils import (
    batch_result, chunked, failure_from_exception, failure_result, now_iso,
)


def record_status_change(
    store,
    task_id: str,
    from_status: Optional[str],
    to_status: str,
    changed_by: str,
    notes: str = None,
    **extra
) -> Dict[str, Any]:
    """Append an entry to the task status history."""
    entry = {
        'id': str(uuid.uuid4()),
        'task_id': task_id,
        'from_status': from_status,
        'to_status': to_status,
        'changed_by': changed_by,
        'changed_at': now_iso(),
        'notes': notes or f"Status changed from {from_status} to {to_status}",
    }
    entry.update({k: v for k, v in extra.items() if v is not None})
    return store.insert('task_status_history', entry)


def transition_task(
    store,
    task: Dict[str, Any],
    to_status: str,
    changed_by: str,
    notes: str = None,
    values: Optional[Dict[str, Any]] = None,
    expected: Optional[Dict[str, Any]] = None,
    tx=None,
    **history_extra
) -> Dict[str, Any]:
    """
    Move a task to `to_status` and append a history entry.

    Args:
        store: RecordStore
        task: Task row as last read by the caller
        to_status: Target status
        changed_by: User making the change
        notes: History note
        values: Extra attributes written in the same update
        expected: Extra conditions on top of "status is still what was read"
        tx: Optional TransactionContext; registers the revert as compensation

    Returns:
        The updated task row

    Raises:
        InvalidTransition: the move is not in the transition table
        Conflict: the row changed since it was read
    """
    from_status = task['status']

    # Server-side check, immediately before the write
    assert_transition(from_status, to_status)

    update = {'status': to_status, 'updated_at': now_iso(), 'updated_by': changed_by}
    update.update(values or {})
    condition = {'status': from_status}
    condition.update(expected or {})

    updated = store.update('tasks', task['id'], update, expected=condition)

    if tx is not None:
        previous = {field: task.get(field) for field in update}
        tx.add_compensation(
            f"revert task {task['id']} to {from_status}",
            lambda: store.update('tasks', task['id'], previous, expected={'status': to_status})
        )

    if from_status != to_status:
        entry = record_status_change(
            store, task['id'], from_status, to_status, changed_by, notes, **history_extra
        )
        if tx is not None:
            tx.add_compensation(
                f"remove history entry {entry['id']}",
                lambda: store.delete('task_status_history', entry['id'])
            )

    return updated


class TaskService:
    """Task lifecycle operations bound to a store, a permission gate and a coordinator."""

    def __init__(self, store, gate, coordinator, max_workers: int = None):
        self.store = store
        self.gate = gate
        self.coordinator = coordinator
        self.max_workers = max_workers or config.BATCH_MAX_WORKERS

    def get_task(self, task_id: str) -> Dict[str, Any]:
        task = self.store.get('tasks', task_id)
        if not task:
            raise NotFound(f"Task {task_id} not found")
        return task

    # -------------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------------

    def transition(self, task: Dict[str, Any], to_status: str, changed_by: str, **kwargs) -> Dict[str, Any]:
        return transition_task(self.store, task, to_status, changed_by, **kwargs)

    def update_task_status(
        self,
        task_id: str,
        status: str,
        user_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Change a task's status on behalf of a user.

        The first user to move a task from open to in_progress is assigned to it;
        releasing it back to open clears the assignment.
        """
        try:
            task = self.get_task(task_id)
            self.gate.require_permission(user_id, task, Action.TRANSITION)

            values = {}
            expected = {}
            if task['status'] == TaskStatus.OPEN and status == TaskStatus.IN_PROGRESS:
                values['assigned_to'] = user_id
                expected['assigned_to'] = None
            elif task['status'] == TaskStatus.IN_PROGRESS and status == TaskStatus.OPEN:
                values['assigned_to'] = None

            if metadata:
                values['metadata'] = dict(task.get('metadata') or {}, **metadata)

            # The status write and its history entry stand or fall together
            result = self.coordinator.run_transaction(
                lambda tx: self.transition(task, status, user_id, values=values, expected=expected, tx=tx)
            )

        except LifecycleError as e:
            result = failure_from_exception(e)

        if not result['success']:
            logger.warning(f"Status update of task {task_id} to {status} failed: {result['error']}")
        return result

    def batch_update_task_status(self, task_ids: List[str], status: str, user_id: str) -> Dict[str, Any]:
        """
        Update many tasks independently and in parallel.
        One task's failure never blocks the others.
        """
        def update_one(task_id):
            result = self.update_task_status(task_id, status, user_id)
            return {'id': task_id, 'success': result['success'], 'error': result['error']}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            outcomes = list(executor.map(update_one, task_ids))

        summary = batch_result(outcomes)
        logger.info(
            f"Batch status update to {status}: {summary['successCount']} succeeded, "
            f"{summary['failedCount']} failed"
        )
        return summary

    def mark_task_verified(self, task_id: str, validation_id: str, user_id: str) -> Dict[str, Any]:
        """Move a completed task to verified using an approving validation of its accepted contribution."""
        try:
            task = self.get_task(task_id)
            if task['status'] != TaskStatus.COMPLETED:
                return failure_result(
                    f"Cannot verify a task that is not completed (current status: {task['status']})",
                    'InvalidTransition'
                )
            if not task.get('completed_contribution_id'):
                return failure_result('Cannot verify a task without an accepted contribution', 'Conflict')

            validation = self.store.get('validations', validation_id)
            if not validation:
                raise NotFound(f"Validation {validation_id} not found")
            if validation.get('contribution_id') != task['completed_contribution_id']:
                raise Conflict('Validation is not for the accepted contribution of this task')
            if not validation.get('is_approved'):
                raise Conflict('Only an approving validation can verify a task')
            if not self.gate.can_review(user_id, task):
                raise PermissionDenied('Only reviewers can verify tasks')

            return self.coordinator.run_transaction(lambda tx: self.transition(
                task, TaskStatus.VERIFIED, user_id,
                notes=f"Task verified with validation {validation_id}",
                values={'verified_by': user_id, 'verified_at': now_iso(), 'validation_id': validation_id},
                tx=tx,
                validation_id=validation_id
            ))

        except LifecycleError as e:
            return failure_from_exception(e)

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def _build_task(self, task_data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        task_type = task_data.get('type')
        if task_type not in TaskType.ALL:
            raise ValidationFailed(f"Unsupported task type: {task_type}")
        if not task_data.get('project_id'):
            raise ValidationFailed('Task must belong to a project')

        timestamp = now_iso()
        task = dict(task_data)
        task.update({
            'id': task_data.get('id') or str(uuid.uuid4()),
            'status': TaskStatus.DRAFT,
            'priority': int(task_data.get('priority', 0)),
            'metadata': task_data.get('metadata') or {},
            'created_by': user_id,
            'created_at': timestamp,
            'updated_at': timestamp,
            'updated_by': user_id,
        })
        return task

    def _insert_with_history(self, tx, task: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        tx.step(
            f"insert task {task['id']}",
            lambda: self.store.insert('tasks', task),
            lambda row: self.store.delete('tasks', row['id'])
        )
        tx.step(
            f"record creation of task {task['id']}",
            lambda: record_status_change(self.store, task['id'], None, task['status'], user_id, 'Task created'),
            lambda entry: self.store.delete('task_status_history', entry['id'])
        )
        return task

    def _require_project_edit(self, project_id: str, user_id: str) -> None:
        project = self.store.get('projects', project_id)
        if not project:
            raise NotFound(f"Project {project_id} not found")
        self.gate.require_permission(user_id, project, Action.EDIT)

    def create_task(self, task_data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        """Create a draft task together with its first history entry."""
        try:
            task = self._build_task(task_data, user_id)
            self._require_project_edit(task['project_id'], user_id)
        except LifecycleError as e:
            return failure_from_exception(e)

        return self.coordinator.run_transaction(lambda tx: self._insert_with_history(tx, task, user_id))

    def batch_insert_tasks(self, tasks: List[Dict[str, Any]], user_id: str, batch_size: int = None) -> Dict[str, Any]:
        """
        Insert tasks in chunks, one emulated transaction per chunk.

        Chunks run in parallel. A failed chunk is rolled back through
        compensation and every task in it is reported as failed; other chunks
        are unaffected. Errors are keyed by the task's index in `tasks`.
        """
        batch_size = batch_size or config.TASK_INSERT_BATCH_SIZE
        outcomes = []
        prepared = []
        allowed_projects = {}

        for index, task_data in enumerate(tasks):
            try:
                task = self._build_task(task_data, user_id)
                project_id = task['project_id']
                if project_id not in allowed_projects:
                    try:
                        self._require_project_edit(project_id, user_id)
                        allowed_projects[project_id] = None
                    except LifecycleError as e:
                        allowed_projects[project_id] = e
                if allowed_projects[project_id] is not None:
                    raise allowed_projects[project_id]
                prepared.append((index, task))
            except LifecycleError as e:
                outcomes.append({'id': index, 'success': False, 'error': e.message})

        def insert_chunk(chunk):
            def body(tx):
                for _, task in chunk:
                    self._insert_with_history(tx, task, user_id)
                return len(chunk)

            result = self.coordinator.run_transaction(body)
            if result['success']:
                return [{'id': index, 'success': True} for index, _ in chunk]
            logger.error(f"Failed to insert batch of {len(chunk)} tasks: {result['error']}")
            return [
                {'id': index, 'success': False, 'error': f"Batch insert failed: {result['error']}"}
                for index, _ in chunk
            ]

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for chunk_outcomes in executor.map(insert_chunk, chunked(prepared, batch_size)):
                outcomes.extend(chunk_outcomes)

        outcomes.sort(key=lambda o: o['id'])
        summary = batch_result(outcomes)
        summary['taskIds'] = [task['id'] for index, task in prepared if summary['results'].get(str(index))]
        return summary

    # -------------------------------------------------------------------------
    # Listings
    # -------------------------------------------------------------------------

    def get_project_tasks(
        self,
        project_id: str,
        status=None,
        task_type=None,
        assigned_to: str = None,
        limit: int = None,
        offset: int = 0,
        sort_by: str = None,
        descending: bool = True
    ) -> List[Dict[str, Any]]:
        """
        Tasks of a project. `status`/`task_type` accept a single value or a list.
        Defaults to priority then newest first.
        """
        filters = {'project_id': project_id}
        if status:
            filters['status'] = status
        if task_type:
            filters['type'] = task_type
        if assigned_to:
            filters['assigned_to'] = assigned_to

        tasks = self.store.select('tasks', filters)

        if sort_by:
            tasks.sort(key=lambda t: (t.get(sort_by) is None, t.get(sort_by)), reverse=descending)
        else:
            tasks.sort(key=lambda t: (t.get('priority', 0), t.get('created_at', '')), reverse=True)

        if limit:
            return tasks[offset:offset + limit]
        return tasks[offset:]

    def get_available_tasks_for_user(
        self,
        user_id: str,
        project_id: str = None,
        task_type: str = None,
        limit: int = 20
    ) -> List[Dict[str, Any]]:
        """
        Tasks the user could contribute to right now: accepting contributions,
        not assigned to someone else, not already contributed to by the user,
        without an accepted contribution, in a project the user belongs to.
        """
        filters = {'status': list(TaskStatus.ACCEPTING_CONTRIBUTIONS)}
        if project_id:
            filters['project_id'] = project_id
        if task_type:
            filters['type'] = task_type

        candidates = [
            t for t in self.store.select('tasks', filters)
            if not t.get('assigned_to') or t.get('assigned_to') == user_id
        ]
        if not candidates:
            return []

        contributions = self.store.select('contributions', {'task_id': [t['id'] for t in candidates]})
        contributed = {c['task_id'] for c in contributions if c.get('user_id') == user_id}
        completed = {
            c['task_id'] for c in contributions
            if c.get('status') in ContributionStatus.ACCEPTED_STATES
        }

        membership = {}
        available = []
        for task in candidates:
            if task['id'] in contributed or task['id'] in completed:
                continue
            pid = task['project_id']
            if pid not in membership:
                membership[pid] = self.gate.is_member(user_id, self.store.get('projects', pid))
            if membership[pid]:
                available.append(task)

        available.sort(key=lambda t: (-int(t.get('priority', 0)), t.get('created_at', '')))
        return available[:limit]
