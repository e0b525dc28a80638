"""
Integrity checks for tasks.

The append-only task_status_history is the ground truth for a task's status:
when tasks.status disagrees with the latest history entry, the task row is
repaired to match. Task file links whose file_metadata row no longer exists
are removed. Missing required fields are only reported, since filling them
in needs a human.
"""
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from .config import config
from .exceptions import Conflict, IntegrityDrift, LifecycleError, NotFound
from .logging import logger
from .models import TaskStatus, TaskType

BASE_REQUIRED_FIELDS = ['title', 'description']

TYPE_REQUIRED_FIELDS = {
    TaskType.TRANSLATION: ['source_language', 'target_language', 'word_count'],
    TaskType.TRANSCRIPTION: ['source_language', 'audio_duration'],
    TaskType.ASR: ['source_language', 'audio_duration'],
    TaskType.TTS: ['source_text', 'target_language'],
    TaskType.VALIDATION: ['source_text', 'rating'],
}

STATUS_REQUIRED_FIELDS = {
    TaskStatus.IN_PROGRESS: ['assigned_to'],
    TaskStatus.COMPLETED: ['completed_contribution_id'],
}


def get_required_fields(task_type: str, status: str = None) -> List[str]:
    """Fields a task of this type must carry in this status."""
    fields = list(BASE_REQUIRED_FIELDS)
    fields.extend(TYPE_REQUIRED_FIELDS.get(task_type, []))
    if status:
        fields.extend(STATUS_REQUIRED_FIELDS.get(status, []))
    return fields


def validate_task_completeness(task: Dict[str, Any]) -> Dict[str, Any]:
    """
    Returns:
        dict: {'is_valid': bool, 'missing_fields': [...]}
    """
    content = task.get('content') or {}
    missing = []
    for field in get_required_fields(task.get('type'), task.get('status')):
        value = task.get(field, content.get(field))
        if value is None or value == '':
            missing.append(field)
    return {'is_valid': not missing, 'missing_fields': missing}


def latest_history_entry(history: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not history:
        return None
    return max(history, key=lambda entry: entry.get('changed_at', ''))


def check_status_drift(task: Dict[str, Any], history: List[Dict[str, Any]]) -> None:
    """Raise IntegrityDrift when the task's status disagrees with its latest history entry."""
    latest = latest_history_entry(history)
    if latest and latest.get('to_status') and latest['to_status'] != task.get('status'):
        raise IntegrityDrift(
            f"Task {task['id']} has status {task.get('status')} but history says {latest['to_status']}"
        )


class IntegrityChecker:
    """Detects and repairs drift between tasks and their history and file links."""

    def __init__(self, store, max_workers: int = None):
        self.store = store
        self.max_workers = max_workers or config.BATCH_MAX_WORKERS

    def _repair_status(self, task: Dict[str, Any], history: List[Dict[str, Any]]) -> bool:
        try:
            check_status_drift(task, history)
            return False
        except IntegrityDrift as e:
            logger.warning(str(e))

        target = latest_history_entry(history)['to_status']
        self.store.update('tasks', task['id'], {'status': target}, expected={'status': task.get('status')})
        logger.info(f"Repaired status of task {task['id']}: {task.get('status')} -> {target}")
        return True

    def _repair_file_links(self, task_id: str) -> bool:
        links = self.store.select('task_files', {'task_id': task_id})
        if not links:
            return False

        file_ids = list({link['file_id'] for link in links})
        found = {row['id'] for row in self.store.select('file_metadata', {'id': file_ids})}
        dangling = [link for link in links if link['file_id'] not in found]

        for link in dangling:
            self.store.delete('task_files', link['id'])
        if dangling:
            logger.info(f"Removed {len(dangling)} dangling file links from task {task_id}")
        return bool(dangling)

    def ensure_integrity(self, task_id: str) -> Dict[str, Any]:
        """
        Check one task and repair what can be repaired automatically.

        Returns:
            dict: {'success', 'repaired', 'message', 'missing_fields'}
        """
        try:
            task = self.store.get('tasks', task_id)
            if not task:
                raise NotFound('Task not found')

            history = self.store.select('task_status_history', {'task_id': task_id})
            repaired = self._repair_status(task, history)
            repaired = self._repair_file_links(task_id) or repaired

            if repaired:
                task = self.store.get('tasks', task_id) or task
            completeness = validate_task_completeness(task)
            if not completeness['is_valid']:
                logger.warning(
                    f"Task {task_id} has missing fields for status {task.get('status')}: "
                    f"{completeness['missing_fields']}"
                )

            return {
                'success': True,
                'repaired': repaired,
                'message': (
                    'Task data inconsistencies detected and repaired' if repaired
                    else 'Task data integrity verified'
                ),
                'missing_fields': completeness['missing_fields'],
            }

        except Conflict as e:
            logger.warning(f"Task {task_id} changed while being repaired: {e}")
            return {'success': False, 'repaired': False, 'message': e.message, 'missing_fields': []}
        except LifecycleError as e:
            logger.error(f"Error checking task integrity for {task_id}: {e}")
            return {'success': False, 'repaired': False, 'message': e.message, 'missing_fields': []}

    def batch_revalidate_project_tasks(self, project_id: str) -> Dict[str, Any]:
        """
        Run ensure_integrity on every task of a project.

        Returns:
            dict: {'success', 'repairedCount', 'totalChecked', 'failedCount', 'message'}
        """
        try:
            task_ids = [t['id'] for t in self.store.select('tasks', {'project_id': project_id})]
        except LifecycleError as e:
            return {
                'success': False, 'repairedCount': 0, 'totalChecked': 0, 'failedCount': 0,
                'message': f"Error retrieving tasks: {e.message}"
            }

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            results = list(executor.map(self.ensure_integrity, task_ids))

        repaired_count = sum(1 for r in results if r['repaired'])
        failed_count = sum(1 for r in results if not r['success'])
        logger.info(
            f"Revalidated {len(task_ids)} tasks of project {project_id}: "
            f"{repaired_count} repaired, {failed_count} failed"
        )
        return {
            'success': failed_count == 0,
            'repairedCount': repaired_count,
            'totalChecked': len(task_ids),
            'failedCount': failed_count,
            'message': f"Checked {len(task_ids)} tasks, repaired {repaired_count}",
        }
