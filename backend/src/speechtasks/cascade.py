"""
Project cascade deletion.

The project is locked by a conditional update of its status to archived,
then its descendants are deleted in dependency order:

    validations -> contributions -> blobs -> task files, file metadata and
    status history -> tasks -> members -> project

If a step fails, the project's prior status is restored and the partial
counts are reported. Rows deleted before the failure are NOT restored, so a
failed deletion can leave an active project with some of its children gone.
This matches the behavior existing clients rely on; callers should treat a
failed result as "retry the deletion", not as "nothing happened".
"""
from collections import defaultdict
from typing import Any, Dict, List

from .exceptions import Conflict, LifecycleError, NotFound, PermissionDenied, StorageFailure
from .logging import logger
from .models import ProjectRole, ProjectStatus
from .s3_utils import parse_storage_url
from .utils import failure_from_exception, now_iso, success_result


def _empty_counts() -> Dict[str, int]:
    return {'validations': 0, 'contributions': 0, 'tasks': 0, 'members': 0, 'files': 0}


class ProjectCascadeDeleter:
    """Deletes a project and everything that references it."""

    def __init__(self, store, blobs, gate):
        self.store = store
        self.blobs = blobs
        self.gate = gate

    def _remove_blobs(self, contributions: List[Dict[str, Any]]) -> int:
        """Best-effort removal of contribution media. Returns the number removed."""
        by_bucket = defaultdict(list)
        for contribution in contributions:
            parsed = parse_storage_url(contribution.get('storage_url'))
            if parsed:
                by_bucket[parsed[0]].append(parsed[1])

        removed = 0
        for bucket, paths in by_bucket.items():
            try:
                removed += self.blobs.remove(bucket, paths)
            except StorageFailure as e:
                logger.warning(f"Failed to delete {len(paths)} files from {bucket}: {e}")
        return removed

    def _restore_status(self, project_id: str, prior_status: str) -> None:
        try:
            self.store.update(
                'projects', project_id,
                {'status': prior_status, 'updated_at': now_iso()},
                expected={'status': ProjectStatus.ARCHIVED}
            )
            logger.info(f"Restored project {project_id} to {prior_status}")
        except LifecycleError as e:
            logger.error(f"Failed to restore project {project_id} to {prior_status}: {e}")

    def safely_delete(self, project_id: str, requester_id: str) -> Dict[str, Any]:
        """
        Delete a project and all its descendants.

        Args:
            project_id: Project to delete
            requester_id: Must be the project owner

        Returns:
            {success, data, error, code, deletedData}; deletedData counts what
            was actually deleted, also on failure
        """
        counts = _empty_counts()

        try:
            project = self.store.get('projects', project_id)
            if not project:
                raise NotFound(f"Project {project_id} not found")

            prior_status = project.get('status')
            if prior_status == ProjectStatus.ARCHIVED:
                raise Conflict('Project is already archived or being processed for deletion')

            if self.gate.resolve_role(requester_id, project) != ProjectRole.OWNER:
                raise PermissionDenied('Only the project owner can delete this project')

            # Deletion lock
            self.store.update(
                'projects', project_id,
                {'status': ProjectStatus.ARCHIVED, 'updated_at': now_iso(), 'deletion_started_by': requester_id},
                expected={'status': prior_status}
            )
        except LifecycleError as e:
            logger.info(f"Deletion of project {project_id} refused: {e}")
            result = failure_from_exception(e)
            result['deletedData'] = counts
            return result

        logger.info(f"Deleting project {project_id} (was {prior_status}) for {requester_id}")

        try:
            task_ids = [t['id'] for t in self.store.select('tasks', {'project_id': project_id})]
            contributions = self.store.select('contributions', {'task_id': task_ids}) if task_ids else []
            contribution_ids = [c['id'] for c in contributions]

            if contribution_ids:
                counts['validations'] = len(
                    self.store.delete_where('validations', {'contribution_id': contribution_ids})
                )
                counts['contributions'] = len(
                    self.store.delete_where('contributions', {'id': contribution_ids})
                )
                counts['files'] = self._remove_blobs(contributions)

            if task_ids:
                self.store.delete_where('task_files', {'task_id': task_ids})
                self.store.delete_where('file_metadata', {'task_id': task_ids})
                self.store.delete_where('task_status_history', {'task_id': task_ids})
                counts['tasks'] = len(self.store.delete_where('tasks', {'id': task_ids}))

            counts['members'] = len(self.store.delete_where('project_members', {'project_id': project_id}))

            if not self.store.delete('projects', project_id):
                raise NotFound(f"Project {project_id} disappeared during deletion")

        except LifecycleError as e:
            logger.error(f"Deletion of project {project_id} failed, deleted so far: {counts}: {e}")
            self._restore_status(project_id, prior_status)
            result = failure_from_exception(e)
            result['deletedData'] = counts
            return result

        logger.info(f"Deleted project {project_id}: {counts}")
        result = success_result({'project_id': project_id})
        result['deletedData'] = counts
        return result
