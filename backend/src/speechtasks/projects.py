"""
Project operations: creation with owner membership, settings, members and metrics.
Deletion lives in cascade.py.
"""
import uuid
from typing import Any, Dict, List

from .exceptions import Conflict, LifecycleError, NotFound, PermissionDenied, ValidationFailed
from .logging import logger
from .models import (
    Action, ContributionStatus, ProjectRole, ProjectStatus, TaskStatus, member_key,
)
from .utils import failure_from_exception, now_iso, success_result

# Attributes that settings updates may not touch
PROTECTED_FIELDS = frozenset(['id', 'created_by', 'created_at'])

# Statuses settable through update_project_settings; archiving is the deletion lock
SETTABLE_STATUSES = frozenset([ProjectStatus.DRAFT, ProjectStatus.ACTIVE, ProjectStatus.COMPLETED])


class ProjectService:

    def __init__(self, store, gate, coordinator):
        self.store = store
        self.gate = gate
        self.coordinator = coordinator

    def _get_project(self, project_id: str) -> Dict[str, Any]:
        project = self.store.get('projects', project_id)
        if not project:
            raise NotFound(f"Project {project_id} not found")
        return project

    def create_project_with_owner(self, project_data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        """Create a project and its owner membership in one transaction."""
        try:
            if not user_id:
                raise PermissionDenied('Authentication required')
            if not (project_data.get('name') or '').strip():
                raise ValidationFailed('Project name is required')
            status = project_data.get('status') or ProjectStatus.DRAFT
            if status not in SETTABLE_STATUSES:
                raise ValidationFailed(f"Invalid project status: {status}")
        except LifecycleError as e:
            return failure_from_exception(e)

        timestamp = now_iso()
        project = {k: v for k, v in project_data.items() if k not in PROTECTED_FIELDS}
        project.update({
            'id': str(uuid.uuid4()),
            'status': status,
            'target_languages': list(project_data.get('target_languages') or []),
            'created_by': user_id,
            'created_at': timestamp,
            'updated_at': timestamp,
        })

        def body(tx):
            tx.step(
                f"insert project {project['id']}",
                lambda: self.store.insert('projects', project),
                lambda row: self.store.delete('projects', row['id'])
            )
            tx.step(
                f"add owner {user_id}",
                lambda: self.store.insert('project_members', {
                    'id': member_key(project['id'], user_id),
                    'project_id': project['id'],
                    'user_id': user_id,
                    'role': ProjectRole.OWNER,
                    'created_at': timestamp,
                }),
                lambda row: self.store.delete('project_members', row['id'])
            )
            return project

        result = self.coordinator.run_transaction(body)
        if result['success']:
            logger.info(f"Created project {project['id']} owned by {user_id}")
        return result

    def update_project_settings(self, project_id: str, changes: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        try:
            project = self._get_project(project_id)
            self.gate.require_permission(user_id, project, Action.EDIT)

            values = {k: v for k, v in changes.items() if k not in PROTECTED_FIELDS}
            if 'status' in values and values['status'] not in SETTABLE_STATUSES:
                raise ValidationFailed(f"Project status cannot be set to {values['status']}")
            if not values:
                return success_result(project)

            values['updated_at'] = now_iso()
            values['updated_by'] = user_id
            # Never write to a project that is being deleted
            updated = self.store.update(
                'projects', project_id, values, expected={'status': list(SETTABLE_STATUSES)}
            )
            return success_result(updated)

        except LifecycleError as e:
            logger.info(f"Update of project {project_id} by {user_id} refused: {e}")
            return failure_from_exception(e)

    # -------------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------------

    def list_members(self, project_id: str) -> List[Dict[str, Any]]:
        return self.store.select('project_members', {'project_id': project_id})

    def add_member(self, project_id: str, member_id: str, role: str, requester_id: str) -> Dict[str, Any]:
        try:
            project = self._get_project(project_id)
            self.gate.require_permission(requester_id, project, Action.ADD_MEMBER)

            if role not in ProjectRole.ALL:
                raise ValidationFailed(f"Invalid role: {role}")
            if role == ProjectRole.OWNER and self.gate.resolve_role(requester_id, project) != ProjectRole.OWNER:
                raise PermissionDenied('Only an owner can add another owner')

            member = self.store.insert('project_members', {
                'id': member_key(project_id, member_id),
                'project_id': project_id,
                'user_id': member_id,
                'role': role,
                'added_by': requester_id,
                'created_at': now_iso(),
            })
            logger.info(f"Added {member_id} to project {project_id} as {role}")
            return success_result(member)

        except Conflict:
            return failure_from_exception(Conflict('User is already a member of this project'))
        except LifecycleError as e:
            return failure_from_exception(e)

    def remove_member(self, project_id: str, member_id: str, requester_id: str) -> Dict[str, Any]:
        try:
            project = self._get_project(project_id)
            self.gate.require_permission(requester_id, project, Action.REMOVE_MEMBER)

            if project.get('created_by') == member_id:
                raise PermissionDenied('The project creator cannot be removed')

            if not self.store.delete('project_members', member_key(project_id, member_id)):
                raise NotFound('User is not a member of this project')

            logger.info(f"Removed {member_id} from project {project_id}")
            return success_result({'project_id': project_id, 'user_id': member_id})

        except LifecycleError as e:
            return failure_from_exception(e)

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    def get_project_with_metrics(self, project_id: str) -> Dict[str, Any]:
        """
        Project row plus counts of tasks, completed tasks, contributions,
        accepted contributions and members.
        """
        try:
            project = self._get_project(project_id)
            tasks = self.store.select('tasks', {'project_id': project_id})
            task_ids = [t['id'] for t in tasks]

            metrics = {
                'tasks': len(tasks),
                'completedTasks': sum(
                    1 for t in tasks if t.get('status') in (TaskStatus.COMPLETED, TaskStatus.VERIFIED)
                ),
                'contributions': 0,
                'validContributions': 0,
                'members': self.store.count('project_members', {'project_id': project_id}),
            }
            if task_ids:
                metrics['contributions'] = self.store.count('contributions', {'task_id': task_ids})
                metrics['validContributions'] = self.store.count(
                    'contributions',
                    {'task_id': task_ids, 'status': list(ContributionStatus.ACCEPTED_STATES)}
                )

            return success_result({'project': project, 'metrics': metrics})

        except LifecycleError as e:
            return failure_from_exception(e)
