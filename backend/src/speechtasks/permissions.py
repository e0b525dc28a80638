"""
Role-based permission gate for tasks and projects.

Resolution order:
1. The creator of a non-archived resource may do anything with it.
2. Otherwise the subject's project role (the project creator is an implicit
   owner) is checked against the role x action matrix below.
3. No role means no access.

Checks never write anything and may be repeated freely.
"""
from typing import Any, Dict, Optional

from .exceptions import LifecycleError, PermissionDenied
from .logging import logger
from .models import (
    Action, ProjectRole, ProjectStatus, TaskStatus, member_key, normalize_task_status,
)

ARCHIVED_STATES = frozenset([TaskStatus.ARCHIVED, ProjectStatus.ARCHIVED])
UNDELETABLE_FOR_MANAGERS = frozenset([TaskStatus.VERIFIED, TaskStatus.ARCHIVED])


def is_task(resource: Dict[str, Any]) -> bool:
    """Tasks reference their project; projects do not."""
    return 'project_id' in resource


def _task_status(task: Dict[str, Any]) -> Optional[str]:
    try:
        return normalize_task_status(task.get('status'))
    except LifecycleError:
        return task.get('status')


def role_allows(role: str, action: str, resource: Dict[str, Any], subject_id: str) -> bool:
    """Apply the role x action matrix to a single resource."""
    if action not in Action.ALL:
        return False

    task = is_task(resource)
    status = _task_status(resource) if task else resource.get('status')

    if role in (ProjectRole.OWNER, ProjectRole.ADMIN):
        return True

    if role == ProjectRole.MANAGER:
        # Managers can do everything except delete verified/archived resources
        if action == Action.DELETE and status in UNDELETABLE_FOR_MANAGERS:
            return False
        return True

    if role in (ProjectRole.REVIEWER, ProjectRole.VALIDATOR):
        if action == Action.VIEW:
            return True
        if task and action in (Action.EDIT, Action.TRANSITION):
            return status == TaskStatus.COMPLETED
        return False

    if role == ProjectRole.CONTRIBUTOR:
        if not task:
            return action == Action.VIEW and status != ProjectStatus.ARCHIVED
        if action == Action.VIEW:
            return status in TaskStatus.ACCEPTING_CONTRIBUTIONS
        if action in (Action.EDIT, Action.TRANSITION):
            return bool(resource.get('assigned_to')) and resource.get('assigned_to') == subject_id
        return False

    return False


class PermissionGate:
    """Authorization decisions backed by project membership rows."""

    def __init__(self, store):
        self.store = store

    def get_project(self, resource: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if is_task(resource):
            return self.store.get('projects', resource['project_id'])
        return resource

    def resolve_role(self, subject_id: str, project: Optional[Dict[str, Any]]) -> Optional[str]:
        """Membership role of the subject. The project creator is always an owner."""
        if not project or not subject_id:
            return None

        if project.get('created_by') == subject_id:
            return ProjectRole.OWNER

        membership = self.store.get('project_members', member_key(project['id'], subject_id))
        if membership and membership.get('role') in ProjectRole.ALL:
            return membership['role']
        return None

    def check_permission(self, subject_id: str, resource: Dict[str, Any], action: str) -> bool:
        """
        Decide whether `subject_id` may perform `action` on a task or project.

        Args:
            subject_id: Authenticated user id
            resource: Task or project row
            action: One of Action.ALL

        Returns:
            True if allowed
        """
        if not subject_id or not resource:
            return False

        status = _task_status(resource) if is_task(resource) else resource.get('status')
        if resource.get('created_by') == subject_id and status not in ARCHIVED_STATES:
            return action in Action.ALL

        try:
            role = self.resolve_role(subject_id, self.get_project(resource))
        except LifecycleError as e:
            logger.error(f"Permission lookup failed for {subject_id}: {e}")
            return False

        if role is None:
            return False
        return role_allows(role, action, resource, subject_id)

    def require_permission(self, subject_id: str, resource: Dict[str, Any], action: str) -> None:
        """Raise PermissionDenied unless the action is allowed."""
        if not self.check_permission(subject_id, resource, action):
            kind = 'task' if is_task(resource) else 'project'
            raise PermissionDenied(
                f"You do not have permission to {action.replace('_', ' ')} this {kind}"
            )

    def can_review(self, subject_id: str, task: Dict[str, Any]) -> bool:
        """Whether the subject may approve or reject contributions on this task."""
        try:
            role = self.resolve_role(subject_id, self.get_project(task))
        except LifecycleError as e:
            logger.error(f"Reviewer lookup failed for {subject_id}: {e}")
            return False
        return role in ProjectRole.REVIEWERS

    def is_member(self, subject_id: str, project: Optional[Dict[str, Any]]) -> bool:
        try:
            return self.resolve_role(subject_id, project) is not None
        except LifecycleError as e:
            logger.error(f"Membership lookup failed for {subject_id}: {e}")
            return False
