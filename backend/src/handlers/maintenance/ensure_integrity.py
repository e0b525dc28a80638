"""
Ensure Integrity Handler.
Repairs status drift and dangling file links for one task or a whole project.

POST /tasks/{taskId}/integrity
POST /projects/{projectId}/integrity
Scheduled: { "projectId": "..." }
"""
from speechtasks.auth import get_user_sub, is_admin
from speechtasks.logging import logger, log_event
from speechtasks.models import Action
from speechtasks.services import get_integrity_checker, get_permission_gate, get_record_store
from speechtasks.utils import format_response, get_path_param


def _authorized(event, resource):
    # Scheduled invocations carry no request context
    if 'requestContext' not in event:
        return True
    user_id = get_user_sub(event)
    if not user_id:
        return False
    return is_admin(event) or get_permission_gate().check_permission(user_id, resource, Action.EDIT)


def handler(event, context):
    log_event(event)

    task_id = get_path_param(event, 'taskId')
    project_id = get_path_param(event, 'projectId') or event.get('projectId')
    if not task_id and not project_id:
        return format_response(400, {'error': 'Missing taskId or projectId'})

    store = get_record_store()
    checker = get_integrity_checker()

    try:
        if task_id:
            task = store.get('tasks', task_id)
            if not task:
                return format_response(404, {'error': 'Task not found'})
            if not _authorized(event, task):
                return format_response(403, {'error': 'You do not have permission to repair this task'})
            return format_response(200, checker.ensure_integrity(task_id))

        project = store.get('projects', project_id)
        if not project:
            return format_response(404, {'error': 'Project not found'})
        if not _authorized(event, project):
            return format_response(403, {'error': 'You do not have permission to repair this project'})
        return format_response(200, checker.batch_revalidate_project_tasks(project_id))

    except Exception as e:
        logger.error(f"Error checking integrity: {e}")
        return format_response(500, {'error': 'Integrity check failed', 'reason': str(e)})
